from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest


@pytest.fixture
def workspace(client, signup):
    tenant = signup()
    org = client.post("/api/organizations", json={"name": "Acme Customer"}, headers=tenant.headers).json()
    buyer = client.post(
        "/api/contacts", json={"name": "Ada Lovelace", "organizationId": org["id"]}, headers=tenant.headers
    ).json()
    proposal = client.post(
        "/api/proposals",
        json={
            "title": "Grid modernization",
            "sections": [
                {"id": "executiveSummary", "title": "Executive Summary", "content": ""},
                {"id": "s2", "title": "Pricing", "content": ""},
            ],
        },
        headers=tenant.headers,
    ).json()
    return tenant, org, buyer, proposal


def _fake_ai(monkeypatch, payload: dict):
    from proposalhub.ai import client as ai_client

    class _FakeChatCompletions:
        def create(self, *, model: str, **_kwargs):
            return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps(payload)))])

    ai_client.settings.openai_api_key = "test"
    monkeypatch.setattr(ai_client, "_models_to_try", lambda _purpose: ["gpt-4o-mini"])
    monkeypatch.setattr(
        ai_client, "_client", lambda timeout_s=None: SimpleNamespace(chat=SimpleNamespace(completions=_FakeChatCompletions()))
    )


# --- requirements ---


def test_requirements_read_and_update(client, workspace):
    tenant, org, buyer, proposal = workspace
    url = f"/api/proposals/{proposal['id']}/requirements"

    empty = client.get(url, headers=tenant.headers).json()
    assert empty == {
        "organization": None,
        "leadContact": None,
        "overview": "",
        "requirements": "",
        "timeline": "",
        "budget": "",
        "notes": "",
        "referenceDocuments": [],
    }

    r = client.put(
        url,
        json={
            "forOrganizationId": org["id"],
            "forContactId": buyer["id"],
            "overview": "Replace aging substations.",
            "budget": 250000,
            "title": "ignored here",
        },
        headers=tenant.headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["success"] is True

    body = client.get(url, headers=tenant.headers).json()
    assert body["organization"]["id"] == org["id"]
    assert body["leadContact"]["id"] == buyer["id"]
    assert body["overview"] == "Replace aging substations."
    assert body["budget"] == "250000"
    assert client.get(f"/api/proposals/{proposal['id']}", headers=tenant.headers).json()["title"] == "Grid modernization"
    assert client.get(f"/api/organizations/{org['id']}", headers=tenant.headers).json()["proposalCount"] == 1


def test_requirements_need_edit_rights(client, workspace):
    from proposalhub.auth.sessions import issue_session_token

    tenant, _, _, proposal = workspace
    viewer = client.post(
        "/api/contacts", json={"name": "Grace Hopper", "organizationId": tenant.organization["id"]}, headers=tenant.headers
    ).json()
    client.post(
        f"/api/proposals/{proposal['id']}/permissions",
        json={"contactId": viewer["id"], "role": "viewer"},
        headers=tenant.headers,
    )
    token = issue_session_token(
        user_id="user_grace", email=None, contact_id=viewer["id"], organization_id=tenant.organization["id"]
    )
    headers = {"Authorization": f"Bearer {token}"}
    url = f"/api/proposals/{proposal['id']}/requirements"
    assert client.get(url, headers=headers).status_code == 200
    assert client.put(url, json={"notes": "mine"}, headers=headers).status_code == 403


# --- reference documents ---


def test_reference_documents_upload_and_removal(client, workspace, s3):
    tenant, _, _, proposal = workspace
    url = f"/api/proposals/{proposal['id']}/documents"

    r = client.post(url, files={"file": ("rfp.pdf", b"%PDF-1.4 test", "application/pdf")}, headers=tenant.headers)
    assert r.status_code == 201, r.text
    doc = r.json()
    assert doc["name"] == "rfp.pdf"
    assert doc["uploadedBy"] == tenant.user["contactId"]
    assert s3.objects[doc["key"]]["body"] == b"%PDF-1.4 test"
    assert doc["key"].startswith(f"proposals/{proposal['id']}/references/")

    listed = client.get(f"/api/proposals/{proposal['id']}/requirements", headers=tenant.headers).json()
    assert [d["id"] for d in listed["referenceDocuments"]] == [doc["id"]]

    assert client.post(url, files={"file": ("empty.txt", b"", "text/plain")}, headers=tenant.headers).status_code == 400
    assert client.delete(url, headers=tenant.headers).status_code == 400
    assert client.delete(url, params={"documentId": "doc_missing"}, headers=tenant.headers).status_code == 404

    assert client.delete(url, params={"documentId": doc["id"]}, headers=tenant.headers).status_code == 204
    assert doc["key"] not in s3.objects
    assert client.get(f"/api/proposals/{proposal['id']}", headers=tenant.headers).json()["referenceDocuments"] == []


# --- analysis ---


def _checklist(client, tenant, proposal_id: str) -> dict[str, bool]:
    body = client.get(f"/api/proposals/{proposal_id}/analysis", headers=tenant.headers).json()
    assert body["type"] == "todo"
    return {item["id"]: item["completed"] for item in body["items"]}


def test_draft_analysis_tracks_checklist(client, workspace):
    tenant, org, buyer, proposal = workspace
    pid = proposal["id"]
    assert _checklist(client, tenant, pid) == {
        "requirements": False,
        "team": False,
        "content": False,
        "review": False,
        "layout": False,
        "recipients": False,
        "publish": False,
    }

    client.put(
        f"/api/proposals/{pid}/requirements",
        json={"forOrganizationId": org["id"], "forContactId": buyer["id"]},
        headers=tenant.headers,
    )
    client.post(f"/api/proposals/{pid}/team", json={"contactId": tenant.user["contactId"]}, headers=tenant.headers)
    client.patch(
        f"/api/proposals/{pid}",
        json={
            "sections": [{"id": "executiveSummary", "title": "Executive Summary", "content": "We deliver."}],
            "layout": {"template": "modern"},
        },
        headers=tenant.headers,
    )
    client.post(
        f"/api/proposals/{pid}/improvements",
        json={"sectionId": "executiveSummary", "original": "We deliver.", "improved": "We deliver on time."},
        headers=tenant.headers,
    )
    client.post(
        f"/api/proposals/{pid}/permissions", json={"contactId": buyer["id"], "role": "viewer"}, headers=tenant.headers
    )

    done = _checklist(client, tenant, pid)
    assert done.pop("publish") is False
    assert all(done.values()), done


def test_submitted_proposal_analysis_reports_view_metrics(client, workspace):
    tenant, _, _, proposal = workspace
    pid = proposal["id"]
    client.patch(f"/api/proposals/{pid}", json={"status": "submitted"}, headers=tenant.headers)

    body = client.get(f"/api/proposals/{pid}/analysis", headers=tenant.headers).json()
    assert body == {
        "type": "metrics",
        "data": {
            "totalViews": 0,
            "uniqueViewers": 0,
            "averageViewDuration": 0,
            "viewsBySection": {},
            "firstViewedAt": None,
            "lastViewedAt": None,
        },
    }

    views = f"/api/proposals/{pid}/views"
    first = client.post(views, json={"sectionId": "s2", "duration": 30}, headers=tenant.headers).json()
    client.post(views, json={"sectionId": "s2", "duration": 90}, headers=tenant.headers)
    last = client.post(views, headers=tenant.headers).json()
    assert client.post(views, json={"duration": -1}, headers=tenant.headers).status_code == 400

    data = client.get(f"/api/proposals/{pid}/analysis", headers=tenant.headers).json()["data"]
    assert data["totalViews"] == 3
    assert data["uniqueViewers"] == 1
    assert data["averageViewDuration"] == 60
    assert data["viewsBySection"] == {"s2": 2}
    assert data["firstViewedAt"] == first["viewedAt"]
    assert data["lastViewedAt"] == last["viewedAt"]


# --- drafts ---


def test_recent_drafts_lists_callers_fresh_drafts(client, workspace, signup, table):
    tenant, _, _, proposal = workspace
    submitted = client.post("/api/proposals", json={"title": "Done", "status": "submitted"}, headers=tenant.headers).json()
    stale = client.post("/api/proposals", json={"title": "Old"}, headers=tenant.headers).json()
    newest = client.post("/api/proposals", json={"title": "Newest"}, headers=tenant.headers).json()
    client.patch(f"/api/proposals/{newest['id']}", json={"title": "Newest draft"}, headers=tenant.headers)
    old = (datetime.now(timezone.utc) - timedelta(days=45)).isoformat().replace("+00:00", "Z")
    table.items[("PROPOSAL#" + stale["id"], "PROFILE")]["updatedAt"] = old
    other = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")
    client.post("/api/proposals", json={"title": "Not ours"}, headers=other.headers)

    drafts = client.get("/api/proposals/drafts", headers=tenant.headers).json()
    assert [d["id"] for d in drafts] == [newest["id"], proposal["id"]]
    assert submitted["id"] not in {d["id"] for d in drafts}


def test_recent_drafts_are_capped(client, signup):
    tenant = signup()
    for i in range(12):
        client.post("/api/proposals", json={"title": f"Draft {i}"}, headers=tenant.headers)
    drafts = client.get("/api/proposals/drafts", headers=tenant.headers).json()
    assert [d["title"] for d in drafts] == [f"Draft {i}" for i in range(11, 1, -1)]


# --- document analysis ---


def test_analyze_document_keeps_known_sections(client, workspace, monkeypatch):
    tenant, _, _, proposal = workspace
    _fake_ai(
        monkeypatch,
        {
            "sections": [
                {"id": "executiveSummary", "title": "Executive Summary", "content": "We modernize grids.", "confidence": 0.9},
                {"id": "made_up", "title": "Appendix", "content": "Extra", "confidence": 0.4},
            ],
            "unmatched": [
                {"content": "Staff bios", "potentialSections": [{"sectionId": "s2", "relevance": 0.2}, {"sectionId": "nope"}]}
            ],
        },
    )
    url = f"/api/proposals/{proposal['id']}/analyze-document"
    r = client.post(url, json={"content": "# Old proposal\nWe modernize grids.", "type": "markdown"}, headers=tenant.headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert [s["id"] for s in body["sections"]] == ["executiveSummary"]
    assert body["unmatched"][0]["potentialSections"] == [{"sectionId": "s2", "relevance": 0.2}]

    assert client.post(url, json={"type": "markdown"}, headers=tenant.headers).status_code == 400
    assert client.post(url, json={"content": "x", "type": "docx"}, headers=tenant.headers).status_code == 400


def test_analyze_document_without_ai_key_is_unavailable(client, workspace):
    tenant, _, _, proposal = workspace
    r = client.post(
        f"/api/proposals/{proposal['id']}/analyze-document", json={"content": "Some text"}, headers=tenant.headers
    )
    assert r.status_code == 503


# --- solution extraction ---


def test_extract_solution_from_proposal(client, workspace, table):
    tenant, _, _, proposal = workspace
    client.patch(
        f"/api/proposals/{proposal['id']}",
        json={
            "sections": [
                {"id": "executiveSummary", "title": "Executive Summary", "content": "Faster restoration."},
                {"id": "s2", "title": "Pricing", "content": "$1.2M fixed fee."},
            ]
        },
        headers=tenant.headers,
    )

    r = client.post("/api/solutions/extract", json={"proposalId": proposal["id"]}, headers=tenant.headers)
    assert r.status_code == 201, r.text
    solution = r.json()
    assert solution["title"] == "Solution from Grid modernization"
    assert solution["organizationId"] == tenant.organization["id"]
    assert solution["sections"]["benefits"]["content"] == "Faster restoration."
    assert solution["sections"]["pricing"]["content"] == "$1.2M fixed fee."
    assert solution["sections"]["description"]["content"] == ""

    owner = [p for p in table.entities("Permission") if p["targetEntityId"] == solution["id"]]
    assert [(p["permittedEntityId"], p["role"]) for p in owner] == [(tenant.user["contactId"], "owner")]
    assert client.get(f"/api/solutions/{solution['id']}", headers=tenant.headers).json()["role"] == "owner"


def test_extract_solution_checks_the_proposal(client, workspace, signup):
    tenant, _, _, proposal = workspace
    other = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")
    assert client.post("/api/solutions/extract", json={}, headers=tenant.headers).status_code == 400
    r = client.post("/api/solutions/extract", json={"proposalId": proposal["id"]}, headers=other.headers)
    assert r.status_code == 404
