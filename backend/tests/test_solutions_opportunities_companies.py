from __future__ import annotations

import json
from types import SimpleNamespace

import httpx


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


# --- solutions ---


def test_solution_create_grants_owner_and_fills_sections(client, signup, table):
    tenant = signup()
    r = client.post(
        "/api/solutions",
        json={"title": "Grid analytics", "sections": {"benefits": {"content": "Fewer outages"}}},
        headers=tenant.headers,
    )
    assert r.status_code == 201, r.text
    solution = r.json()
    assert solution["status"] == "draft"
    assert solution["mediaAssets"] == []
    assert solution["sections"]["benefits"] == {"content": "Fewer outages"}
    assert solution["sections"]["pricing"] == {"content": ""}

    (perm,) = [p for p in table.entities("Permission") if p["targetEntityId"] == solution["id"]]
    assert perm["role"] == "owner"
    assert perm["permittedEntityId"] == tenant.user["contactId"]

    listed = client.get("/api/solutions", headers=tenant.headers).json()
    assert [(s["id"], s["role"]) for s in listed] == [(solution["id"], "owner")]
    assert client.get(f"/api/solutions/{solution['id']}", headers=tenant.headers).json()["role"] == "owner"


def test_solution_patch_merges_sections_and_validates(client, signup):
    tenant = signup()
    solution = client.post(
        "/api/solutions",
        json={"title": "Grid analytics", "sections": {"benefits": "Fewer outages"}},
        headers=tenant.headers,
    ).json()
    url = f"/api/solutions/{solution['id']}"

    r = client.patch(url, json={"sections": {"timeline": "Q3"}, "status": "published"}, headers=tenant.headers)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "published"
    assert body["sections"]["timeline"] == {"content": "Q3"}
    assert body["sections"]["benefits"] == {"content": "Fewer outages"}
    assert body["updatedAt"] > solution["updatedAt"]

    assert client.patch(url, json={"sections": {"marketing": "x"}}, headers=tenant.headers).status_code == 400
    assert client.patch(url, json={"status": "retired"}, headers=tenant.headers).status_code == 400
    assert client.post("/api/solutions", json={"sections": ["x"]}, headers=tenant.headers).status_code == 400


def test_solution_media_upload_and_removal(client, signup, s3):
    tenant = signup()
    solution = client.post("/api/solutions", json={"title": "Grid analytics"}, headers=tenant.headers).json()
    url = f"/api/solutions/{solution['id']}/media"

    r = client.post(url, files={"file": ("brochure.pdf", b"%PDF-1.4 brochure", "application/pdf")}, headers=tenant.headers)
    assert r.status_code == 201, r.text
    (asset,) = r.json()["mediaAssets"]
    assert asset["fileName"] == "brochure.pdf"
    assert asset["contentType"] == "application/pdf"
    assert asset["size"] == len(b"%PDF-1.4 brochure")
    assert asset["key"].startswith(f"solutions/{solution['id']}/")
    assert asset["key"] in s3.objects

    assert client.post(url, files={"file": ("empty.png", b"", "image/png")}, headers=tenant.headers).status_code == 400

    assert client.delete(url, headers=tenant.headers).status_code == 400
    assert client.delete(url, params={"mediaId": "media_missing"}, headers=tenant.headers).status_code == 404
    assert client.delete(url, params={"mediaId": asset["id"]}, headers=tenant.headers).status_code == 204
    assert asset["key"] not in s3.objects
    assert client.get(f"/api/solutions/{solution['id']}", headers=tenant.headers).json()["mediaAssets"] == []


def test_solution_delete_is_owner_only_and_tenant_scoped(client, signup, table):
    from proposalhub.services import permissions_repo

    tenant = signup()
    other = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")
    solution = client.post("/api/solutions", json={"title": "Grid analytics"}, headers=tenant.headers).json()
    url = f"/api/solutions/{solution['id']}"

    assert client.get(url, headers=other.headers).status_code == 404
    assert client.delete(url, headers=other.headers).status_code == 404

    permissions_repo.upsert_permission(
        target_entity="solution", target_id=solution["id"], role="team", permitted_id=tenant.user["contactId"]
    )
    assert client.patch(url, json={"title": "Renamed"}, headers=tenant.headers).status_code == 200
    assert client.delete(url, headers=tenant.headers).status_code == 403

    permissions_repo.upsert_permission(
        target_entity="solution", target_id=solution["id"], role="owner", permitted_id=tenant.user["contactId"]
    )
    assert client.delete(url, headers=tenant.headers).status_code == 204
    assert client.get(url, headers=tenant.headers).status_code == 404
    assert [p for p in table.entities("Permission") if p["targetEntityId"] == solution["id"]] == []


# --- opportunities ---


def test_manual_opportunity_lifecycle(client, signup):
    tenant = signup()

    r = client.post("/api/opportunities", data={"method": "manual", "title": "Bridge inspection RFP"}, headers=tenant.headers)
    assert r.status_code == 201, r.text
    opp = r.json()
    assert opp["title"] == "Bridge inspection RFP"
    assert opp["source"] == "manual"
    assert opp["status"] == "draft"
    assert opp["organizationId"] == tenant.organization["id"]

    url = f"/api/opportunities/{opp['id']}"
    r = client.patch(url, json={"status": "active", "budget": "$2M", "organizationId": "org_other"}, headers=tenant.headers)
    assert r.status_code == 200
    assert r.json()["status"] == "active"
    assert r.json()["budget"] == "$2M"
    assert r.json()["organizationId"] == tenant.organization["id"]
    assert client.patch(url, json={"status": "won"}, headers=tenant.headers).status_code == 400

    assert client.delete(url, headers=tenant.headers).status_code == 204
    assert client.get(url, headers=tenant.headers).status_code == 404


def test_opportunity_create_validates_method_and_title(client, signup):
    tenant = signup()
    assert client.post("/api/opportunities", data={"method": "manual"}, headers=tenant.headers).status_code == 400
    assert client.post("/api/opportunities", data={"method": "fax"}, headers=tenant.headers).status_code == 400
    assert client.post("/api/opportunities", data={"method": "url"}, headers=tenant.headers).status_code == 400
    assert client.post("/api/opportunities", data={"method": "file"}, headers=tenant.headers).status_code == 400


def test_rfps_alias_and_tenant_scoping(client, signup):
    tenant = signup()
    other = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")

    a = client.post("/api/rfps", data={"title": "Water RFP"}, headers=tenant.headers).json()
    b = client.post("/api/opportunities", data={"title": "Roads RFP"}, headers=tenant.headers).json()
    client.post("/api/opportunities", data={"title": "Other tenant RFP"}, headers=other.headers)

    ids = {o["id"] for o in client.get("/api/opportunities", headers=tenant.headers).json()}
    assert ids == {a["id"], b["id"]}
    assert {o["id"] for o in client.get("/api/rfps", headers=tenant.headers).json()} == ids
    assert client.get(f"/api/opportunities/{a['id']}", headers=other.headers).status_code == 404


def test_file_opportunity_is_analyzed_and_stored(client, signup, s3, monkeypatch):
    tenant = signup()
    _fake_ai(
        monkeypatch,
        {
            "title": "Bridge inspection services",
            "summary": "Annual inspections for 40 bridges.",
            "issuer": "County DOT",
            "dueDate": "2025-03-01",
            "requirements": ["Licensed PE"],
            "sections": [{"title": "Scope", "content": "Inspect bridges."}],
        },
    )

    document = b"Request for proposals\nBridge inspection services\nDue March 1"
    r = client.post(
        "/api/opportunities",
        data={"method": "file"},
        files={"file": ("rfp.txt", document, "text/plain")},
        headers=tenant.headers,
    )
    assert r.status_code == 201, r.text
    opp = r.json()
    assert opp["source"] == "file"
    assert opp["title"] == "Bridge inspection services"
    assert opp["issuer"] == "County DOT"
    assert opp["requirements"] == ["Licensed PE"]
    assert opp["sections"] == [{"title": "Scope", "content": "Inspect bridges."}]
    key = opp["sourceFile"]["key"]
    assert s3.objects[key]["body"] == document

    assert client.delete(f"/api/opportunities/{opp['id']}", headers=tenant.headers).status_code == 204
    assert key not in s3.objects


def test_file_opportunity_rejects_unsupported_types(client, signup):
    tenant = signup()
    r = client.post(
        "/api/opportunities",
        data={"method": "file"},
        files={"file": ("rfp.docx", b"PK\x03\x04", "application/octet-stream")},
        headers=tenant.headers,
    )
    assert r.status_code == 400


def _serve(monkeypatch, handler):
    from proposalhub.services import documents

    monkeypatch.setattr(
        documents,
        "_http_client",
        lambda timeout: httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True, timeout=timeout),
    )


def test_url_opportunity_that_cannot_be_fetched_is_a_bad_request(client, signup, monkeypatch):
    tenant = signup()
    _serve(monkeypatch, lambda request: httpx.Response(404, text="gone"))
    r = client.post(
        "/api/opportunities", data={"method": "url", "url": "https://rfps.example.test/missing"}, headers=tenant.headers
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Could not fetch url"

    def _refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    _serve(monkeypatch, _refuse)
    r = client.post(
        "/api/opportunities", data={"method": "url", "url": "https://rfps.example.test/down"}, headers=tenant.headers
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Could not fetch url"


def test_url_opportunity_body_over_the_limit_is_rejected(client, signup, monkeypatch):
    from proposalhub.services import documents

    tenant = signup()
    monkeypatch.setattr(documents, "MAX_FETCH_BYTES", 64)
    _serve(monkeypatch, lambda request: httpx.Response(200, content=b"x" * 1000, headers={"content-type": "text/plain"}))
    r = client.post(
        "/api/opportunities", data={"method": "url", "url": "https://rfps.example.test/huge"}, headers=tenant.headers
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Document is too large"


def test_url_opportunity_is_fetched_and_analyzed(client, signup, monkeypatch):
    tenant = signup()
    _fake_ai(monkeypatch, {"title": "Stormwater master plan", "issuer": "City of Springfield"})
    html = "<html><body><h1>RFP</h1><p>Stormwater master plan</p></body></html>"
    _serve(monkeypatch, lambda request: httpx.Response(200, text=html, headers={"content-type": "text/html"}))
    r = client.post(
        "/api/opportunities", data={"method": "url", "url": "https://rfps.example.test/storm"}, headers=tenant.headers
    )
    assert r.status_code == 201, r.text
    assert r.json()["title"] == "Stormwater master plan"
    assert r.json()["source"] == "url"


# --- companies and clients ---


def test_company_and_client_directory(client, signup):
    tenant = signup()
    company = client.post("/api/companies", json={"name": "Northwind", "sector": "Retail"}, headers=tenant.headers)
    assert company.status_code == 201
    company = company.json()
    assert company["clientCount"] == 0
    client.post("/api/companies", json={"name": "Nortel"}, headers=tenant.headers)
    client.post("/api/companies", json={"name": "Contoso"}, headers=tenant.headers)

    hits = client.get("/api/companies/search", params={"q": "nor"}, headers=tenant.headers).json()
    assert [c["name"] for c in hits] == ["Nortel", "Northwind"]
    assert client.get("/api/companies/search", params={"q": ""}, headers=tenant.headers).json() == []

    r = client.post("/api/clients", json={"name": "Nancy Davolio", "companyId": company["id"]}, headers=tenant.headers)
    assert r.status_code == 201
    nancy = r.json()
    client.post("/api/clients", json={"name": "Andrew Fuller", "companyId": company["id"]}, headers=tenant.headers)
    assert client.get(f"/api/companies/{company['id']}", headers=tenant.headers).json()["clientCount"] == 2

    listed = client.get("/api/clients", params={"companyId": company["id"]}, headers=tenant.headers).json()
    assert [c["name"] for c in listed] == ["Andrew Fuller", "Nancy Davolio"]
    hits = client.get("/api/clients/search", params={"q": "nan", "companyId": company["id"]}, headers=tenant.headers)
    assert [c["id"] for c in hits.json()] == [nancy["id"]]

    r = client.patch(f"/api/clients/{nancy['id']}", json={"role": "Buyer"}, headers=tenant.headers)
    assert r.json()["role"] == "Buyer"
    assert client.delete(f"/api/clients/{nancy['id']}", headers=tenant.headers).status_code == 204
    assert client.get(f"/api/companies/{company['id']}", headers=tenant.headers).json()["clientCount"] == 1

    assert client.delete(f"/api/companies/{company['id']}", headers=tenant.headers).status_code == 204
    assert client.get(f"/api/companies/{company['id']}", headers=tenant.headers).status_code == 404
    assert client.get("/api/clients", params={"companyId": company["id"]}, headers=tenant.headers).status_code == 404


def test_company_validation_and_scoping(client, signup):
    tenant = signup()
    other = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")
    company = client.post("/api/companies", json={"name": "Northwind"}, headers=tenant.headers).json()

    assert client.post("/api/companies", json={}, headers=tenant.headers).status_code == 400
    assert client.post("/api/clients", json={"name": "Nancy"}, headers=tenant.headers).status_code == 400
    assert client.get("/api/clients", headers=tenant.headers).status_code == 400
    r = client.patch(f"/api/companies/{company['id']}", json={"name": " "}, headers=tenant.headers)
    assert r.status_code == 400

    assert client.get(f"/api/companies/{company['id']}", headers=other.headers).status_code == 404
    r = client.post("/api/clients", json={"name": "Mallory", "companyId": company["id"]}, headers=other.headers)
    assert r.status_code == 404
    assert client.get("/api/companies", headers=other.headers).json() == []
