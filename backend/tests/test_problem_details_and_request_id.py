from __future__ import annotations


def test_request_id_is_generated_and_returned(client):
    r = client.get("/")
    assert r.status_code == 200
    assert "X-Request-Id" in r.headers
    assert r.headers["X-Request-Id"]


def test_request_id_is_propagated_from_client(client):
    r = client.get("/", headers={"X-Request-Id": "abc-123"})
    assert r.status_code == 200
    assert r.headers.get("X-Request-Id") == "abc-123"


def test_root_reports_status_and_storage(client):
    body = client.get("/").json()
    assert body["status"] == "ok"
    assert body["dynamodb"] == "configured"
    assert client.get("/health").json() == {"status": "ok"}


def test_validation_errors_are_problem_json(client):
    # Body must be a JSON object.
    r = client.post("/api/auth/signup", json=[1, 2, 3])
    assert r.status_code == 422
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["title"] == "Validation Failed"
    assert body["status"] == 422
    assert "errors" in body and isinstance(body["errors"], list)
    assert body.get("requestId")


def test_404_is_problem_json(client):
    r = client.get("/this-route-does-not-exist")
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 404
    assert body.get("requestId")


def test_auth_denied_is_problem_json(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 401
    assert body["title"] == "Unauthorized"
    assert body.get("requestId")


def test_http_exception_detail_is_problem_json(client, signup):
    tenant = signup()
    r = client.post("/api/organizations", json={}, headers=tenant.headers)
    assert r.status_code == 400
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    assert r.json()["detail"] == "Missing required fields: name"


def test_storage_errors_render_with_their_status(client, signup, monkeypatch):
    from proposalhub.db.dynamodb.errors import DdbThrottled
    from proposalhub.routers import organizations

    tenant = signup()

    def _throttled(_owner):
        raise DdbThrottled(message="Throttled", operation="Query", retryable=True)

    monkeypatch.setattr(organizations.organizations_repo, "list_organizations_for_owner", _throttled)
    r = client.get("/api/organizations", headers=tenant.headers)
    assert r.status_code == 503
    body = r.json()
    assert body["title"] == "Service Unavailable"
    assert body["extensions"]["operation"] == "Query"
    assert body["extensions"]["retryable"] is True
