from __future__ import annotations


def _create_org(client, tenant, name: str) -> dict:
    r = client.post("/api/organizations", json={"name": name, "website": "https://example.test"}, headers=tenant.headers)
    assert r.status_code == 201, r.text
    return r.json()


def _create_contact(client, tenant, org_id: str, name: str, **extra) -> dict:
    r = client.post("/api/contacts", json={"name": name, "organizationId": org_id, **extra}, headers=tenant.headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_create_then_get_organization_defaults_counters(client, signup):
    tenant = signup()
    created = _create_org(client, tenant, "Acme")

    r = client.get(f"/api/organizations/{created['id']}", headers=tenant.headers)
    assert r.status_code == 200
    org = r.json()
    assert org["id"] == created["id"]
    assert org["name"] == "Acme"
    assert org["website"] == "https://example.test"
    assert org["ownerOrganizationId"] == tenant.organization["id"]
    assert org["proposalCount"] == 0
    assert org["contactCount"] == 0


def test_list_organizations_is_scoped_to_tenant(client, signup):
    acme = signup()
    beta = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")
    mine = _create_org(client, acme, "Customer One")
    _create_org(client, beta, "Customer Two")

    r = client.get("/api/organizations", headers=acme.headers)
    assert [o["id"] for o in r.json()] == [mine["id"]]

    # Another tenant's customer org is invisible, not forbidden.
    r = client.get(f"/api/organizations/{mine['id']}", headers=beta.headers)
    assert r.status_code == 404
    r = client.patch(f"/api/organizations/{mine['id']}", json={"name": "Hijacked"}, headers=beta.headers)
    assert r.status_code == 404
    r = client.delete(f"/api/organizations/{mine['id']}", headers=beta.headers)
    assert r.status_code == 404


def test_prefix_search_matches_lowercased_names(client, signup):
    tenant = signup()
    acme = _create_org(client, tenant, "Acme")
    _create_org(client, tenant, "Beta")
    _create_org(client, tenant, "ACORN Partners")

    r = client.get("/api/organizations/search", params={"query": "Ac"}, headers=tenant.headers)
    assert r.status_code == 200
    labels = [hit["label"] for hit in r.json()]
    assert labels == ["Acme", "ACORN Partners"]
    first = r.json()[0]
    assert first["value"] == acme["id"]
    assert first["count"] == 0
    assert first["data"]["id"] == acme["id"]

    r = client.get("/api/organizations/search", params={"query": "acm"}, headers=tenant.headers)
    assert [hit["label"] for hit in r.json()] == ["Acme"]

    r = client.get("/api/organizations/search", params={"query": "  "}, headers=tenant.headers)
    assert r.json() == []


def test_updates_bump_updated_at_and_reindex_name(client, signup):
    tenant = signup()
    org = _create_org(client, tenant, "Acme")

    r1 = client.patch(f"/api/organizations/{org['id']}", json={"sector": "Energy"}, headers=tenant.headers)
    r2 = client.put(f"/api/organizations/{org['id']}", json={"name": "Zenith"}, headers=tenant.headers)
    assert r1.status_code == 200 and r2.status_code == 200
    assert org["updatedAt"] < r1.json()["updatedAt"] < r2.json()["updatedAt"]
    assert r2.json()["sector"] == "Energy"

    r = client.get("/api/organizations/search", params={"query": "zen"}, headers=tenant.headers)
    assert [hit["value"] for hit in r.json()] == [org["id"]]
    r = client.get("/api/organizations/search", params={"query": "acme"}, headers=tenant.headers)
    assert r.json() == []

    r = client.patch(f"/api/organizations/{org['id']}", json={"name": "  "}, headers=tenant.headers)
    assert r.status_code == 400


def test_delete_organization_cascades_contacts_in_one_transaction(client, signup, table):
    tenant = signup()
    org = _create_org(client, tenant, "Acme")
    c1 = _create_contact(client, tenant, org["id"], "Ada Lovelace")
    c2 = _create_contact(client, tenant, org["id"], "Grace Hopper")
    assert client.get(f"/api/organizations/{org['id']}", headers=tenant.headers).json()["contactCount"] == 2

    r = client.delete(f"/api/organizations/{org['id']}", headers=tenant.headers)
    assert r.status_code == 204

    last = table.transactions[-1]
    assert len(last) == 3
    assert all("Delete" in op for op in last)
    for contact in (c1, c2):
        assert client.get(f"/api/contacts/{contact['id']}", headers=tenant.headers).status_code == 404
    assert client.get(f"/api/organizations/{org['id']}", headers=tenant.headers).status_code == 404
    # The tenant's own contact is untouched.
    assert len(table.entities("Contact")) == 1


def test_contacts_crud_keeps_contact_count(client, signup):
    tenant = signup()
    org = _create_org(client, tenant, "Acme")

    contact = _create_contact(client, tenant, org["id"], "Ada Lovelace", email="ADA@Acme.test")
    assert contact["email"] == "ada@acme.test"
    assert contact["organizationId"] == org["id"]

    r = client.get("/api/contacts", params={"organization": org["id"]}, headers=tenant.headers)
    assert [c["id"] for c in r.json()] == [contact["id"]]

    r = client.patch(f"/api/contacts/{contact['id']}", json={"title": "CTO"}, headers=tenant.headers)
    assert r.status_code == 200
    assert r.json()["title"] == "CTO"
    assert r.json()["updatedAt"] > contact["updatedAt"]

    r = client.delete(f"/api/contacts/{contact['id']}", headers=tenant.headers)
    assert r.status_code == 204
    assert client.get(f"/api/organizations/{org['id']}", headers=tenant.headers).json()["contactCount"] == 0


def test_contact_name_follows_first_and_last_name(client, signup):
    tenant = signup()
    org = _create_org(client, tenant, "Acme")
    contact = _create_contact(client, tenant, org["id"], "Ada", firstName="Ada", lastName="Lovelace")

    r = client.patch(
        f"/api/contacts/{contact['id']}", json={"firstName": "Augusta", "lastName": "King"}, headers=tenant.headers
    )
    assert r.json()["name"] == "Augusta King"
    r = client.get("/api/contacts/search", params={"q": "aug", "organizationId": org["id"]}, headers=tenant.headers)
    assert [c["id"] for c in r.json()] == [contact["id"]]


def test_contact_search_defaults_to_tenant_organization(client, signup):
    tenant = signup()
    r = client.get("/api/contacts/search", params={"q": "oli"}, headers=tenant.headers)
    assert r.status_code == 200
    assert [c["name"] for c in r.json()] == ["Olivia Owner"]


def test_contacts_of_another_tenant_are_forbidden(client, signup):
    acme = signup()
    beta = signup(email="bob@beta.test", organization_name="Beta Labs", name="Bob")
    org = _create_org(client, acme, "Acme Customer")
    contact = _create_contact(client, acme, org["id"], "Ada Lovelace")

    r = client.get("/api/contacts", params={"organization": org["id"]}, headers=beta.headers)
    assert r.status_code == 403
    r = client.post("/api/contacts", json={"name": "Mallory", "organizationId": org["id"]}, headers=beta.headers)
    assert r.status_code == 403
    r = client.get(f"/api/contacts/{contact['id']}", headers=beta.headers)
    assert r.status_code == 404

    r = client.get("/api/contacts", params={"organization": "org_missing"}, headers=acme.headers)
    assert r.status_code == 404
    r = client.get("/api/contacts", headers=acme.headers)
    assert r.status_code == 400
