"""Company/client directory: companies with their client contacts.

Companies belong to the tenant that created them. Clients are indexed under their
company by lowercased name, and the company carries a denormalized clientCount.
"""

from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from ..observability.logging import get_logger
from .records import lower_name, name_sort_key, new_id, next_timestamp, now_iso, pick, prefix_bounds, public_view

log = get_logger("companies_repo")

COMPANY_FIELDS = frozenset(
    {"name", "website", "sector", "size", "background", "primaryColor", "secondaryColor", "logo"}
)
CLIENT_FIELDS = frozenset({"name", "email", "linkedIn", "phone", "role", "background"})

SEARCH_LIMIT = 5


def company_key(company_id: str) -> dict[str, str]:
    return {"pk": f"COMPANY#{company_id}", "sk": "PROFILE"}


def client_key(client_id: str) -> dict[str, str]:
    return {"pk": f"CLIENT#{client_id}", "sk": "PROFILE"}


def owner_companies_pk(owner_organization_id: str) -> str:
    return f"OWNER#{owner_organization_id}#COMPANIES"


def company_clients_pk(company_id: str) -> str:
    return f"COMPANY#{company_id}#CLIENTS"


def normalize_company_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    out = public_view(item)
    if out is not None:
        out["clientCount"] = int(out.get("clientCount") or 0)
    return out


def normalize_client_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def _prefix_query(pk: str, query: str, limit: int) -> list[dict[str, Any]]:
    low, high = prefix_bounds(query)
    if not low:
        return []
    page = get_main_table().query_page(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(pk) & Key("gsi1sk").between(low, high),
        limit=limit,
    )
    return page.items


# --- companies ---


def create_company(data: dict[str, Any], *, owner_organization_id: str) -> dict[str, Any]:
    company_id = new_id("company")
    now = now_iso()
    fields = pick(data, COMPANY_FIELDS)
    name = str(fields.get("name") or "").strip()
    item = {
        **company_key(company_id),
        "entityType": "Company",
        **fields,
        "id": company_id,
        "name": name,
        "nameLower": lower_name(name),
        "ownerOrganizationId": owner_organization_id,
        "clientCount": 0,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": owner_companies_pk(owner_organization_id),
        "gsi1sk": name_sort_key(name, company_id),
    }
    get_main_table().put_item(item=item, if_not_exists=True)
    log.info("company_created", company_id=company_id, owner_organization_id=owner_organization_id)
    return normalize_company_for_api(item) or {}


def get_company(company_id: str) -> dict[str, Any] | None:
    if not company_id:
        return None
    return normalize_company_for_api(get_main_table().get_item(key=company_key(company_id)))


def list_companies(owner_organization_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1, key_condition_expression=Key("gsi1pk").eq(owner_companies_pk(owner_organization_id))
    )
    return [c for c in (normalize_company_for_api(it) for it in items) if c]


def search_companies(query: str, *, owner_organization_id: str, limit: int = SEARCH_LIMIT) -> list[dict[str, Any]]:
    items = _prefix_query(owner_companies_pk(owner_organization_id), query, limit)
    return [c for c in (normalize_company_for_api(it) for it in items) if c]


def update_company(company_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = pick(updates, COMPANY_FIELDS)
    if "name" in fields:
        fields["name"] = str(fields.get("name") or "").strip()
        fields["nameLower"] = lower_name(fields["name"])
        fields["gsi1sk"] = name_sort_key(fields["name"], company_id)
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))
    updated = get_main_table().update_fields(key=company_key(company_id), fields=fields)
    return normalize_company_for_api(updated) or {}


def delete_company_cascade(company_id: str) -> int:
    t = get_main_table()
    clients = t.query_all(index_name=GSI1, key_condition_expression=Key("gsi1pk").eq(company_clients_pk(company_id)))
    ops = [t.tx_delete(key={"pk": c["pk"], "sk": c["sk"]}) for c in clients]
    ops.append(t.tx_delete(key=company_key(company_id), must_exist=True))
    t.transact_write(ops=ops)
    log.info("company_deleted", company_id=company_id, clients_deleted=len(clients))
    return len(clients)


# --- clients ---


def create_client(data: dict[str, Any], *, company_id: str) -> dict[str, Any]:
    t = get_main_table()
    client_id = new_id("client")
    now = now_iso()
    fields = pick(data, CLIENT_FIELDS)
    name = str(fields.get("name") or "").strip()
    item = {
        **client_key(client_id),
        "entityType": "Client",
        **fields,
        "id": client_id,
        "companyId": company_id,
        "name": name,
        "nameLower": lower_name(name),
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": company_clients_pk(company_id),
        "gsi1sk": name_sort_key(name, client_id),
    }
    t.transact_write(
        ops=[
            t.tx_put(item=item, if_not_exists=True),
            t.tx_increment(key=company_key(company_id), counters={"clientCount": 1}),
        ]
    )
    return normalize_client_for_api(item) or {}


def get_client(client_id: str) -> dict[str, Any] | None:
    if not client_id:
        return None
    return normalize_client_for_api(get_main_table().get_item(key=client_key(client_id)))


def list_clients_for_company(company_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1, key_condition_expression=Key("gsi1pk").eq(company_clients_pk(company_id))
    )
    return [c for c in (normalize_client_for_api(it) for it in items) if c]


def search_clients(query: str, *, company_id: str, limit: int = SEARCH_LIMIT) -> list[dict[str, Any]]:
    items = _prefix_query(company_clients_pk(company_id), query, limit)
    return [c for c in (normalize_client_for_api(it) for it in items) if c]


def update_client(client_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = pick(updates, CLIENT_FIELDS)
    if "name" in fields:
        fields["name"] = str(fields.get("name") or "").strip()
        fields["nameLower"] = lower_name(fields["name"])
        fields["gsi1sk"] = name_sort_key(fields["name"], client_id)
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))
    updated = get_main_table().update_fields(key=client_key(client_id), fields=fields)
    return normalize_client_for_api(updated) or {}


def delete_client(client: dict[str, Any]) -> None:
    t = get_main_table()
    t.transact_write(
        ops=[
            t.tx_delete(key=client_key(client["id"]), must_exist=True),
            t.tx_increment(key=company_key(str(client["companyId"])), counters={"clientCount": -1}),
        ]
    )
