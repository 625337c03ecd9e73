from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from ..observability.logging import get_logger
from . import organizations_repo
from .records import lower_name, name_sort_key, new_id, next_timestamp, now_iso, pick, prefix_bounds, public_view

log = get_logger("contacts_repo")

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "firstName",
        "lastName",
        "email",
        "title",
        "background",
        "image",
        "linkedIn",
        "phone",
        "skills",
        "credentials",
        "lastEnriched",
        "enrichmentSource",
    }
)


def contact_key(contact_id: str) -> dict[str, str]:
    return {"pk": f"CONTACT#{contact_id}", "sk": "PROFILE"}


def org_contacts_pk(organization_id: str) -> str:
    return f"ORG#{organization_id}#CONTACTS"


def display_name(data: dict[str, Any]) -> str:
    name = str(data.get("name") or "").strip()
    if name:
        return name
    parts = [str(data.get("firstName") or "").strip(), str(data.get("lastName") or "").strip()]
    return " ".join(p for p in parts if p)


def normalize_contact_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def build_contact_item(*, data: dict[str, Any], organization_id: str) -> dict[str, Any]:
    contact_id = new_id("contact")
    now = now_iso()
    fields = pick(data, EDITABLE_FIELDS)
    name = display_name(fields)
    if fields.get("email"):
        fields["email"] = str(fields["email"]).strip().lower()
    return {
        **contact_key(contact_id),
        "entityType": "Contact",
        **fields,
        "id": contact_id,
        "organizationId": organization_id,
        "name": name,
        "nameLower": lower_name(name),
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": org_contacts_pk(organization_id),
        "gsi1sk": name_sort_key(name, contact_id),
    }


def create_contact(*, data: dict[str, Any], organization_id: str) -> dict[str, Any]:
    """Create the contact and bump its organization's contactCount atomically."""
    t = get_main_table()
    item = build_contact_item(data=data, organization_id=organization_id)
    t.transact_write(
        ops=[
            t.tx_put(item=item, if_not_exists=True),
            organizations_repo.tx_adjust_counts(organization_id, contactCount=1),
        ]
    )
    log.info("contact_created", contact_id=item["id"], organization_id=organization_id)
    return normalize_contact_for_api(item) or {}


def get_contact(contact_id: str) -> dict[str, Any] | None:
    if not contact_id:
        return None
    return normalize_contact_for_api(get_main_table().get_item(key=contact_key(contact_id)))


def get_contacts(contact_ids: list[str]) -> dict[str, dict[str, Any]]:
    """Batch fetch; ids with no stored contact are left out."""
    items = get_main_table().batch_get(keys=[contact_key(c) for c in contact_ids if c])
    out: dict[str, dict[str, Any]] = {}
    for it in items:
        norm = normalize_contact_for_api(it)
        if norm:
            out[norm["id"]] = norm
    return out


def list_contacts_for_organization(organization_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(org_contacts_pk(organization_id)),
    )
    return [c for c in (normalize_contact_for_api(it) for it in items) if c]


def list_contact_keys_for_organization(organization_id: str) -> list[dict[str, str]]:
    items = get_main_table().query_all(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(org_contacts_pk(organization_id)),
    )
    return [{"pk": it["pk"], "sk": it["sk"]} for it in items]


def search_contacts(*, organization_id: str, query: str, limit: int = 10) -> list[dict[str, Any]]:
    low, high = prefix_bounds(query)
    if not low:
        return []
    page = get_main_table().query_page(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(org_contacts_pk(organization_id))
        & Key("gsi1sk").between(low, high),
        limit=limit,
    )
    return [c for c in (normalize_contact_for_api(it) for it in page.items) if c]


def update_contact(contact_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = pick(updates, EDITABLE_FIELDS)
    if fields.get("email"):
        fields["email"] = str(fields["email"]).strip().lower()
    if {"name", "firstName", "lastName"} & fields.keys():
        merged = {**existing, **fields}
        if "name" not in fields:
            merged.pop("name", None)
        name = display_name(merged)
        fields["name"] = name
        fields["nameLower"] = lower_name(name)
        fields["gsi1sk"] = name_sort_key(name, contact_id)
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))

    updated = get_main_table().update_fields(key=contact_key(contact_id), fields=fields)
    return normalize_contact_for_api(updated) or {}


def delete_contact(contact: dict[str, Any]) -> None:
    t = get_main_table()
    t.transact_write(
        ops=[
            t.tx_delete(key=contact_key(contact["id"]), must_exist=True),
            organizations_repo.tx_adjust_counts(str(contact.get("organizationId") or ""), contactCount=-1),
        ]
    )
    log.info("contact_deleted", contact_id=contact["id"], organization_id=contact.get("organizationId"))
