from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from ..observability.logging import get_logger
from .records import lower_name, name_sort_key, new_id, next_timestamp, now_iso, pick, prefix_bounds, public_view

log = get_logger("organizations_repo")

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "website",
        "sector",
        "size",
        "logoUrl",
        "primaryColor",
        "secondaryColor",
        "address",
        "background",
    }
)

COUNTER_FIELDS = ("contactCount", "proposalCount")


def org_key(organization_id: str) -> dict[str, str]:
    return {"pk": f"ORG#{organization_id}", "sk": "PROFILE"}


def owner_index_pk(owner_organization_id: str) -> str:
    return f"OWNER#{owner_organization_id}#ORGS"


def normalize_organization_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    out = public_view(item)
    if out is None:
        return None
    for field in COUNTER_FIELDS:
        out[field] = int(out.get(field) or 0)
    return out


def build_organization_item(
    *, data: dict[str, Any], owner_organization_id: str | None, organization_id: str | None = None
) -> dict[str, Any]:
    org_id = organization_id or new_id("org")
    now = now_iso()
    fields = pick(data, EDITABLE_FIELDS)
    item: dict[str, Any] = {
        **org_key(org_id),
        "entityType": "Organization",
        **fields,
        "id": org_id,
        "name": str(fields.get("name") or "").strip(),
        "nameLower": lower_name(fields.get("name")),
        "ownerOrganizationId": owner_organization_id,
        "contactCount": 0,
        "proposalCount": 0,
        "createdAt": now,
        "updatedAt": now,
    }
    # Only customer orgs are listed/searchable under their owning tenant.
    if owner_organization_id:
        item["gsi1pk"] = owner_index_pk(owner_organization_id)
        item["gsi1sk"] = name_sort_key(item["name"], org_id)
    return item


def create_organization(*, data: dict[str, Any], owner_organization_id: str | None) -> dict[str, Any]:
    item = build_organization_item(data=data, owner_organization_id=owner_organization_id)
    get_main_table().put_item(item=item, if_not_exists=True)
    log.info("organization_created", organization_id=item["id"], owner_organization_id=owner_organization_id)
    return normalize_organization_for_api(item) or {}


def get_organization_item(organization_id: str) -> dict[str, Any] | None:
    if not organization_id:
        return None
    return get_main_table().get_item(key=org_key(organization_id))


def get_organization(organization_id: str) -> dict[str, Any] | None:
    return normalize_organization_for_api(get_organization_item(organization_id))


def get_organizations(organization_ids: list[str]) -> dict[str, dict[str, Any]]:
    items = get_main_table().batch_get(keys=[org_key(i) for i in organization_ids if i])
    out: dict[str, dict[str, Any]] = {}
    for it in items:
        norm = normalize_organization_for_api(it)
        if norm:
            out[norm["id"]] = norm
    return out


def list_organizations_for_owner(owner_organization_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(owner_index_pk(owner_organization_id)),
    )
    return [o for o in (normalize_organization_for_api(it) for it in items) if o]


def search_organizations(*, owner_organization_id: str, query: str, limit: int = 10) -> list[dict[str, Any]]:
    low, high = prefix_bounds(query)
    if not low:
        return []
    page = get_main_table().query_page(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(owner_index_pk(owner_organization_id))
        & Key("gsi1sk").between(low, high),
        limit=limit,
    )
    return [o for o in (normalize_organization_for_api(it) for it in page.items) if o]


def update_organization(organization_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = pick(updates, EDITABLE_FIELDS)
    if "name" in fields:
        fields["name"] = str(fields.get("name") or "").strip()
        fields["nameLower"] = lower_name(fields["name"])
        if existing.get("ownerOrganizationId"):
            fields["gsi1sk"] = name_sort_key(fields["name"], organization_id)
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))

    updated = get_main_table().update_fields(key=org_key(organization_id), fields=fields)
    return normalize_organization_for_api(updated) or {}


def delete_organization_cascade(organization_id: str) -> int:
    """Delete the organization and every contact homed in it; returns contacts removed.

    Proposals written for the organization stay with their owner but lose the
    reference, so later proposal writes never adjust a counter on a missing org.
    The organization delete is the last op, after every child row.
    """
    from .contacts_repo import list_contact_keys_for_organization
    from .proposals_repo import list_proposals_for_owner, proposal_key

    t = get_main_table()
    org = get_organization_item(organization_id) or {}
    contact_keys = list_contact_keys_for_organization(organization_id)
    contact_ids = {str(k["pk"]).split("#", 1)[1] for k in contact_keys}
    owner_id = str(org.get("ownerOrganizationId") or organization_id)
    detached = [p for p in list_proposals_for_owner(owner_id) if p.get("forOrganizationId") == organization_id]

    ops = [t.tx_delete(key=k) for k in contact_keys]
    now = now_iso()
    for p in detached:
        fields: dict[str, Any] = {"forOrganizationId": "", "updatedAt": now}
        if p.get("forContactId") in contact_ids:
            fields["forContactId"] = ""
        ops.append(t.tx_update_fields(key=proposal_key(p["id"]), fields=fields))
    ops.append(t.tx_delete(key=org_key(organization_id), must_exist=True))
    t.transact_write(ops=ops)
    log.info(
        "organization_deleted",
        organization_id=organization_id,
        contacts_deleted=len(contact_keys),
        proposals_detached=len(detached),
    )
    return len(contact_keys)


def tx_adjust_counts(organization_id: str, **deltas: int) -> dict[str, Any] | None:
    """Transaction op keeping the denormalized child counters in step."""
    counters = {k: int(v) for k, v in deltas.items() if k in COUNTER_FIELDS and v}
    if not organization_id or not counters:
        return None
    return get_main_table().tx_increment(key=org_key(organization_id), counters=counters)


def tx_release_counts(organization_id: str, **deltas: int) -> dict[str, Any] | None:
    """tx_adjust_counts for a child leaving an org that may already be deleted."""
    if not get_organization_item(organization_id):
        return None
    return tx_adjust_counts(organization_id, **deltas)
