from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.table import GSI1, get_main_table
from .records import next_timestamp, now_iso, public_view

CONTACT = "contact"


def permission_id(target_entity: str, target_id: str, permitted_entity: str, permitted_id: str) -> str:
    return f"{target_entity}:{target_id}:{permitted_entity}:{permitted_id}"


def target_pk(target_entity: str, target_id: str) -> str:
    return f"PERM#{target_entity}#{target_id}"


def permission_key(
    target_entity: str, target_id: str, permitted_entity: str, permitted_id: str
) -> dict[str, str]:
    # Keyed by the (target, permitted) pair: one row per pair, never duplicates.
    return {"pk": target_pk(target_entity, target_id), "sk": f"{permitted_entity}#{permitted_id}"}


def permitted_index_pk(permitted_entity: str, permitted_id: str) -> str:
    return f"{permitted_entity}#{permitted_id}#PERMS"


def normalize_permission_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def build_permission_item(
    *,
    target_entity: str,
    target_id: str,
    role: str,
    permitted_id: str,
    permitted_entity: str = CONTACT,
) -> dict[str, Any]:
    now = now_iso()
    return {
        **permission_key(target_entity, target_id, permitted_entity, permitted_id),
        "entityType": "Permission",
        "id": permission_id(target_entity, target_id, permitted_entity, permitted_id),
        "permittedEntity": permitted_entity,
        "permittedEntityId": permitted_id,
        "targetEntity": target_entity,
        "targetEntityId": target_id,
        "role": role,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": permitted_index_pk(permitted_entity, permitted_id),
        "gsi1sk": f"{target_entity}#{target_id}",
    }


def tx_put_permission(**kwargs: Any) -> dict[str, Any]:
    return get_main_table().tx_put(item=build_permission_item(**kwargs), if_not_exists=True)


def tx_put_role(
    *,
    target_entity: str,
    target_id: str,
    role: str,
    permitted_id: str,
    existing: dict[str, Any] | None = None,
    condition: Any = None,
    permitted_entity: str = CONTACT,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Transaction op writing the pair's row with `role`, plus the item it writes.

    An existing row keeps its createdAt; `condition` guards the write.
    """
    item = build_permission_item(
        target_entity=target_entity,
        target_id=target_id,
        role=role,
        permitted_id=permitted_id,
        permitted_entity=permitted_entity,
    )
    if existing:
        item["createdAt"] = existing.get("createdAt") or item["createdAt"]
        item["updatedAt"] = next_timestamp(existing.get("updatedAt"))
    return get_main_table().tx_put(item=item, condition=condition), item


def get_permission(
    *, target_entity: str, target_id: str, permitted_id: str, permitted_entity: str = CONTACT
) -> dict[str, Any] | None:
    if not (target_id and permitted_id):
        return None
    item = get_main_table().get_item(key=permission_key(target_entity, target_id, permitted_entity, permitted_id))
    return normalize_permission_for_api(item)


def upsert_permission(
    *,
    target_entity: str,
    target_id: str,
    role: str,
    permitted_id: str,
    permitted_entity: str = CONTACT,
) -> tuple[dict[str, Any], bool]:
    """Create the permission or change its role in place. Returns (permission, created)."""
    t = get_main_table()
    key = permission_key(target_entity, target_id, permitted_entity, permitted_id)
    existing = t.get_item(key=key)
    if existing is None:
        item = build_permission_item(
            target_entity=target_entity,
            target_id=target_id,
            role=role,
            permitted_id=permitted_id,
            permitted_entity=permitted_entity,
        )
        try:
            t.put_item(item=item, if_not_exists=True)
            return normalize_permission_for_api(item) or {}, True
        except DdbConflict:
            # Lost a race with a concurrent insert of the same pair; fall through to update.
            existing = t.get_required(key=key, message="Permission not found")

    updated = t.update_fields(
        key=key,
        fields={"role": role, "updatedAt": next_timestamp(existing.get("updatedAt"))},
    )
    return normalize_permission_for_api(updated) or {}, False


def delete_permission(
    *, target_entity: str, target_id: str, permitted_id: str, permitted_entity: str = CONTACT
) -> None:
    """Raises DdbNotFound when no such permission exists."""
    get_main_table().delete_item(
        key=permission_key(target_entity, target_id, permitted_entity, permitted_id), must_exist=True
    )


def list_permissions_for_target(*, target_entity: str, target_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(key_condition_expression=Key("pk").eq(target_pk(target_entity, target_id)))
    return [p for p in (normalize_permission_for_api(it) for it in items) if p]


def permission_keys_for_target(*, target_entity: str, target_id: str) -> list[dict[str, str]]:
    items = get_main_table().query_all(key_condition_expression=Key("pk").eq(target_pk(target_entity, target_id)))
    return [{"pk": it["pk"], "sk": it["sk"]} for it in items]


def list_permissions_for_contact(contact_id: str, *, target_entity: str | None = None) -> list[dict[str, Any]]:
    cond = Key("gsi1pk").eq(permitted_index_pk(CONTACT, contact_id))
    if target_entity:
        cond = cond & Key("gsi1sk").begins_with(f"{target_entity}#")
    items = get_main_table().query_all(index_name=GSI1, key_condition_expression=cond)
    return [p for p in (normalize_permission_for_api(it) for it in items) if p]
