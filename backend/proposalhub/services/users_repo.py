from __future__ import annotations

from typing import Any

from ..db.dynamodb.table import get_main_table
from .records import new_id, now_iso, public_view


def normalize_email(email: Any) -> str:
    return str(email or "").strip().lower()


def user_key(user_id: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": "PROFILE"}


def email_key(email: str) -> dict[str, str]:
    # Pointer item: makes email lookups consistent and emails unique.
    return {"pk": f"EMAIL#{normalize_email(email)}", "sk": "USER"}


def normalize_user_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def build_user_items(
    *, email: str, name: str | None, contact_id: str, organization_id: str
) -> tuple[dict[str, Any], dict[str, Any]]:
    user_id = new_id("user")
    now = now_iso()
    user = {
        **user_key(user_id),
        "entityType": "User",
        "id": user_id,
        "email": normalize_email(email),
        "name": name,
        "contactId": contact_id,
        "organizationId": organization_id,
        "createdAt": now,
        "updatedAt": now,
    }
    pointer = {
        **email_key(email),
        "entityType": "UserEmail",
        "userId": user_id,
        "createdAt": now,
    }
    return user, pointer


def get_user(user_id: str) -> dict[str, Any] | None:
    if not user_id:
        return None
    return normalize_user_for_api(get_main_table().get_item(key=user_key(user_id)))


def get_user_by_email(email: str) -> dict[str, Any] | None:
    e = normalize_email(email)
    if not e:
        return None
    pointer = get_main_table().get_item(key=email_key(e))
    if not pointer:
        return None
    return get_user(str(pointer.get("userId") or ""))


def set_active_organization(user_id: str, organization_id: str) -> dict[str, Any]:
    updated = get_main_table().update_fields(
        key=user_key(user_id),
        fields={"organizationId": organization_id, "updatedAt": now_iso()},
    )
    return normalize_user_for_api(updated) or {}
