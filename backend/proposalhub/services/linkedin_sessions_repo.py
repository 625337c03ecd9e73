from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from ..db.dynamodb.table import get_main_table
from ..settings import settings
from .records import now_iso, parse_iso
from .token_crypto import decrypt_json, encrypt_json


def session_key(user_id: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": "LINKEDIN_SESSION"}


def save_session(*, user_id: str, storage_state: dict[str, Any], ttl_minutes: int | None = None) -> dict[str, Any]:
    """Persist a Playwright storage_state (cookies) encrypted at rest."""
    minutes = int(ttl_minutes or settings.linkedin_session_ttl_minutes)
    expires_at = (datetime.now(timezone.utc) + timedelta(minutes=max(1, minutes))).isoformat().replace("+00:00", "Z")
    get_main_table().put_item(
        item={
            **session_key(user_id),
            "entityType": "LinkedInSession",
            "userId": user_id,
            "storageState": encrypt_json(storage_state),
            "createdAt": now_iso(),
            "expiresAt": expires_at,
        }
    )
    return {"userId": user_id, "expiresAt": expires_at}


def get_active_storage_state(user_id: str) -> dict[str, Any] | None:
    """The stored session if present and not yet expired, else None."""
    item = get_main_table().get_item(key=session_key(user_id))
    if not item:
        return None
    expires = parse_iso(item.get("expiresAt"))
    if expires is None or expires <= datetime.now(timezone.utc):
        return None
    state = decrypt_json(item.get("storageState"))
    return state if isinstance(state, dict) else None


def delete_session(user_id: str) -> None:
    get_main_table().delete_item(key=session_key(user_id))
