from __future__ import annotations

import time
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import get_main_table
from .records import now_iso, public_view

CHALLENGE_TTL_SECONDS = 5 * 60


def credential_key(user_id: str, credential_id: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": f"PASSKEY#{credential_id}"}


def challenge_key(user_id: str, kind: str) -> dict[str, str]:
    return {"pk": f"USER#{user_id}", "sk": f"CHALLENGE#{kind}"}


def save_credential(
    *,
    user_id: str,
    credential_id: str,
    public_key: str,
    sign_count: int,
    transports: list[str] | None = None,
    device_type: str | None = None,
    backed_up: bool | None = None,
) -> dict[str, Any]:
    """Store a verified credential. Ids and keys are base64url strings."""
    now = now_iso()
    item = {
        **credential_key(user_id, credential_id),
        "entityType": "PasskeyCredential",
        "userId": user_id,
        "credentialId": credential_id,
        "publicKey": public_key,
        "signCount": int(sign_count),
        "transports": list(transports or []),
        "deviceType": device_type,
        "backedUp": backed_up,
        "createdAt": now,
        "lastUsedAt": None,
    }
    get_main_table().put_item(item=item)
    return public_view(item) or {}


def get_credential(*, user_id: str, credential_id: str) -> dict[str, Any] | None:
    return public_view(get_main_table().get_item(key=credential_key(user_id, credential_id)))


def list_credentials(user_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(f"USER#{user_id}") & Key("sk").begins_with("PASSKEY#"),
    )
    return [c for c in (public_view(it) for it in items) if c]


def update_sign_count(*, user_id: str, credential_id: str, sign_count: int) -> None:
    get_main_table().update_fields(
        key=credential_key(user_id, credential_id),
        fields={"signCount": int(sign_count), "lastUsedAt": now_iso()},
    )


def save_challenge(*, user_id: str, kind: str, challenge: str) -> None:
    get_main_table().put_item(
        item={
            **challenge_key(user_id, kind),
            "entityType": "PasskeyChallenge",
            "challenge": challenge,
            "expiresAt": int(time.time()) + CHALLENGE_TTL_SECONDS,
            # DynamoDB TTL attribute; expiry is still checked on read.
            "ttl": int(time.time()) + CHALLENGE_TTL_SECONDS,
        }
    )


def consume_challenge(*, user_id: str, kind: str) -> str | None:
    """Delete and return the pending challenge; None if absent or expired (single use)."""
    old = get_main_table().delete_item(key=challenge_key(user_id, kind))
    if not old:
        return None
    if int(old.get("expiresAt") or 0) < int(time.time()):
        return None
    return str(old.get("challenge") or "") or None
