from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

from ...services.token_crypto import decrypt_string, encrypt_string
from .errors import DdbValidation

_TOKEN_VERSION = 1


def _json_default(v: Any) -> Any:
    # LastEvaluatedKey values come back from boto3 as Decimal for numeric keys.
    if isinstance(v, Decimal):
        return int(v) if v == v.to_integral_value() else float(v)
    raise TypeError(f"unsupported cursor value: {type(v).__name__}")


def encode_next_token(last_evaluated_key: dict[str, Any] | None) -> str | None:
    """Opaque, encrypted cursor so clients can't craft arbitrary start keys."""
    if not last_evaluated_key:
        return None
    payload = {"v": _TOKEN_VERSION, "lek": last_evaluated_key}
    return encrypt_string(json.dumps(payload, separators=(",", ":"), default=_json_default))


def decode_next_token(next_token: str | None) -> dict[str, Any] | None:
    if not next_token:
        return None

    raw = decrypt_string(next_token)
    if not raw:
        raise DdbValidation(message="Invalid nextToken")

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DdbValidation(message="Invalid nextToken") from e

    if not isinstance(payload, dict) or payload.get("v") != _TOKEN_VERSION:
        raise DdbValidation(message="Invalid nextToken")

    lek = payload.get("lek")
    if lek is not None and not isinstance(lek, dict):
        raise DdbValidation(message="Invalid nextToken")
    return lek or None
