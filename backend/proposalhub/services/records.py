from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

# Attributes that only exist for the table layout and never leave the API.
STORAGE_KEYS = ("pk", "sk", "gsi1pk", "gsi1sk", "entityType")

# Highest BMP private-use code point; sorts after any character a name will contain.
PREFIX_END = "\uf8ff"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def next_timestamp(previous: str | None) -> str:
    """`now_iso()`, nudged forward so it sorts strictly after `previous`."""
    now = now_iso()
    prev = parse_iso(previous)
    if prev is None or now > str(previous):
        return now
    return (prev + timedelta(microseconds=1)).isoformat(timespec="microseconds").replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


def lower_name(name: Any) -> str:
    return str(name or "").strip().lower()


def name_sort_key(name: Any, item_id: str) -> str:
    # Id suffix keeps sort keys unique when two records share a name.
    return f"{lower_name(name)}#{item_id}"


def prefix_bounds(query: str) -> tuple[str, str]:
    """Range covering every string that starts with `query`."""
    q = lower_name(query)
    return q, q + PREFIX_END


def plain(value: Any) -> Any:
    """Convert boto3 Decimals back to int/float so responses serialize."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [plain(v) for v in value]
    return value


def public_view(item: dict[str, Any] | None, *, drop: tuple[str, ...] = ()) -> dict[str, Any] | None:
    if not item:
        return None
    out = {k: plain(v) for k, v in item.items() if k not in STORAGE_KEYS and k not in drop}
    return out


def pick(data: dict[str, Any] | None, allowed: set[str] | frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in (data or {}).items() if k in allowed}
