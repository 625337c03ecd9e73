from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any

from jose import JWTError, jwt

from ..settings import settings

_ALGORITHM = "HS256"
_ISSUER = "proposalhub"
_DEV_SECRET = "proposalhub-dev-session-secret"


class SessionError(Exception):
    status_code = 401


@dataclass
class VerifiedSession:
    """Identity carried by an app-issued session token."""

    sub: str
    email: str | None
    contact_id: str | None
    organization_id: str | None
    claims: dict[str, Any]


def _secret() -> str:
    if settings.session_secret:
        return str(settings.session_secret)
    if settings.is_production:
        raise RuntimeError("SESSION_SECRET is not set")
    return _DEV_SECRET


def issue_session_token(
    *,
    user_id: str,
    email: str | None,
    contact_id: str | None,
    organization_id: str | None,
    ttl_seconds: int | None = None,
) -> str:
    now = int(time.time())
    ttl = int(ttl_seconds or settings.session_ttl_hours * 3600)
    claims: dict[str, Any] = {
        "iss": _ISSUER,
        "sub": str(user_id),
        "email": email,
        "cid": contact_id,
        "org": organization_id,
        "iat": now,
        "exp": now + max(60, ttl),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _secret(), algorithm=_ALGORITHM)


def verify_session_token(token: str) -> VerifiedSession:
    if not token:
        raise SessionError("missing token")

    try:
        claims = jwt.decode(
            token,
            _secret(),
            algorithms=[_ALGORITHM],
            issuer=_ISSUER,
            options={"verify_aud": False},
        )
    except JWTError as e:
        raise SessionError("invalid or expired session") from e

    sub = str(claims.get("sub") or "").strip()
    if not sub:
        raise SessionError("invalid session subject")

    return VerifiedSession(
        sub=sub,
        email=claims.get("email"),
        contact_id=claims.get("cid"),
        organization_id=claims.get("org"),
        claims=claims,
    )
