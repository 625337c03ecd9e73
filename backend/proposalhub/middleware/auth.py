from __future__ import annotations

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.sessions import SessionError, verify_session_token
from ..observability.logging import get_logger
from ..problem_details import problem_response
from ..settings import settings

PUBLIC_PATHS = frozenset(
    {
        "/",
        "/health",
        "/api/auth/signup",
        "/api/auth/passkey/start-authentication",
        "/api/auth/passkey/verify-authentication",
    }
)


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS


def session_token_from(request: Request) -> str | None:
    auth = request.headers.get("authorization")
    if auth:
        parts = str(auth).split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise HTTPException(status_code=401, detail="Unauthorized")
        return parts[1].strip() or None
    return request.cookies.get(settings.session_cookie_name) or None


def require_auth(request: Request) -> None:
    path = request.url.path

    # CORSMiddleware answers preflight; never demand a session for it.
    if request.method.upper() == "OPTIONS":
        return
    if not path.startswith("/api/") or is_public_path(path):
        return

    token = session_token_from(request)
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        request.state.user = verify_session_token(token)
    except SessionError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Session enforcement for /api/* as ASGI middleware.

    Added before CORSMiddleware so CORS wraps auth failures too.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            require_auth(request)
        except HTTPException as exc:
            get_logger("auth_middleware").info(
                "auth_middleware_denied",
                status_code=exc.status_code,
                path=request.url.path,
            )
            return problem_response(
                request=request,
                status_code=exc.status_code,
                title="Unauthorized" if exc.status_code == 401 else None,
                detail=str(exc.detail) if isinstance(exc.detail, str) else None,
            )
        return await call_next(request)
