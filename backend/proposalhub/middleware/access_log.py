from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger


def _caller(request: Request) -> dict[str, str | None]:
    user = getattr(request.state, "user", None)
    return {
        "user_id": getattr(user, "sub", None),
        "organization_id": getattr(user, "organization_id", None),
    }


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    One structured access log line per request.
    """

    def __init__(self, app, *, exclude_paths: set[str] | None = None):
        super().__init__(app)
        self._exclude = exclude_paths or set()
        self._log = get_logger("access")

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in self._exclude:
            return await call_next(request)

        start = time.perf_counter()
        method = request.method.upper()
        client_ip = request.client.host if request.client else None

        try:
            response = await call_next(request)
        except Exception:
            self._log.exception(
                "request_error",
                http_method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
                client_ip=client_ip,
                **_caller(request),
            )
            raise

        self._log.info(
            "request",
            http_method=method,
            path=path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000.0, 2),
            client_ip=client_ip,
            **_caller(request),
        )
        return response
