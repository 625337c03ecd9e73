from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import ORJSONResponse

from .settings import get_settings

PROBLEM_JSON = "application/problem+json"


def default_title(status_code: int) -> str:
    if status_code >= 500:
        return "Internal Server Error"
    try:
        return HTTPStatus(int(status_code)).phrase
    except ValueError:
        return "Error"


def _request_id(request: Request) -> str | None:
    rid = getattr(getattr(request, "state", None), "request_id", None)
    if rid:
        return str(rid)
    hdr = request.headers.get("x-request-id")
    return str(hdr) if hdr else None


def problem_payload(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": type or "about:blank",
        "title": title or default_title(int(status_code)),
        "status": int(status_code),
    }
    if detail:
        payload["detail"] = str(detail)

    path = str(getattr(request.url, "path", "") or "")
    if path:
        payload["instance"] = path

    rid = _request_id(request)
    if rid:
        payload["requestId"] = rid

    if errors:
        payload["errors"] = errors
    if extensions:
        # Extension members live in one namespace so they never shadow RFC7807 keys.
        payload["extensions"] = extensions
    return payload


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    type: str = "about:blank",
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
) -> ORJSONResponse:
    # Never leak internal details in production for server errors.
    if int(status_code) >= 500 and get_settings().is_production:
        detail = None
        extensions = None

    return ORJSONResponse(
        status_code=int(status_code),
        content=problem_payload(
            request=request,
            status_code=int(status_code),
            title=title,
            detail=detail,
            type=type,
            errors=errors,
            extensions=extensions,
        ),
        media_type=PROBLEM_JSON,
    )
