from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from . import __version__
from .db.dynamodb.errors import DdbError
from .middleware.access_log import AccessLogMiddleware
from .middleware.auth import AuthMiddleware
from .middleware.cors import build_allowed_origin_regex, build_allowed_origins
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .observability.otel import configure_otel, instrument_app
from .problem_details import problem_response
from .routers.account import router as account_router
from .routers.auth import router as auth_router
from .routers.companies import router as companies_router
from .routers.contacts import router as contacts_router
from .routers.generate import router as generate_router
from .routers.health import router as health_router
from .routers.opportunities import router as opportunities_router
from .routers.organization_team import router as organization_team_router
from .routers.organizations import router as organizations_router
from .routers.proposals import router as proposals_router
from .routers.solutions import router as solutions_router
from .routers.uploads import router as uploads_router
from .settings import settings


def create_app() -> FastAPI:
    # Logging must be configured before the app starts handling requests.
    configure_logging(level="INFO")
    log = get_logger("startup")

    settings.require_in_production()
    # Optional tracing (no-op unless OTEL_ENABLED=true)
    configure_otel(settings)

    app = FastAPI(
        title="ProposalHub Backend",
        version=__version__,
        default_response_class=ORJSONResponse,
        # Avoid 307/308 redirects between /path and /path/ behind proxies.
        redirect_slashes=False,
    )

    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Middlewares (order matters; last added is outermost)
    # Auth runs inside CORS so auth failures still get CORS headers.
    app.add_middleware(AuthMiddleware)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/", "/health"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=build_allowed_origins(
            frontend_base_url=settings.frontend_base_url,
            frontend_urls=settings.frontend_urls,
        ),
        allow_origin_regex=build_allowed_origin_regex(settings.frontend_base_url),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
        max_age=3000,
    )
    # Outermost: request context (request-id) wraps everything.
    app.add_middleware(RequestContextMiddleware)

    # Error handlers
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, _ddb_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    # Routes. /organizations/team must be registered before /organizations/{id}.
    app.include_router(health_router)
    app.include_router(auth_router, prefix="/api")
    app.include_router(account_router, prefix="/api")
    app.include_router(organization_team_router, prefix="/api")
    app.include_router(organizations_router, prefix="/api")
    app.include_router(contacts_router, prefix="/api")
    app.include_router(proposals_router, prefix="/api")
    app.include_router(solutions_router, prefix="/api")
    app.include_router(opportunities_router, prefix="/api")
    app.include_router(companies_router, prefix="/api")
    app.include_router(uploads_router, prefix="/api")
    app.include_router(generate_router, prefix="/api")

    # Instrument after routers/middleware are attached.
    instrument_app(app, settings)

    return app


def _ddb_error_handler(request: Request, exc: DdbError) -> Response:
    status_code = int(exc.http_status)
    if status_code >= 500:
        get_logger("storage").error(
            "storage_error",
            error_type=exc.__class__.__name__,
            operation=exc.operation,
            path=request.url.path,
        )

    # In production, problem_response already suppresses 5xx detail.
    return problem_response(
        request=request,
        status_code=status_code,
        title=exc.http_title,
        detail=exc.message or None,
        extensions=exc.to_extensions(),
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)

    title: str | None = None
    extensions: dict | None = None
    safe_detail: str | None = None

    if isinstance(detail, dict):
        extensions = detail
        if isinstance(detail.get("error"), str):
            title = detail.get("error")
        msg = detail.get("message")
        if isinstance(msg, str) and msg.strip():
            safe_detail = msg.strip()
    elif detail is not None:
        safe_detail = str(detail)

    if status_code == 404:
        title = title or "Not Found"
        safe_detail = safe_detail or "Route not found"

    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=safe_detail,
        extensions=extensions,
    )


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        errors.append(
            {
                "location": list(loc) if isinstance(loc, (list, tuple)) else [],
                "path": ".".join(str(x) for x in loc if x != "body"),
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Full traceback goes to the logs; the response stays generic in production.
    rid = getattr(getattr(request, "state", None), "request_id", None)
    user = getattr(getattr(request, "state", None), "user", None)
    get_logger("unhandled").exception(
        "unhandled_exception",
        request_id=str(rid) if rid else None,
        http_method=str(request.method or "").upper() or None,
        path=request.url.path,
        user_sub=getattr(user, "sub", None),
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )


app = create_app()
