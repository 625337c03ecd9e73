from __future__ import annotations

from contextlib import contextmanager
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import ORJSONResponse

from ..ai.client import AiExhausted, AiNotConfigured, AiParseError, AiUpstreamError
from ..auth.sessions import issue_session_token
from ..auth.tenant import TenantContext
from ..integrations.errors import ProviderUnavailable
from ..services import access_control, contacts_repo, organizations_repo
from ..settings import settings


def current_session(request: Request):
    user = getattr(request.state, "user", None)
    if not user or not str(getattr(user, "sub", "") or "").strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def current_tenant(request: Request) -> TenantContext:
    """Tenant context for the session; 403 when it has no active organization."""
    cached = getattr(request.state, "tenant", None)
    if isinstance(cached, TenantContext):
        return cached

    user = current_session(request)
    contact_id = str(getattr(user, "contact_id", "") or "").strip()
    organization_id = str(getattr(user, "organization_id", "") or "").strip()
    if not contact_id or not organization_id:
        raise HTTPException(status_code=403, detail="No active organization")

    role = access_control.resolve_role(
        contact_id=contact_id, target_entity=access_control.ORGANIZATION, target_id=organization_id
    )
    ctx = TenantContext(
        user_id=str(user.sub),
        email=getattr(user, "email", None),
        contact_id=contact_id,
        organization_id=organization_id,
        role=role,
    )
    request.state.tenant = ctx
    return ctx


def require_fields(body: dict[str, Any], *names: str) -> None:
    missing = [n for n in names if not str(body.get(n) or "").strip()]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required fields: {', '.join(missing)}")


def viewable_organization(ctx: TenantContext, organization_id: str) -> dict[str, Any]:
    """The organization if it exists and the tenant may see it; 404 otherwise."""
    org = organizations_repo.get_organization(organization_id) if organization_id else None
    if not org or not access_control.can_view_organization(ctx, org):
        raise HTTPException(status_code=404, detail="Organization not found")
    return org


def scoped_contact(ctx: TenantContext, contact_id: str) -> dict[str, Any]:
    """The contact if its home organization is visible to the tenant; 404 otherwise."""
    contact = contacts_repo.get_contact(contact_id) if contact_id else None
    org_id = str((contact or {}).get("organizationId") or "")
    org = organizations_repo.get_organization(org_id) if org_id else None
    if not contact or not org or not access_control.can_view_organization(ctx, org):
        raise HTTPException(status_code=404, detail="Contact not found")
    return contact


def session_response(content: dict[str, Any], *, token: str, status_code: int = 200) -> ORJSONResponse:
    resp = ORJSONResponse(status_code=status_code, content=content)
    resp.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=int(settings.session_ttl_hours * 3600),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return resp


def token_for(user: dict[str, Any], *, organization_id: str | None = None) -> str:
    return issue_session_token(
        user_id=user["id"],
        email=user.get("email"),
        contact_id=user.get("contactId"),
        organization_id=organization_id or user.get("organizationId"),
    )


@contextmanager
def upstream_errors():
    """Map AI and enrichment provider failures to HTTP errors."""
    try:
        yield
    except AiNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    except (AiExhausted, AiUpstreamError, AiParseError) as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
