from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from starlette.responses import Response

from ..auth.tenant import TenantContext
from ..services import access_control, contacts_repo, organizations_repo
from .deps import current_tenant, require_fields, scoped_contact

router = APIRouter(tags=["contacts"])


def _accessible_organization(ctx: TenantContext, organization_id: str) -> dict[str, Any]:
    org = organizations_repo.get_organization(organization_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    if not access_control.can_view_organization(ctx, org):
        raise HTTPException(status_code=403, detail="Forbidden")
    return org


@router.get("/contacts")
def list_contacts(request: Request, organization: str = ""):
    ctx = current_tenant(request)
    if not organization.strip():
        raise HTTPException(status_code=400, detail="organization is required")
    _accessible_organization(ctx, organization.strip())
    return contacts_repo.list_contacts_for_organization(organization.strip())


@router.post("/contacts", status_code=201)
def create_contact(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    require_fields(body, "name", "organizationId")
    org_id = str(body.get("organizationId")).strip()
    _accessible_organization(ctx, org_id)
    return contacts_repo.create_contact(data=body, organization_id=org_id)


@router.get("/contacts/search")
def search_contacts(request: Request, q: str = "", organizationId: str = ""):
    ctx = current_tenant(request)
    org_id = organizationId.strip() or ctx.organization_id
    _accessible_organization(ctx, org_id)
    if not q.strip():
        return []
    return contacts_repo.search_contacts(organization_id=org_id, query=q)


@router.get("/contacts/{contact_id}")
def get_contact(request: Request, contact_id: str):
    ctx = current_tenant(request)
    return scoped_contact(ctx, contact_id)


@router.patch("/contacts/{contact_id}")
def patch_contact(request: Request, contact_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing = scoped_contact(ctx, contact_id)
    return contacts_repo.update_contact(contact_id, existing, body)


@router.delete("/contacts/{contact_id}", status_code=204)
def delete_contact(request: Request, contact_id: str):
    ctx = current_tenant(request)
    existing = scoped_contact(ctx, contact_id)
    contacts_repo.delete_contact(existing)
    return Response(status_code=204)
