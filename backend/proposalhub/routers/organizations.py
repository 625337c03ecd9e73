from __future__ import annotations

from fastapi import APIRouter, Body, HTTPException, Request
from starlette.responses import Response

from ..services import access_control, organizations_repo, team_membership
from .deps import current_tenant, require_fields, viewable_organization

router = APIRouter(tags=["organizations"])


@router.get("/organizations")
def list_organizations(request: Request):
    ctx = current_tenant(request)
    return organizations_repo.list_organizations_for_owner(ctx.organization_id)


@router.post("/organizations", status_code=201)
def create_organization(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    require_fields(body, "name")
    return organizations_repo.create_organization(data=body, owner_organization_id=ctx.organization_id)


@router.get("/organizations/search")
def search_organizations(request: Request, query: str = ""):
    ctx = current_tenant(request)
    q = query.strip()
    if not q:
        return []
    orgs = organizations_repo.search_organizations(owner_organization_id=ctx.organization_id, query=q)
    return [{"label": o.get("name"), "value": o["id"], "count": o.get("contactCount", 0), "data": o} for o in orgs]


@router.get("/organizations/{organization_id}")
def get_organization(request: Request, organization_id: str):
    ctx = current_tenant(request)
    return viewable_organization(ctx, organization_id)


def _update(request: Request, organization_id: str, body: dict):
    ctx = current_tenant(request)
    existing = organizations_repo.get_organization(organization_id)
    if not existing or not access_control.can_manage_organization(ctx, existing):
        raise HTTPException(status_code=404, detail="Organization not found")
    if "name" in body and not str(body.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")
    return organizations_repo.update_organization(organization_id, existing, body)


@router.put("/organizations/{organization_id}")
def put_organization(request: Request, organization_id: str, body: dict = Body(default_factory=dict)):
    return _update(request, organization_id, body)


@router.patch("/organizations/{organization_id}")
def patch_organization(request: Request, organization_id: str, body: dict = Body(default_factory=dict)):
    return _update(request, organization_id, body)


@router.delete("/organizations/{organization_id}", status_code=204)
def delete_organization(request: Request, organization_id: str):
    ctx = current_tenant(request)
    existing = organizations_repo.get_organization(organization_id)
    # Only customer organizations can be deleted, and only by their owning tenant.
    if not existing or existing.get("ownerOrganizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Organization not found")
    organizations_repo.delete_organization_cascade(organization_id)
    return Response(status_code=204)


@router.get("/organizations/{organization_id}/team")
def organization_team(request: Request, organization_id: str):
    ctx = current_tenant(request)
    viewable_organization(ctx, organization_id)
    return team_membership.list_members(team_id=organization_id, team_type="organization")
