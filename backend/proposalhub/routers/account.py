from __future__ import annotations

from fastapi import APIRouter, Body, HTTPException, Request

from ..services import access_control, accounts_repo, organizations_repo, permissions_repo, users_repo
from .deps import current_tenant, require_fields

router = APIRouter(tags=["account"])


@router.get("/account")
def get_account(request: Request):
    ctx = current_tenant(request)
    perms = permissions_repo.list_permissions_for_contact(
        ctx.contact_id, target_entity=access_control.ORGANIZATION
    )
    orgs = organizations_repo.get_organizations([p["targetEntityId"] for p in perms])
    organizations = [
        {
            "id": p["targetEntityId"],
            "name": orgs[p["targetEntityId"]].get("name"),
            "role": p.get("role"),
            "logoUrl": orgs[p["targetEntityId"]].get("logoUrl"),
        }
        for p in perms
        if p["targetEntityId"] in orgs
    ]
    organizations.sort(key=lambda o: str(o.get("name") or "").lower())

    return {
        "user": users_repo.get_user(ctx.user_id),
        "organization": orgs.get(ctx.organization_id) or organizations_repo.get_organization(ctx.organization_id),
        "account": accounts_repo.get_account_for_organization(ctx.organization_id),
        "role": ctx.role,
        "organizations": organizations,
    }


@router.put("/account")
def put_account(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    require_fields(body, "organizationId")
    org_id = str(body.get("organizationId")).strip()

    existing = accounts_repo.get_account_for_organization(org_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Account not found")
    role = access_control.resolve_role(
        contact_id=ctx.contact_id, target_entity=access_control.ORGANIZATION, target_id=org_id
    )
    if role != "owner":
        raise HTTPException(status_code=403, detail="Only the organization owner can update the account")

    try:
        return accounts_repo.update_account(org_id, existing, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
