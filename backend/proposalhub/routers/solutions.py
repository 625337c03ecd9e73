from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, File, HTTPException, Request, UploadFile
from starlette.responses import Response

from ..auth.tenant import TenantContext
from ..observability.logging import get_logger
from ..services import access_control, permissions_repo, proposals_repo, s3_assets, solutions_repo
from ..services.access_control import PROPOSAL, SOLUTION, SOLUTION_EDIT_ROLES
from ..services.records import new_id, now_iso
from .deps import current_tenant, require_fields

router = APIRouter(tags=["solutions"])

log = get_logger("solutions")

MAX_MEDIA_BYTES = 50 * 1024 * 1024


def _solution_for(
    ctx: TenantContext, solution_id: str, *, roles: frozenset[str] | None = None
) -> tuple[dict[str, Any], str]:
    solution = solutions_repo.get_solution(solution_id)
    if not solution or solution.get("organizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Solution not found")
    role = access_control.resolve_role(contact_id=ctx.contact_id, target_entity=SOLUTION, target_id=solution_id)
    if role is None or (roles is not None and role not in roles):
        raise HTTPException(status_code=403, detail="Forbidden")
    return solution, role


@router.get("/solutions")
def list_solutions(request: Request):
    ctx = current_tenant(request)
    perms = permissions_repo.list_permissions_for_contact(ctx.contact_id, target_entity=SOLUTION)
    role_by_id = {p["targetEntityId"]: p.get("role") for p in perms}
    out = [
        {**s, "role": role_by_id.get(s["id"])}
        for s in solutions_repo.get_solutions(list(role_by_id))
        if s.get("organizationId") == ctx.organization_id
    ]
    out.sort(key=lambda s: str(s.get("createdAt") or ""), reverse=True)
    return out


@router.post("/solutions", status_code=201)
def create_solution(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    try:
        return solutions_repo.create_solution(
            data=body, organization_id=ctx.organization_id, owner_contact_id=ctx.contact_id
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/solutions/extract", status_code=201)
def extract_solution(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    require_fields(body, "proposalId")
    proposal_id = str(body.get("proposalId")).strip()
    proposal = proposals_repo.get_proposal(proposal_id)
    if not proposal or proposal.get("ownerOrganizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Proposal not found")
    if access_control.resolve_role(contact_id=ctx.contact_id, target_entity=PROPOSAL, target_id=proposal_id) is None:
        raise HTTPException(status_code=403, detail="Forbidden")

    solution = solutions_repo.create_solution(
        data={
            "title": f"Solution from {proposal.get('title') or 'Untitled proposal'}",
            "sections": solutions_repo.sections_from_proposal(proposal.get("sections") or []),
        },
        organization_id=ctx.organization_id,
        owner_contact_id=ctx.contact_id,
    )
    log.info("solution_extracted", solution_id=solution["id"], proposal_id=proposal_id)
    return solution


@router.get("/solutions/{solution_id}")
def get_solution(request: Request, solution_id: str):
    ctx = current_tenant(request)
    solution, role = _solution_for(ctx, solution_id)
    return {**solution, "role": role}


@router.patch("/solutions/{solution_id}")
def patch_solution(request: Request, solution_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing, _ = _solution_for(ctx, solution_id, roles=SOLUTION_EDIT_ROLES)
    try:
        return solutions_repo.update_solution(solution_id, existing, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.delete("/solutions/{solution_id}", status_code=204)
def delete_solution(request: Request, solution_id: str):
    ctx = current_tenant(request)
    _solution_for(ctx, solution_id, roles=frozenset({"owner"}))
    solutions_repo.delete_solution_cascade(solution_id)
    return Response(status_code=204)


@router.post("/solutions/{solution_id}/media", status_code=201)
def upload_media(request: Request, solution_id: str, file: UploadFile = File(...)):
    ctx = current_tenant(request)
    existing, _ = _solution_for(ctx, solution_id, roles=SOLUTION_EDIT_ROLES)

    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(data) > MAX_MEDIA_BYTES:
        raise HTTPException(status_code=400, detail="File is too large")

    file_name = file.filename or "media"
    content_type = s3_assets.content_type_for(s3_assets.file_extension(file_name), file.content_type)
    key = s3_assets.make_solution_media_key(solution_id=solution_id, file_name=file_name)
    stored = s3_assets.store_bytes(key=key, data=data, content_type=content_type)

    asset = {
        "id": new_id("media"),
        "key": stored["key"],
        "url": stored["url"],
        "fileName": file_name,
        "contentType": content_type,
        "size": len(data),
        "uploadedBy": ctx.contact_id,
        "uploadedAt": now_iso(),
    }
    log.info("solution_media_uploaded", solution_id=solution_id, key=key, size=len(data))
    return solutions_repo.add_media_asset(solution_id, existing, asset)


@router.delete("/solutions/{solution_id}/media", status_code=204)
def delete_media(request: Request, solution_id: str, mediaId: str = ""):
    ctx = current_tenant(request)
    existing, _ = _solution_for(ctx, solution_id, roles=SOLUTION_EDIT_ROLES)
    if not mediaId.strip():
        raise HTTPException(status_code=400, detail="mediaId is required")
    removed = solutions_repo.remove_media_asset(solution_id, existing, mediaId.strip())
    if removed is None:
        raise HTTPException(status_code=404, detail="Media asset not found")
    if removed.get("key"):
        s3_assets.delete_object(key=str(removed["key"]))
    return Response(status_code=204)
