from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.responses import ORJSONResponse
from starlette.responses import Response

from ..db.dynamodb.errors import DdbNotFound
from ..integrations.errors import EnrichmentError, LinkedInSessionError
from ..integrations.linkedin_profile import get_profile_enricher
from ..observability.logging import get_logger
from ..services import contact_enrichment, contacts_repo, linkedin_sessions_repo, team_membership
from ..services.team_membership import AlreadyTeamMember
from .deps import current_tenant, scoped_contact, upstream_errors

router = APIRouter(tags=["organization-team"])

log = get_logger("organization_team")

TEAM_TYPE = "organization"


def _member_contact(ctx, member_id: str) -> dict[str, Any]:
    contact = scoped_contact(ctx, member_id)
    if not team_membership.is_member(team_id=ctx.organization_id, team_type=TEAM_TYPE, contact_id=member_id):
        raise HTTPException(status_code=404, detail="Team member not found")
    return contact


@router.get("/organizations/team")
def list_team(request: Request):
    ctx = current_tenant(request)
    return team_membership.list_members(team_id=ctx.organization_id, team_type=TEAM_TYPE)


@router.post("/organizations/team", status_code=201)
def add_team_member(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    contact_id = str(body.get("contactId") or "").strip()
    try:
        if contact_id:
            scoped_contact(ctx, contact_id)
            return team_membership.add_member(team_id=ctx.organization_id, team_type=TEAM_TYPE, contact_id=contact_id)

        if not contacts_repo.display_name(body):
            raise HTTPException(status_code=400, detail="contactId or name is required")
        return team_membership.create_contact_and_add(
            team_id=ctx.organization_id, team_type=TEAM_TYPE, data=body, organization_id=ctx.organization_id
        )
    except AlreadyTeamMember as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.patch("/organizations/team/{member_id}")
def update_team_member(request: Request, member_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    if body.get("isTeamMember") is False:
        try:
            team_membership.remove_member(team_id=ctx.organization_id, team_type=TEAM_TYPE, contact_id=member_id)
        except DdbNotFound as e:
            raise HTTPException(status_code=404, detail="Team member not found") from e
        return Response(status_code=204)

    contact = _member_contact(ctx, member_id)
    return contacts_repo.update_contact(member_id, contact, body)


@router.delete("/organizations/team/{member_id}", status_code=204)
def remove_team_member(request: Request, member_id: str):
    ctx = current_tenant(request)
    try:
        team_membership.remove_member(team_id=ctx.organization_id, team_type=TEAM_TYPE, contact_id=member_id)
    except DdbNotFound as e:
        raise HTTPException(status_code=404, detail="Team member not found") from e
    return Response(status_code=204)


@router.post("/organizations/team/{member_id}/ai-search")
def ai_search_member(request: Request, member_id: str):
    ctx = current_tenant(request)
    contact = _member_contact(ctx, member_id)
    with upstream_errors():
        try:
            return contact_enrichment.search_contact_profile(contact)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e


@router.post("/organizations/team/{member_id}/enrich")
def enrich_member(request: Request, member_id: str):
    ctx = current_tenant(request)
    contact = _member_contact(ctx, member_id)
    if not contact.get("linkedIn"):
        raise HTTPException(status_code=400, detail="Contact has no LinkedIn profile URL")

    with upstream_errors():
        try:
            return contact_enrichment.enrich_from_linkedin(
                user_id=ctx.user_id, contact=contact, enricher=get_profile_enricher()
            )
        except LinkedInSessionError as e:
            log.info("linkedin_session_required", user_id=ctx.user_id, contact_id=member_id)
            return ORJSONResponse(status_code=401, content={"error": str(e), "needsAuth": True})
        except EnrichmentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e


@router.put("/linkedin/session")
def put_linkedin_session(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    storage_state = body.get("storageState")
    if not isinstance(storage_state, dict):
        cookies = body.get("cookies")
        if not isinstance(cookies, list) or not cookies:
            raise HTTPException(status_code=400, detail="cookies or storageState is required")
        storage_state = {"cookies": cookies, "origins": []}
    out = linkedin_sessions_repo.save_session(user_id=ctx.user_id, storage_state=storage_state)
    log.info("linkedin_session_saved", user_id=ctx.user_id, expires_at=out["expiresAt"])
    return out
