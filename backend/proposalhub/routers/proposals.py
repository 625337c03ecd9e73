from __future__ import annotations

from contextlib import suppress
from typing import Any

from fastapi import APIRouter, Body, File, HTTPException, Request, UploadFile
from fastapi.responses import ORJSONResponse
from starlette.responses import Response

from ..ai.content import analyze_document_sections, generate_improvement
from ..auth.tenant import TenantContext
from ..db.dynamodb.errors import DdbNotFound
from ..observability.logging import get_logger
from ..services import (
    access_control,
    contacts_repo,
    organizations_repo,
    permissions_repo,
    proposals_repo,
    s3_assets,
    team_membership,
)
from ..services import proposal_activity_repo as activity
from ..services.access_control import LEAD, PROPOSAL, PROPOSAL_EDIT_ROLES, LeadProtectionError
from ..services.proposal_activity_repo import AlreadyInSection
from ..services.records import new_id, now_iso
from ..services.team_membership import AlreadyTeamMember
from .deps import current_tenant, require_fields, scoped_contact, upstream_errors, viewable_organization

router = APIRouter(tags=["proposals"])

log = get_logger("proposals")

MAX_DOCUMENT_BYTES = 25 * 1024 * 1024
ANALYZE_TYPES = ("markdown", "text")


def _proposal_for(
    ctx: TenantContext, proposal_id: str, *, roles: frozenset[str] | None = None
) -> tuple[dict[str, Any], str]:
    """The proposal and the caller's role on it; 404 outside the tenant, 403 without a fitting role."""
    proposal = proposals_repo.get_proposal(proposal_id)
    if not proposal or proposal.get("ownerOrganizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Proposal not found")
    role = access_control.resolve_role(contact_id=ctx.contact_id, target_entity=PROPOSAL, target_id=proposal_id)
    if role is None or (roles is not None and role not in roles):
        raise HTTPException(status_code=403, detail="Forbidden")
    return proposal, role


def _check_references(ctx: TenantContext, body: dict[str, Any]) -> None:
    org_id = str(body.get("forOrganizationId") or "").strip()
    if org_id:
        viewable_organization(ctx, org_id)
    contact_id = str(body.get("forContactId") or "").strip()
    if contact_id:
        scoped_contact(ctx, contact_id)


@router.get("/proposals")
def list_proposals(request: Request, contactId: str = ""):
    ctx = current_tenant(request)
    contact_id = contactId.strip() or ctx.contact_id
    perms = permissions_repo.list_permissions_for_contact(contact_id, target_entity=PROPOSAL)
    role_by_id = {p["targetEntityId"]: p.get("role") for p in perms}
    proposals = [
        {**p, "role": role_by_id.get(p["id"])}
        for p in proposals_repo.get_proposals(list(role_by_id))
        if p.get("ownerOrganizationId") == ctx.organization_id
    ]
    proposals.sort(key=lambda p: str(p.get("createdAt") or ""), reverse=True)
    return proposals


@router.post("/proposals", status_code=201)
def create_proposal(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _check_references(ctx, body)
    try:
        return proposals_repo.create_proposal(
            data=body, owner_organization_id=ctx.organization_id, lead_contact_id=ctx.contact_id
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.get("/proposals/drafts")
def list_recent_drafts(request: Request):
    ctx = current_tenant(request)
    perms = permissions_repo.list_permissions_for_contact(ctx.contact_id, target_entity=PROPOSAL)
    return proposals_repo.list_recent_drafts(ctx.organization_id, {p["targetEntityId"] for p in perms})


@router.get("/proposals/{proposal_id}")
def get_proposal(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    proposal, role = _proposal_for(ctx, proposal_id)
    return {**proposal, "role": role}


@router.patch("/proposals/{proposal_id}")
def patch_proposal(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing, _ = _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    _check_references(ctx, body)
    try:
        return proposals_repo.update_proposal(proposal_id, existing, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.delete("/proposals/{proposal_id}", status_code=204)
def delete_proposal(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    existing, _ = _proposal_for(ctx, proposal_id, roles=frozenset({LEAD}))
    proposals_repo.delete_proposal_cascade(existing)
    return Response(status_code=204)


# --- permissions ---


@router.get("/proposals/{proposal_id}/permissions")
def list_permissions(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    perms = permissions_repo.list_permissions_for_target(target_entity=PROPOSAL, target_id=proposal_id)
    contacts = contacts_repo.get_contacts([p["permittedEntityId"] for p in perms])
    return [{**p, "contact": contacts.get(p["permittedEntityId"])} for p in perms]


@router.post("/proposals/{proposal_id}/permissions")
def set_permission(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=frozenset({LEAD}))
    require_fields(body, "contactId", "role")
    contact_id = str(body.get("contactId")).strip()
    contact = scoped_contact(ctx, contact_id)

    try:
        perm, created = access_control.set_proposal_role(
            proposal_id=proposal_id,
            contact_id=contact_id,
            role=str(body.get("role")),
            transfer_lead=bool(body.get("transferLead")),
        )
    except LeadProtectionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    return ORJSONResponse(status_code=201 if created else 200, content={**perm, "contact": contact})


@router.delete("/proposals/{proposal_id}/permissions", status_code=204)
def delete_permission(request: Request, proposal_id: str, contactId: str = ""):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=frozenset({LEAD}))
    if not contactId.strip():
        raise HTTPException(status_code=400, detail="contactId is required")
    try:
        access_control.remove_proposal_permission(proposal_id=proposal_id, contact_id=contactId.strip())
    except DdbNotFound as e:
        raise HTTPException(status_code=404, detail="Permission not found") from e
    except LeadProtectionError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return Response(status_code=204)


# --- messages ---


@router.get("/proposals/{proposal_id}/messages")
def list_messages(request: Request, proposal_id: str, nextToken: str | None = None):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    return activity.list_messages(proposal_id=proposal_id, next_token=nextToken)


@router.post("/proposals/{proposal_id}/messages", status_code=201)
def add_message(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    try:
        return activity.add_message(proposal_id=proposal_id, data=body, author_contact_id=ctx.contact_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


# --- improvements ---


@router.get("/proposals/{proposal_id}/improvements")
def list_improvements(request: Request, proposal_id: str, sectionId: str = ""):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    if not sectionId.strip():
        raise HTTPException(status_code=400, detail="sectionId is required")
    return activity.list_improvements(proposal_id=proposal_id, section_id=sectionId.strip())


@router.post("/proposals/{proposal_id}/improvements", status_code=201)
def add_improvement(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    require_fields(body, "sectionId", "improved")
    return activity.add_improvement(
        proposal_id=proposal_id,
        section_id=str(body.get("sectionId")).strip(),
        original=str(body.get("original") or ""),
        improved=str(body.get("improved")),
        instructions=body.get("instructions"),
        model=body.get("model"),
        created_by=ctx.contact_id,
    )


@router.delete("/proposals/{proposal_id}/improvements", status_code=204)
def delete_improvement(request: Request, proposal_id: str, improvementId: str = ""):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    if not improvementId.strip():
        raise HTTPException(status_code=400, detail="improvementId is required")
    try:
        activity.delete_improvement(proposal_id=proposal_id, improvement_id=improvementId.strip())
    except DdbNotFound as e:
        raise HTTPException(status_code=404, detail="Improvement not found") from e
    return Response(status_code=204)


@router.post("/proposals/{proposal_id}/sections/{section_id}/improve")
def improve_section(request: Request, proposal_id: str, section_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    proposal, _ = _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    section = next((s for s in proposal.get("sections") or [] if s.get("id") == section_id), None)
    if section is None:
        raise HTTPException(status_code=404, detail="Section not found")

    instructions = str(body.get("instructions") or "").strip() or None
    with upstream_errors():
        out = generate_improvement(section, proposal.get("sections") or [], instructions)

    original = section.get("content") if isinstance(section.get("content"), str) else ""
    improvement = activity.add_improvement(
        proposal_id=proposal_id,
        section_id=section_id,
        original=original,
        improved=out["content"],
        instructions=instructions,
        model=out.get("modelUsed"),
        created_by=ctx.contact_id,
    )
    return {**out, "improvement": improvement}


# --- section contacts ---


@router.get("/proposals/{proposal_id}/section-contacts")
def list_section_contacts(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    return activity.list_section_contacts(proposal_id)


@router.post("/proposals/{proposal_id}/section-contacts", status_code=201)
def add_section_contact(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    require_fields(body, "sectionId", "contactId")
    contact_id = str(body.get("contactId")).strip()
    scoped_contact(ctx, contact_id)
    try:
        return activity.add_section_contact(
            proposal_id=proposal_id,
            section_id=str(body.get("sectionId")).strip(),
            contact_id=contact_id,
            created_by=ctx.contact_id,
        )
    except DdbNotFound as e:
        raise HTTPException(status_code=404, detail="Contact not found") from e
    except AlreadyInSection as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.delete("/proposals/{proposal_id}/section-contacts", status_code=204)
def remove_section_contact(request: Request, proposal_id: str, sectionId: str = "", contactId: str = ""):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    if not sectionId.strip() or not contactId.strip():
        raise HTTPException(status_code=400, detail="sectionId and contactId are required")
    try:
        activity.remove_section_contact(
            proposal_id=proposal_id, section_id=sectionId.strip(), contact_id=contactId.strip()
        )
    except DdbNotFound as e:
        raise HTTPException(status_code=404, detail="Contact is not in this section") from e
    return Response(status_code=204)


# --- views ---


@router.get("/proposals/{proposal_id}/views")
def list_views(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    return activity.list_views(proposal_id=proposal_id)


@router.post("/proposals/{proposal_id}/views", status_code=201)
def record_view(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    duration = body.get("duration")
    valid = duration is None or (isinstance(duration, (int, float)) and not isinstance(duration, bool) and duration >= 0)
    if not valid:
        raise HTTPException(status_code=400, detail="duration must be a non-negative number of seconds")
    return activity.record_view(
        proposal_id=proposal_id,
        contact_id=ctx.contact_id,
        user_agent=request.headers.get("user-agent"),
        section_id=str(body.get("sectionId") or "").strip() or None,
        duration=duration,
    )


# --- team ---


@router.get("/proposals/{proposal_id}/team")
def list_team(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id)
    return team_membership.list_members(team_id=proposal_id, team_type="proposal")


@router.post("/proposals/{proposal_id}/team", status_code=201)
def add_team_member(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    require_fields(body, "contactId")
    contact_id = str(body.get("contactId")).strip()
    scoped_contact(ctx, contact_id)
    try:
        member = team_membership.add_member(team_id=proposal_id, team_type="proposal", contact_id=contact_id)
    except DdbNotFound as e:
        raise HTTPException(status_code=404, detail="Contact not found") from e
    except AlreadyTeamMember as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    # Team members can edit; keep any stronger role they already hold.
    if access_control.resolve_role(contact_id=contact_id, target_entity=PROPOSAL, target_id=proposal_id) is None:
        # A concurrent promotion to lead already covers editing.
        with suppress(LeadProtectionError):
            access_control.set_proposal_role(proposal_id=proposal_id, contact_id=contact_id, role="team")
    return member


# --- requirements ---


@router.get("/proposals/{proposal_id}/requirements")
def get_requirements(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    proposal, _ = _proposal_for(ctx, proposal_id)
    org_id = str(proposal.get("forOrganizationId") or "")
    contact_id = str(proposal.get("forContactId") or "")
    return {
        "organization": organizations_repo.get_organization(org_id) if org_id else None,
        "leadContact": contacts_repo.get_contact(contact_id) if contact_id else None,
        **proposals_repo.requirements_view(proposal),
    }


@router.put("/proposals/{proposal_id}/requirements")
def put_requirements(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing, _ = _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    updates = {
        k: v
        for k, v in body.items()
        if k in proposals_repo.REQUIREMENT_FIELDS or k in ("forOrganizationId", "forContactId")
    }
    _check_references(ctx, updates)
    try:
        updated = proposals_repo.update_proposal(proposal_id, existing, updates)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"success": True, **proposals_repo.requirements_view(updated)}


# --- reference documents ---


@router.post("/proposals/{proposal_id}/documents", status_code=201)
def add_document(request: Request, proposal_id: str, file: UploadFile = File(...)):
    ctx = current_tenant(request)
    existing, _ = _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)

    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(data) > MAX_DOCUMENT_BYTES:
        raise HTTPException(status_code=400, detail="File is too large")

    file_name = file.filename or "document"
    content_type = s3_assets.content_type_for(s3_assets.file_extension(file_name), file.content_type)
    key = s3_assets.make_proposal_reference_key(proposal_id=proposal_id, file_name=file_name)
    stored = s3_assets.store_bytes(key=key, data=data, content_type=content_type)

    document = {
        "id": new_id("doc"),
        "name": file_name,
        "key": stored["key"],
        "url": stored["url"],
        "contentType": content_type,
        "size": len(data),
        "uploadedAt": now_iso(),
        "uploadedBy": ctx.contact_id,
    }
    proposals_repo.add_reference_document(proposal_id, existing, document)
    log.info("proposal_document_added", proposal_id=proposal_id, key=key, size=len(data))
    return document


@router.delete("/proposals/{proposal_id}/documents", status_code=204)
def remove_document(request: Request, proposal_id: str, documentId: str = ""):
    ctx = current_tenant(request)
    existing, _ = _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    if not documentId.strip():
        raise HTTPException(status_code=400, detail="documentId is required")
    removed = proposals_repo.remove_reference_document(proposal_id, existing, documentId.strip())
    if removed is None:
        raise HTTPException(status_code=404, detail="Document not found")
    if removed.get("key"):
        s3_assets.delete_object(key=str(removed["key"]))
    return Response(status_code=204)


@router.post("/proposals/{proposal_id}/analyze-document")
def analyze_document(request: Request, proposal_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    proposal, _ = _proposal_for(ctx, proposal_id, roles=PROPOSAL_EDIT_ROLES)
    require_fields(body, "content")
    document_type = str(body.get("type") or "markdown")
    if document_type not in ANALYZE_TYPES:
        raise HTTPException(status_code=400, detail=f"type must be one of {', '.join(ANALYZE_TYPES)}")
    sections = proposal.get("sections") or []
    if not sections:
        raise HTTPException(status_code=400, detail="Proposal has no sections")
    with upstream_errors():
        return analyze_document_sections(str(body.get("content")), sections, document_type=document_type)


# --- analysis ---


def _has_content(section: dict[str, Any]) -> bool:
    content = section.get("content")
    if isinstance(content, dict):
        return any(str(v or "").strip() for v in content.values())
    return bool(str(content or "").strip())


def _draft_checklist(proposal: dict[str, Any]) -> list[dict[str, Any]]:
    proposal_id = proposal["id"]
    perms = permissions_repo.list_permissions_for_target(target_entity=PROPOSAL, target_id=proposal_id)
    steps = [
        (
            "requirements",
            "Set requirements",
            "Choose the organization and lead contact the proposal is for.",
            bool(proposal.get("forOrganizationId") and proposal.get("forContactId")),
            "requirements",
        ),
        (
            "team",
            "Build your team",
            "Add the people who will write and review the proposal.",
            bool(team_membership.list_members(team_id=proposal_id, team_type="proposal")),
            "team",
        ),
        (
            "content",
            "Write content",
            "Draft the proposal sections.",
            any(_has_content(s) for s in proposal.get("sections") or []),
            "content",
        ),
        (
            "review",
            "Review content",
            "Refine the sections with suggested improvements.",
            activity.has_improvements(proposal_id),
            "content",
        ),
        (
            "layout",
            "Choose a layout",
            "Pick a template for the finished proposal.",
            bool((proposal.get("layout") or {}).get("template")),
            "layout",
        ),
        (
            "recipients",
            "Add recipients",
            "Give the people receiving the proposal access to view it.",
            any(p.get("role") == "viewer" for p in perms),
            "share",
        ),
        ("publish", "Publish", "Submit the proposal once everything is ready.", False, "share"),
    ]
    return [
        {"id": step_id, "title": title, "description": description, "completed": completed, "tab": tab}
        for step_id, title, description, completed, tab in steps
    ]


@router.get("/proposals/{proposal_id}/analysis")
def get_analysis(request: Request, proposal_id: str):
    ctx = current_tenant(request)
    proposal, _ = _proposal_for(ctx, proposal_id)
    if proposal.get("status") == "draft":
        return {"type": "todo", "items": _draft_checklist(proposal)}
    return {"type": "metrics", "data": activity.view_metrics(proposal_id)}
