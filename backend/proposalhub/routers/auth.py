from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request

from ..auth import passkeys
from ..observability.logging import get_logger
from ..services import access_control, contacts_repo, organizations_repo, users_repo
from ..services.tenants import EmailAlreadyRegistered, provision_tenant
from .deps import current_session, current_tenant, require_fields, session_response, token_for

router = APIRouter(tags=["auth"])

log = get_logger("auth")

POST_SIGNIN_REDIRECT = "/manage/proposals"


def _user_for_session(request: Request) -> dict[str, Any]:
    session = current_session(request)
    user = users_repo.get_user(str(session.sub))
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


@router.post("/auth/signup")
def signup(body: dict = Body(default_factory=dict)):
    require_fields(body, "email", "organizationName")
    email = users_repo.normalize_email(body.get("email"))
    if "@" not in email:
        raise HTTPException(status_code=400, detail="A valid email is required")
    try:
        out = provision_tenant(
            email=email,
            name=str(body.get("name") or "").strip() or None,
            organization_name=str(body.get("organizationName")).strip(),
        )
    except EmailAlreadyRegistered as e:
        raise HTTPException(status_code=409, detail=str(e)) from e

    token = token_for(out["user"])
    return session_response(
        {"token": token, "user": out["user"], "organization": out["organization"]},
        token=token,
        status_code=201,
    )


@router.post("/auth/passkey/start-registration")
def start_registration(request: Request, body: dict = Body(default_factory=dict)):
    user = _user_for_session(request)
    requested = str(body.get("id") or "").strip()
    if requested and requested != user["id"]:
        raise HTTPException(status_code=403, detail="Forbidden")
    return passkeys.start_registration(user)


@router.post("/auth/passkey/verify-registration")
def verify_registration(request: Request, body: dict = Body(default_factory=dict)):
    user = _user_for_session(request)
    attestation = body.get("attestationResponse")
    if not isinstance(attestation, dict):
        raise HTTPException(status_code=400, detail="attestationResponse is required")
    try:
        passkeys.finish_registration(user_id=user["id"], attestation=attestation)
    except passkeys.PasskeyError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e
    return {"verified": True}


@router.post("/auth/passkey/start-authentication")
def start_authentication(body: dict = Body(default_factory=dict)):
    email = users_repo.normalize_email(body.get("email"))
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    user = users_repo.get_user_by_email(email)
    if not user:
        raise HTTPException(status_code=400, detail="User not found")
    try:
        return passkeys.start_authentication(user)
    except passkeys.PasskeyError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e


@router.post("/auth/passkey/verify-authentication")
def verify_authentication(body: dict = Body(default_factory=dict)):
    email = users_repo.normalize_email(body.get("email"))
    assertion = body.get("assertion")
    if not email or not isinstance(assertion, dict):
        raise HTTPException(status_code=400, detail="email and assertion are required")
    user = users_repo.get_user_by_email(email)
    if not user:
        raise HTTPException(status_code=400, detail="User not found")
    try:
        passkeys.finish_authentication(user_id=user["id"], assertion=assertion)
    except passkeys.PasskeyError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    token = token_for(user)
    log.info("user_signed_in", user_id=user["id"], method="passkey")
    return session_response({"verified": True, "token": token, "redirectUrl": POST_SIGNIN_REDIRECT}, token=token)


@router.get("/auth/me")
def me(request: Request):
    ctx = current_tenant(request)
    user = users_repo.get_user(ctx.user_id)
    return {
        "userId": ctx.user_id,
        "email": ctx.email,
        "contactId": ctx.contact_id,
        "organizationId": ctx.organization_id,
        "role": ctx.role,
        "user": user,
        "contact": contacts_repo.get_contact(ctx.contact_id),
    }


@router.post("/switch-org")
def switch_org(request: Request, body: dict = Body(default_factory=dict)):
    session = current_session(request)
    require_fields(body, "organizationId")
    org_id = str(body.get("organizationId")).strip()
    contact_id = str(getattr(session, "contact_id", "") or "")

    role = access_control.resolve_role(
        contact_id=contact_id, target_entity=access_control.ORGANIZATION, target_id=org_id
    )
    if role is None or not organizations_repo.get_organization(org_id):
        raise HTTPException(status_code=403, detail="Not a member of this organization")

    user = users_repo.set_active_organization(str(session.sub), org_id)
    token = token_for(user, organization_id=org_id)
    log.info("organization_switched", user_id=session.sub, organization_id=org_id, role=role)
    return session_response({"success": True, "token": token}, token=token)
