"""Role resolution over permission records.

A permission row says "contact C has role R on target T". The resolver reads
that row and nothing else: it never caches, and an absent row means no access.
Callers decide what a role allows; the helpers below encode the rules the
routers share (organization visibility, proposal edit rights, lead protection).
"""

from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Attr

from ..auth.tenant import TenantContext
from ..db.dynamodb.errors import DdbConflict, DdbNotFound
from ..db.dynamodb.table import get_main_table
from ..observability.logging import get_logger
from . import permissions_repo, proposals_repo
from .records import now_iso

log = get_logger("access_control")

ORGANIZATION = "organization"
PROPOSAL = "proposal"
SOLUTION = "solution"

ORGANIZATION_ROLES = ("owner", "admin", "member")
PROPOSAL_ROLES = ("lead", "team", "viewer")
SOLUTION_ROLES = ("owner", "team", "viewer")

ROLES_BY_TARGET = {
    ORGANIZATION: ORGANIZATION_ROLES,
    PROPOSAL: PROPOSAL_ROLES,
    SOLUTION: SOLUTION_ROLES,
}

ORG_ADMIN_ROLES = frozenset({"owner", "admin"})
PROPOSAL_EDIT_ROLES = frozenset({"lead", "team"})
SOLUTION_EDIT_ROLES = frozenset({"owner", "team"})

LEAD = "lead"


class LeadProtectionError(Exception):
    """Raised for any change that would leave a proposal without exactly one lead."""


def resolve_role(*, contact_id: str | None, target_entity: str, target_id: str | None) -> str | None:
    if not contact_id or not target_id:
        return None
    perm = permissions_repo.get_permission(target_entity=target_entity, target_id=target_id, permitted_id=contact_id)
    return str(perm["role"]) if perm and perm.get("role") else None


def validate_role(target_entity: str, role: str) -> str:
    allowed = ROLES_BY_TARGET.get(target_entity, ())
    r = str(role or "").strip().lower()
    if r not in allowed:
        raise ValueError(f"role must be one of {', '.join(allowed)}")
    return r


# --- organizations ---


def can_view_organization(ctx: TenantContext, org: dict[str, Any]) -> bool:
    owner = org.get("ownerOrganizationId")
    if owner:
        return owner == ctx.organization_id
    # A tenant's own org: visible to anyone holding a role on it.
    return org.get("id") == ctx.organization_id and ctx.role is not None


def can_manage_organization(ctx: TenantContext, org: dict[str, Any]) -> bool:
    owner = org.get("ownerOrganizationId")
    if owner:
        return owner == ctx.organization_id
    return org.get("id") == ctx.organization_id and ctx.role in ORG_ADMIN_ROLES


# --- proposals ---

# Row conditions checked at write time, so a concurrent lead change cancels the
# write instead of leaving a proposal with zero or two leads.
NOT_LEAD = Attr("pk").not_exists() | Attr("role").ne(LEAD)
IS_LEAD = Attr("role").eq(LEAD)


def find_lead(proposal_id: str) -> dict[str, Any] | None:
    for perm in permissions_repo.list_permissions_for_target(target_entity=PROPOSAL, target_id=proposal_id):
        if perm.get("role") == LEAD:
            return perm
    return None


def _commit(ops: list[dict[str, Any]], message: str) -> None:
    try:
        get_main_table().transact_write(ops=ops)
    except DdbConflict as e:
        raise LeadProtectionError(message) from e


def set_proposal_role(
    *, proposal_id: str, contact_id: str, role: str, transfer_lead: bool = False
) -> tuple[dict[str, Any], bool]:
    """Upsert a contact's role on a proposal, keeping exactly one lead.

    - The current lead cannot be downgraded directly.
    - Granting "lead" to someone else requires `transfer_lead`, which demotes the
      previous lead to "team" in the same transaction.

    The proposal item records `leadContactId`; every lead change is conditioned
    on it, and every other role write is conditioned on the row not being the lead.
    """
    role = validate_role(PROPOSAL, role)
    current = permissions_repo.get_permission(target_entity=PROPOSAL, target_id=proposal_id, permitted_id=contact_id)
    current_role = current.get("role") if current else None

    if current_role == LEAD and role != LEAD:
        raise LeadProtectionError("The proposal lead cannot be downgraded; transfer the lead to another contact first")
    if current_role == LEAD:
        return current or {}, False

    if role == LEAD:
        previous = find_lead(proposal_id)
        if previous is not None and not transfer_lead:
            raise LeadProtectionError("Proposal already has a lead; set transferLead to hand it over")
        return _grant_lead(proposal_id=proposal_id, contact_id=contact_id, previous=previous, current=current)

    op, item = permissions_repo.tx_put_role(
        target_entity=PROPOSAL,
        target_id=proposal_id,
        role=role,
        permitted_id=contact_id,
        existing=current,
        condition=NOT_LEAD,
    )
    _commit([op], "The proposal lead cannot be downgraded; transfer the lead to another contact first")
    return permissions_repo.normalize_permission_for_api(item) or {}, current is None


def _grant_lead(
    *, proposal_id: str, contact_id: str, previous: dict[str, Any] | None, current: dict[str, Any] | None
) -> tuple[dict[str, Any], bool]:
    t = get_main_table()
    previous_id = previous["permittedEntityId"] if previous else None
    lead_unchanged = Attr("leadContactId").not_exists()
    if previous_id:
        lead_unchanged = lead_unchanged | Attr("leadContactId").eq(previous_id)

    ops = [
        t.tx_update_fields(
            key=proposals_repo.proposal_key(proposal_id),
            fields={"leadContactId": contact_id},
            condition=lead_unchanged,
        )
    ]
    if previous_id:
        prev_key = permissions_repo.permission_key(PROPOSAL, proposal_id, permissions_repo.CONTACT, previous_id)
        ops.append(t.tx_update_fields(key=prev_key, fields={"role": "team", "updatedAt": now_iso()}, condition=IS_LEAD))

    op, item = permissions_repo.tx_put_role(
        target_entity=PROPOSAL,
        target_id=proposal_id,
        role=LEAD,
        permitted_id=contact_id,
        existing=current,
        condition=NOT_LEAD,
    )
    ops.append(op)
    _commit(ops, "The proposal lead changed while this request ran; reload and try again")

    log.info(
        "proposal_lead_transferred",
        proposal_id=proposal_id,
        from_contact_id=previous_id,
        to_contact_id=contact_id,
    )
    return permissions_repo.normalize_permission_for_api(item) or {}, current is None


def remove_proposal_permission(*, proposal_id: str, contact_id: str) -> None:
    current = permissions_repo.get_permission(target_entity=PROPOSAL, target_id=proposal_id, permitted_id=contact_id)
    if current is None:
        raise DdbNotFound(message="Permission not found", operation="DeleteItem")
    if current.get("role") == LEAD:
        raise LeadProtectionError("The proposal lead cannot be removed; transfer the lead to another contact first")
    t = get_main_table()
    key = permissions_repo.permission_key(PROPOSAL, proposal_id, permissions_repo.CONTACT, contact_id)
    _commit(
        [t.tx_delete(key=key, must_exist=True, condition=Attr("role").ne(LEAD))],
        "The proposal lead cannot be removed; transfer the lead to another contact first",
    )
