from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from ..observability.logging import get_logger
from . import organizations_repo, permissions_repo, teams_repo
from .records import new_id, next_timestamp, now_iso, parse_iso, pick, public_view

log = get_logger("proposals_repo")

PROPOSAL_STATUSES = ("draft", "submitted", "approved", "rejected")
SECTION_TYPES = ("text", "fields")

# Free-text brief captured before writing starts.
REQUIREMENT_FIELDS = ("overview", "requirements", "timeline", "budget", "notes")

DRAFT_WINDOW_DAYS = 30
RECENT_DRAFTS = 10

EDITABLE_FIELDS = frozenset(
    {
        "title",
        "status",
        "forOrganizationId",
        "forContactId",
        "sections",
        "referenceDocuments",
        "layout",
        *REQUIREMENT_FIELDS,
    }
)


def proposal_pk(proposal_id: str) -> str:
    return f"PROPOSAL#{proposal_id}"


def proposal_key(proposal_id: str) -> dict[str, str]:
    return {"pk": proposal_pk(proposal_id), "sk": "PROFILE"}


def owner_proposals_pk(owner_organization_id: str) -> str:
    return f"OWNER#{owner_organization_id}#PROPOSALS"


def normalize_proposal_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    out = public_view(item)
    if out is None:
        return None
    out["sections"] = out.get("sections") or []
    out["referenceDocuments"] = out.get("referenceDocuments") or []
    return out


def normalize_sections(raw: Any) -> list[dict[str, Any]]:
    """Coerce client-supplied sections into the stored shape, keeping order."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("sections must be a list")
    out: list[dict[str, Any]] = []
    for s in raw:
        if not isinstance(s, dict):
            raise ValueError("each section must be an object")
        section_type = str(s.get("type") or "text")
        if section_type not in SECTION_TYPES:
            raise ValueError(f"section type must be one of {', '.join(SECTION_TYPES)}")
        out.append(
            {
                **s,
                "id": str(s.get("id") or uuid.uuid4()),
                "title": str(s.get("title") or ""),
                "type": section_type,
                "content": s.get("content") if s.get("content") is not None else "",
                "images": list(s.get("images") or []),
            }
        )
    return out


def _validated(fields: dict[str, Any]) -> dict[str, Any]:
    if "status" in fields and fields["status"] not in PROPOSAL_STATUSES:
        raise ValueError(f"status must be one of {', '.join(PROPOSAL_STATUSES)}")
    if "sections" in fields:
        fields["sections"] = normalize_sections(fields["sections"])
    if "referenceDocuments" in fields and not isinstance(fields["referenceDocuments"], list):
        raise ValueError("referenceDocuments must be a list")
    if "layout" in fields and not isinstance(fields["layout"], dict):
        raise ValueError("layout must be an object")
    for name in REQUIREMENT_FIELDS:
        if name in fields:
            fields[name] = "" if fields[name] is None else str(fields[name])
    return fields


def build_proposal_item(*, data: dict[str, Any], owner_organization_id: str, created_by: str) -> dict[str, Any]:
    proposal_id = new_id("proposal")
    now = now_iso()
    fields = _validated(pick(data, EDITABLE_FIELDS))
    return {
        **proposal_key(proposal_id),
        "entityType": "Proposal",
        "title": "Untitled proposal",
        "status": "draft",
        "sections": [],
        "referenceDocuments": [],
        **fields,
        "id": proposal_id,
        "ownerOrganizationId": owner_organization_id,
        "createdBy": created_by,
        "leadContactId": created_by,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": owner_proposals_pk(owner_organization_id),
        "gsi1sk": f"{now}#{proposal_id}",
    }


def create_proposal(*, data: dict[str, Any], owner_organization_id: str, lead_contact_id: str) -> dict[str, Any]:
    """Create the proposal, its lead permission and the target org's proposalCount bump atomically."""
    t = get_main_table()
    item = build_proposal_item(data=data, owner_organization_id=owner_organization_id, created_by=lead_contact_id)
    t.transact_write(
        ops=[
            t.tx_put(item=item, if_not_exists=True),
            permissions_repo.tx_put_permission(
                target_entity="proposal", target_id=item["id"], role="lead", permitted_id=lead_contact_id
            ),
            organizations_repo.tx_adjust_counts(str(item.get("forOrganizationId") or ""), proposalCount=1),
        ]
    )
    log.info(
        "proposal_created",
        proposal_id=item["id"],
        owner_organization_id=owner_organization_id,
        for_organization_id=item.get("forOrganizationId"),
    )
    return normalize_proposal_for_api(item) or {}


def get_proposal(proposal_id: str) -> dict[str, Any] | None:
    if not proposal_id:
        return None
    return normalize_proposal_for_api(get_main_table().get_item(key=proposal_key(proposal_id)))


def get_proposals(proposal_ids: list[str]) -> list[dict[str, Any]]:
    items = get_main_table().batch_get(keys=[proposal_key(p) for p in proposal_ids if p])
    return [p for p in (normalize_proposal_for_api(it) for it in items) if p]


def list_proposals_for_owner(owner_organization_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(owner_proposals_pk(owner_organization_id)),
        scan_index_forward=False,
    )
    return [p for p in (normalize_proposal_for_api(it) for it in items) if p]


def list_recent_drafts(
    owner_organization_id: str, proposal_ids: set[str], *, now: datetime | None = None
) -> list[dict[str, Any]]:
    """Drafts among `proposal_ids` touched within the draft window, most recently updated first."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=DRAFT_WINDOW_DAYS)
    drafts = []
    for p in list_proposals_for_owner(owner_organization_id):
        updated = parse_iso(p.get("updatedAt"))
        if p["id"] in proposal_ids and p.get("status") == "draft" and updated and updated >= cutoff:
            drafts.append(p)
    drafts.sort(key=lambda p: str(p.get("updatedAt") or ""), reverse=True)
    return drafts[:RECENT_DRAFTS]


def requirements_view(proposal: dict[str, Any]) -> dict[str, Any]:
    return {
        **{name: str(proposal.get(name) or "") for name in REQUIREMENT_FIELDS},
        "referenceDocuments": proposal.get("referenceDocuments") or [],
    }


def update_proposal(proposal_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    t = get_main_table()
    fields = _validated(pick(updates, EDITABLE_FIELDS))
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))

    before = str(existing.get("forOrganizationId") or "")
    after = str(fields.get("forOrganizationId") or "") if "forOrganizationId" in fields else before
    if after == before:
        updated = t.update_fields(key=proposal_key(proposal_id), fields=fields)
        return normalize_proposal_for_api(updated) or {}

    # Moving the proposal between organizations shifts the counter in the same transaction.
    t.transact_write(
        ops=[
            t.tx_update_fields(key=proposal_key(proposal_id), fields=fields),
            organizations_repo.tx_release_counts(before, proposalCount=-1),
            organizations_repo.tx_adjust_counts(after, proposalCount=1),
        ]
    )
    return get_proposal(proposal_id) or {}


def delete_proposal_cascade(proposal: dict[str, Any]) -> None:
    """Delete the proposal with its subitems, permissions and team rows.

    Permission rows go in the same write as the proposal (or, past the
    transaction size limit, in the pieces committed before it), so the resolver
    never sees a permission for a proposal that no longer exists.
    """
    t = get_main_table()
    proposal_id = proposal["id"]
    own_items = t.query_all(key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)))
    sub_keys = [{"pk": it["pk"], "sk": it["sk"]} for it in own_items if it.get("sk") != "PROFILE"]
    perm_keys = permissions_repo.permission_keys_for_target(target_entity="proposal", target_id=proposal_id)
    team_keys = teams_repo.membership_keys_for_team(team_id=proposal_id, team_type="proposal")

    # Children first; the proposal delete and its counter release commit together, last.
    ops = [t.tx_delete(key=k) for k in sub_keys + team_keys + perm_keys]
    ops.append(t.tx_delete(key=proposal_key(proposal_id), must_exist=True))
    ops.append(organizations_repo.tx_release_counts(str(proposal.get("forOrganizationId") or ""), proposalCount=-1))
    t.transact_write(ops=ops)
    log.info(
        "proposal_deleted",
        proposal_id=proposal_id,
        permissions_deleted=len(perm_keys),
        subitems_deleted=len(sub_keys),
    )


def add_reference_document(proposal_id: str, existing: dict[str, Any], document: dict[str, Any]) -> dict[str, Any]:
    documents = [*list(existing.get("referenceDocuments") or []), document]
    updated = get_main_table().update_fields(
        key=proposal_key(proposal_id),
        fields={"referenceDocuments": documents, "updatedAt": next_timestamp(existing.get("updatedAt"))},
    )
    return normalize_proposal_for_api(updated) or {}


def remove_reference_document(proposal_id: str, existing: dict[str, Any], document_id: str) -> dict[str, Any] | None:
    """Drop the document from the proposal and return it, or None if it was not attached."""
    documents = list(existing.get("referenceDocuments") or [])
    removed = next((d for d in documents if isinstance(d, dict) and d.get("id") == document_id), None)
    if removed is None:
        return None
    get_main_table().update_fields(
        key=proposal_key(proposal_id),
        fields={
            "referenceDocuments": [d for d in documents if d is not removed],
            "updatedAt": next_timestamp(existing.get("updatedAt")),
        },
    )
    return removed
