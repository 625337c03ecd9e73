from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from ..observability.logging import get_logger
from . import permissions_repo, teams_repo
from .records import new_id, next_timestamp, now_iso, pick, public_view

log = get_logger("solutions_repo")

SOLUTION_STATUSES = ("draft", "published", "archived")
SECTION_KEYS = ("description", "benefits", "painPoints", "timeline", "competitivePosition", "pricing")

EDITABLE_FIELDS = frozenset({"title", "status", "sections"})


def solution_key(solution_id: str) -> dict[str, str]:
    return {"pk": f"SOLUTION#{solution_id}", "sk": "PROFILE"}


def org_solutions_pk(organization_id: str) -> str:
    return f"ORG#{organization_id}#SOLUTIONS"


def empty_sections() -> dict[str, dict[str, Any]]:
    return {k: {"content": ""} for k in SECTION_KEYS}


def normalize_solution_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    out = public_view(item)
    if out is None:
        return None
    out["sections"] = {**empty_sections(), **(out.get("sections") or {})}
    out["mediaAssets"] = out.get("mediaAssets") or []
    return out


def _validated(fields: dict[str, Any], existing_sections: dict[str, Any] | None = None) -> dict[str, Any]:
    if "status" in fields and fields["status"] not in SOLUTION_STATUSES:
        raise ValueError(f"status must be one of {', '.join(SOLUTION_STATUSES)}")
    if "sections" in fields:
        raw = fields["sections"]
        if not isinstance(raw, dict):
            raise ValueError("sections must be an object keyed by section name")
        unknown = sorted(set(raw) - set(SECTION_KEYS))
        if unknown:
            raise ValueError(f"unknown solution sections: {', '.join(unknown)}")
        merged = {**empty_sections(), **(existing_sections or {})}
        for k, v in raw.items():
            merged[k] = v if isinstance(v, dict) else {"content": "" if v is None else str(v)}
        fields["sections"] = merged
    return fields


# Proposal sections each solution section is seeded from, by id or title.
PROPOSAL_SOURCES = {
    "description": ("projectScope", "project scope"),
    "benefits": ("executiveSummary", "executive summary"),
    "painPoints": ("projectBackground", "project background"),
    "timeline": ("projectTimeline", "project timeline"),
    "pricing": ("pricing", "pricing"),
}


def sections_from_proposal(proposal_sections: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    def _content(section_id: str, title: str) -> str:
        for s in proposal_sections:
            if s.get("id") == section_id or str(s.get("title") or "").strip().lower() == title:
                content = s.get("content")
                if isinstance(content, dict):
                    return "\n\n".join(str(v) for v in content.values() if v)
                return str(content or "")
        return ""

    sections = empty_sections()
    for key, (section_id, title) in PROPOSAL_SOURCES.items():
        sections[key] = {"content": _content(section_id, title)}
    return sections


def build_solution_item(*, data: dict[str, Any], organization_id: str, created_by: str) -> dict[str, Any]:
    solution_id = new_id("solution")
    now = now_iso()
    fields = _validated(pick(data, EDITABLE_FIELDS))
    return {
        **solution_key(solution_id),
        "entityType": "Solution",
        "title": "Untitled solution",
        "sections": empty_sections(),
        **fields,
        "status": "draft",
        "id": solution_id,
        "organizationId": organization_id,
        "mediaAssets": [],
        "createdBy": created_by,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": org_solutions_pk(organization_id),
        "gsi1sk": f"{now}#{solution_id}",
    }


def create_solution(*, data: dict[str, Any], organization_id: str, owner_contact_id: str) -> dict[str, Any]:
    t = get_main_table()
    item = build_solution_item(data=data, organization_id=organization_id, created_by=owner_contact_id)
    t.transact_write(
        ops=[
            t.tx_put(item=item, if_not_exists=True),
            permissions_repo.tx_put_permission(
                target_entity="solution", target_id=item["id"], role="owner", permitted_id=owner_contact_id
            ),
        ]
    )
    log.info("solution_created", solution_id=item["id"], organization_id=organization_id)
    return normalize_solution_for_api(item) or {}


def get_solution(solution_id: str) -> dict[str, Any] | None:
    if not solution_id:
        return None
    return normalize_solution_for_api(get_main_table().get_item(key=solution_key(solution_id)))


def get_solutions(solution_ids: list[str]) -> list[dict[str, Any]]:
    items = get_main_table().batch_get(keys=[solution_key(s) for s in solution_ids if s])
    return [s for s in (normalize_solution_for_api(it) for it in items) if s]


def list_solutions_for_organization(organization_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(org_solutions_pk(organization_id)),
        scan_index_forward=False,
    )
    return [s for s in (normalize_solution_for_api(it) for it in items) if s]


def update_solution(solution_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = _validated(pick(updates, EDITABLE_FIELDS), existing.get("sections"))
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))
    updated = get_main_table().update_fields(key=solution_key(solution_id), fields=fields)
    return normalize_solution_for_api(updated) or {}


def add_media_asset(solution_id: str, existing: dict[str, Any], asset: dict[str, Any]) -> dict[str, Any]:
    assets = [*list(existing.get("mediaAssets") or []), asset]
    updated = get_main_table().update_fields(
        key=solution_key(solution_id),
        fields={"mediaAssets": assets, "updatedAt": next_timestamp(existing.get("updatedAt"))},
    )
    return normalize_solution_for_api(updated) or {}


def remove_media_asset(solution_id: str, existing: dict[str, Any], media_id: str) -> dict[str, Any] | None:
    """Drop the asset from the solution and return it, or None if it was not attached."""
    assets = list(existing.get("mediaAssets") or [])
    removed = next((a for a in assets if a.get("id") == media_id), None)
    if removed is None:
        return None
    get_main_table().update_fields(
        key=solution_key(solution_id),
        fields={
            "mediaAssets": [a for a in assets if a.get("id") != media_id],
            "updatedAt": next_timestamp(existing.get("updatedAt")),
        },
    )
    return removed


def delete_solution_cascade(solution_id: str) -> None:
    t = get_main_table()
    perm_keys = permissions_repo.permission_keys_for_target(target_entity="solution", target_id=solution_id)
    team_keys = teams_repo.membership_keys_for_team(team_id=solution_id, team_type="solution")
    ops = [t.tx_delete(key=solution_key(solution_id), must_exist=True)]
    ops.extend(t.tx_delete(key=k) for k in perm_keys + team_keys)
    t.transact_write(ops=ops)
    log.info("solution_deleted", solution_id=solution_id, permissions_deleted=len(perm_keys))
