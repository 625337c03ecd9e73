from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from ..observability.logging import get_logger
from .records import new_id, next_timestamp, now_iso, pick, public_view

log = get_logger("opportunities_repo")

OPPORTUNITY_STATUSES = ("draft", "active", "archived")
SOURCES = ("url", "file", "manual")

# Fields document analysis may fill in; also editable by hand.
EXTRACTED_FIELDS = frozenset(
    {
        "title",
        "summary",
        "issuer",
        "dueDate",
        "budget",
        "requirements",
        "evaluationCriteria",
        "sections",
    }
)

EDITABLE_FIELDS = EXTRACTED_FIELDS | {"status"}


def opportunity_key(opportunity_id: str) -> dict[str, str]:
    return {"pk": f"OPPORTUNITY#{opportunity_id}", "sk": "PROFILE"}


def org_opportunities_pk(organization_id: str) -> str:
    return f"ORG#{organization_id}#OPPORTUNITIES"


def normalize_opportunity_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def create_opportunity(
    *,
    organization_id: str,
    created_by: str,
    source: str,
    extracted: dict[str, Any] | None = None,
    source_url: str | None = None,
    source_file: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if source not in SOURCES:
        raise ValueError(f"method must be one of {', '.join(SOURCES)}")
    opportunity_id = new_id("opp")
    now = now_iso()
    item = {
        **opportunity_key(opportunity_id),
        "entityType": "Opportunity",
        **pick(extracted, EXTRACTED_FIELDS),
        "id": opportunity_id,
        "organizationId": organization_id,
        "status": "draft",
        "source": source,
        "sourceUrl": source_url,
        "sourceFile": source_file,
        "createdBy": created_by,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": org_opportunities_pk(organization_id),
        "gsi1sk": f"{now}#{opportunity_id}",
    }
    get_main_table().put_item(item=item, if_not_exists=True)
    log.info("opportunity_created", opportunity_id=opportunity_id, organization_id=organization_id, source=source)
    return normalize_opportunity_for_api(item) or {}


def get_opportunity(opportunity_id: str) -> dict[str, Any] | None:
    if not opportunity_id:
        return None
    return normalize_opportunity_for_api(get_main_table().get_item(key=opportunity_key(opportunity_id)))


def list_opportunities_for_organization(organization_id: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        index_name=GSI1,
        key_condition_expression=Key("gsi1pk").eq(org_opportunities_pk(organization_id)),
        scan_index_forward=False,
    )
    return [o for o in (normalize_opportunity_for_api(it) for it in items) if o]


def update_opportunity(opportunity_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = pick(updates, EDITABLE_FIELDS)
    if "status" in fields and fields["status"] not in OPPORTUNITY_STATUSES:
        raise ValueError(f"status must be one of {', '.join(OPPORTUNITY_STATUSES)}")
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))
    updated = get_main_table().update_fields(key=opportunity_key(opportunity_id), fields=fields)
    return normalize_opportunity_for_api(updated) or {}


def delete_opportunity(opportunity_id: str) -> None:
    get_main_table().delete_item(key=opportunity_key(opportunity_id), must_exist=True)
    log.info("opportunity_deleted", opportunity_id=opportunity_id)
