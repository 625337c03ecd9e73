from __future__ import annotations

from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.table import GSI1, get_main_table
from .records import now_iso, public_view

TEAM_TYPES = ("organization", "proposal", "solution", "opportunity")


def membership_id(team_id: str, team_type: str, contact_id: str) -> str:
    return f"{team_id}:{team_type}:{contact_id}"


def team_pk(team_type: str, team_id: str) -> str:
    return f"TEAM#{team_type}#{team_id}"


def team_key(team_type: str, team_id: str, contact_id: str) -> dict[str, str]:
    # One item per (team, contact): the key itself is the uniqueness constraint.
    return {"pk": team_pk(team_type, team_id), "sk": f"CONTACT#{contact_id}"}


def contact_teams_pk(contact_id: str) -> str:
    return f"CONTACT#{contact_id}#TEAMS"


def normalize_team_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def build_team_item(*, team_id: str, team_type: str, contact_id: str) -> dict[str, Any]:
    if team_type not in TEAM_TYPES:
        raise ValueError(f"teamType must be one of {', '.join(TEAM_TYPES)}")
    now = now_iso()
    return {
        **team_key(team_type, team_id, contact_id),
        "entityType": "Team",
        "id": membership_id(team_id, team_type, contact_id),
        "teamId": team_id,
        "teamType": team_type,
        "contactId": contact_id,
        "createdAt": now,
        "updatedAt": now,
        "gsi1pk": contact_teams_pk(contact_id),
        "gsi1sk": f"{team_type}#{team_id}",
    }


def put_membership(*, team_id: str, team_type: str, contact_id: str) -> dict[str, Any]:
    """Insert the membership; raises DdbConflict if it already exists."""
    item = build_team_item(team_id=team_id, team_type=team_type, contact_id=contact_id)
    get_main_table().put_item(item=item, if_not_exists=True)
    return normalize_team_for_api(item) or {}


def get_membership(*, team_id: str, team_type: str, contact_id: str) -> dict[str, Any] | None:
    return normalize_team_for_api(get_main_table().get_item(key=team_key(team_type, team_id, contact_id)))


def delete_membership(*, team_id: str, team_type: str, contact_id: str) -> None:
    """Raises DdbNotFound if the contact was not a member."""
    get_main_table().delete_item(key=team_key(team_type, team_id, contact_id), must_exist=True)


def list_memberships(*, team_id: str, team_type: str) -> list[dict[str, Any]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(team_pk(team_type, team_id)) & Key("sk").begins_with("CONTACT#"),
    )
    return [m for m in (normalize_team_for_api(it) for it in items) if m]


def list_memberships_for_contact(contact_id: str, team_type: str | None = None) -> list[dict[str, Any]]:
    cond = Key("gsi1pk").eq(contact_teams_pk(contact_id))
    if team_type:
        cond = cond & Key("gsi1sk").begins_with(f"{team_type}#")
    items = get_main_table().query_all(index_name=GSI1, key_condition_expression=cond)
    return [m for m in (normalize_team_for_api(it) for it in items) if m]


def membership_keys_for_team(*, team_id: str, team_type: str) -> list[dict[str, str]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(team_pk(team_type, team_id)) & Key("sk").begins_with("CONTACT#"),
    )
    return [{"pk": it["pk"], "sk": it["sk"]} for it in items]
