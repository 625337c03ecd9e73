from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict, DdbNotFound
from ..observability.logging import get_logger
from . import contacts_repo, teams_repo

log = get_logger("team_membership")


class AlreadyTeamMember(Exception):
    pass


def _merge(contact: dict[str, Any], membership: dict[str, Any]) -> dict[str, Any]:
    return {
        **contact,
        "teamMembershipId": membership["id"],
        "teamId": membership["teamId"],
        "teamType": membership["teamType"],
        "joinedAt": membership.get("createdAt"),
    }


def add_member(*, team_id: str, team_type: str, contact_id: str) -> dict[str, Any]:
    """Add a contact to a team scope and return the contact merged with the membership.

    The membership key is (team, contact), so a concurrent duplicate insert fails
    on the conditional write instead of creating a second row.
    """
    contact = contacts_repo.get_contact(contact_id)
    if not contact:
        raise DdbNotFound(message="Contact not found", operation="GetItem")

    try:
        membership = teams_repo.put_membership(team_id=team_id, team_type=team_type, contact_id=contact_id)
    except DdbConflict as e:
        raise AlreadyTeamMember("Contact is already a team member") from e

    log.info("team_member_added", team_id=team_id, team_type=team_type, contact_id=contact_id)
    return _merge(contact, membership)


def create_contact_and_add(*, team_id: str, team_type: str, data: dict[str, Any], organization_id: str) -> dict[str, Any]:
    contact = contacts_repo.create_contact(data=data, organization_id=organization_id)
    return add_member(team_id=team_id, team_type=team_type, contact_id=contact["id"])


def remove_member(*, team_id: str, team_type: str, contact_id: str) -> None:
    teams_repo.delete_membership(team_id=team_id, team_type=team_type, contact_id=contact_id)
    log.info("team_member_removed", team_id=team_id, team_type=team_type, contact_id=contact_id)


def is_member(*, team_id: str, team_type: str, contact_id: str) -> bool:
    return teams_repo.get_membership(team_id=team_id, team_type=team_type, contact_id=contact_id) is not None


def list_members(*, team_id: str, team_type: str) -> list[dict[str, Any]]:
    """Memberships for the scope joined to their contacts with a single batch read."""
    memberships = teams_repo.list_memberships(team_id=team_id, team_type=team_type)
    contacts = contacts_repo.get_contacts([m["contactId"] for m in memberships])

    out: list[dict[str, Any]] = []
    for m in memberships:
        contact = contacts.get(m["contactId"])
        if contact is None:
            log.warning("team_member_contact_missing", team_id=team_id, team_type=team_type, contact_id=m["contactId"])
            continue
        out.append(_merge(contact, m))
    out.sort(key=lambda c: str(c.get("nameLower") or ""))
    return out
