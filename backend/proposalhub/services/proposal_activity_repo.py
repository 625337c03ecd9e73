"""Items stored under a proposal's partition: chat messages, section improvements,
views and section contacts.

Sort keys start with the item kind, and timestamped kinds embed the creation time,
so "newest N" is a reverse query with a limit.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from boto3.dynamodb.conditions import Key

from ..db.dynamodb.errors import DdbConflict, DdbNotFound
from ..db.dynamodb.table import get_main_table
from . import contacts_repo
from .proposals_repo import proposal_pk
from .records import new_id, now_iso, public_view

MESSAGES_PER_PAGE = 20
IMPROVEMENTS_PER_SECTION = 5
RECENT_VIEWS = 50

MESSAGE_ROLES = ("user", "assistant", "system")


class AlreadyInSection(Exception):
    pass


def _strip(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item, drop=("proposalId",))


# --- messages ---


def add_message(*, proposal_id: str, data: dict[str, Any], author_contact_id: str | None) -> dict[str, Any]:
    role = str(data.get("role") or "user")
    if role not in MESSAGE_ROLES:
        raise ValueError(f"role must be one of {', '.join(MESSAGE_ROLES)}")
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        raise ValueError("content is required")

    suggestion = data.get("suggestion")
    progress = data.get("progress")
    files = data.get("files")
    message_id = new_id("msg")
    ts = now_iso()
    item = {
        "pk": proposal_pk(proposal_id),
        "sk": f"MESSAGE#{ts}#{message_id}",
        "entityType": "ProposalMessage",
        "id": message_id,
        "proposalId": proposal_id,
        "role": role,
        "content": content,
        "model": data.get("model"),
        "suggestion": (
            {"content": suggestion.get("content"), "sectionId": suggestion.get("sectionId")}
            if isinstance(suggestion, dict)
            else None
        ),
        "progress": (
            {k: progress.get(k) for k in ("stage", "current", "total", "message")}
            if isinstance(progress, dict)
            else None
        ),
        "files": (
            [{"name": f.get("name"), "type": f.get("type"), "size": f.get("size")} for f in files if isinstance(f, dict)]
            if isinstance(files, list)
            else None
        ),
        "authorContactId": author_contact_id,
        "timestamp": ts,
    }
    get_main_table().put_item(item=item)
    return _strip(item) or {}


def list_messages(*, proposal_id: str, next_token: str | None = None) -> dict[str, Any]:
    """Newest page first from the table, returned oldest-to-newest for display."""
    page = get_main_table().query_page(
        key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)) & Key("sk").begins_with("MESSAGE#"),
        limit=MESSAGES_PER_PAGE,
        scan_index_forward=False,
        next_token=next_token,
    )
    messages = [m for m in (_strip(it) for it in page.items) if m]
    messages.reverse()
    return {"messages": messages, "hasMore": page.next_token is not None, "nextToken": page.next_token}


# --- improvements ---


def add_improvement(
    *,
    proposal_id: str,
    section_id: str,
    original: str,
    improved: str,
    instructions: str | None = None,
    model: str | None = None,
    created_by: str | None = None,
) -> dict[str, Any]:
    improvement_id = new_id("impr")
    ts = now_iso()
    item = {
        "pk": proposal_pk(proposal_id),
        "sk": f"IMPROVEMENT#{section_id}#{ts}#{improvement_id}",
        "entityType": "ProposalImprovement",
        "id": improvement_id,
        "proposalId": proposal_id,
        "sectionId": section_id,
        "original": original,
        "improved": improved,
        "instructions": instructions,
        "model": model,
        "createdBy": created_by,
        "timestamp": ts,
    }
    get_main_table().put_item(item=item)
    return _strip(item) or {}


def list_improvements(*, proposal_id: str, section_id: str) -> list[dict[str, Any]]:
    page = get_main_table().query_page(
        key_condition_expression=Key("pk").eq(proposal_pk(proposal_id))
        & Key("sk").begins_with(f"IMPROVEMENT#{section_id}#"),
        limit=IMPROVEMENTS_PER_SECTION,
        scan_index_forward=False,
    )
    return [i for i in (_strip(it) for it in page.items) if i]


def has_improvements(proposal_id: str) -> bool:
    page = get_main_table().query_page(
        key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)) & Key("sk").begins_with("IMPROVEMENT#"),
        limit=1,
    )
    return bool(page.items)


def delete_improvement(*, proposal_id: str, improvement_id: str) -> None:
    t = get_main_table()
    items = t.query_all(
        key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)) & Key("sk").begins_with("IMPROVEMENT#"),
    )
    match = next((it for it in items if it.get("id") == improvement_id), None)
    if match is None:
        raise DdbNotFound(message="Improvement not found", operation="DeleteItem")
    t.delete_item(key={"pk": match["pk"], "sk": match["sk"]}, must_exist=True)


# --- views ---


def record_view(
    *,
    proposal_id: str,
    contact_id: str | None,
    user_agent: str | None = None,
    section_id: str | None = None,
    duration: float | None = None,
) -> dict[str, Any]:
    view_id = new_id("view")
    ts = now_iso()
    item = {
        "pk": proposal_pk(proposal_id),
        "sk": f"VIEW#{ts}#{view_id}",
        "entityType": "ProposalView",
        "id": view_id,
        "proposalId": proposal_id,
        "contactId": contact_id,
        "userAgent": (user_agent or "")[:256] or None,
        "sectionId": section_id or None,
        "duration": Decimal(str(duration)) if duration is not None else None,
        "viewedAt": ts,
    }
    get_main_table().put_item(item=item)
    return _strip(item) or {}


def list_views(*, proposal_id: str, limit: int = RECENT_VIEWS) -> list[dict[str, Any]]:
    page = get_main_table().query_page(
        key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)) & Key("sk").begins_with("VIEW#"),
        limit=limit,
        scan_index_forward=False,
    )
    return [v for v in (_strip(it) for it in page.items) if v]


def view_metrics(proposal_id: str) -> dict[str, Any]:
    """Totals over every recorded view of the proposal."""
    views = [
        v
        for v in (
            _strip(it)
            for it in get_main_table().query_all(
                key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)) & Key("sk").begins_with("VIEW#"),
            )
        )
        if v
    ]
    durations = [float(v["duration"]) for v in views if v.get("duration") is not None]
    by_section: dict[str, int] = {}
    for v in views:
        if v.get("sectionId"):
            by_section[v["sectionId"]] = by_section.get(v["sectionId"], 0) + 1
    # Sort keys embed viewedAt, so the query returns views oldest first.
    return {
        "totalViews": len(views),
        "uniqueViewers": len({v["contactId"] for v in views if v.get("contactId")}),
        "averageViewDuration": sum(durations) / len(durations) if durations else 0,
        "viewsBySection": by_section,
        "firstViewedAt": views[0]["viewedAt"] if views else None,
        "lastViewedAt": views[-1]["viewedAt"] if views else None,
    }


# --- section contacts ---


def section_contact_key(proposal_id: str, section_id: str, contact_id: str) -> dict[str, str]:
    return {"pk": proposal_pk(proposal_id), "sk": f"SECTIONCONTACT#{section_id}#{contact_id}"}


def add_section_contact(
    *, proposal_id: str, section_id: str, contact_id: str, created_by: str | None
) -> dict[str, Any]:
    """Attach a contact to a section and return the contact; raises AlreadyInSection on duplicates."""
    contact = contacts_repo.get_contact(contact_id)
    if not contact:
        raise DdbNotFound(message="Contact not found", operation="GetItem")
    item = {
        **section_contact_key(proposal_id, section_id, contact_id),
        "entityType": "SectionContact",
        "proposalId": proposal_id,
        "sectionId": section_id,
        "contactId": contact_id,
        "createdBy": created_by,
        "createdAt": now_iso(),
    }
    try:
        get_main_table().put_item(item=item, if_not_exists=True)
    except DdbConflict as e:
        raise AlreadyInSection("Contact already exists in section") from e
    return contact


def list_section_contacts(proposal_id: str) -> dict[str, list[dict[str, Any]]]:
    items = get_main_table().query_all(
        key_condition_expression=Key("pk").eq(proposal_pk(proposal_id)) & Key("sk").begins_with("SECTIONCONTACT#"),
    )
    contacts = contacts_repo.get_contacts([str(it.get("contactId") or "") for it in items])
    grouped: dict[str, list[dict[str, Any]]] = {}
    for it in items:
        contact = contacts.get(str(it.get("contactId") or ""))
        if contact is None:
            continue
        grouped.setdefault(str(it["sectionId"]), []).append(contact)
    return grouped


def remove_section_contact(*, proposal_id: str, section_id: str, contact_id: str) -> None:
    get_main_table().delete_item(key=section_contact_key(proposal_id, section_id, contact_id), must_exist=True)
