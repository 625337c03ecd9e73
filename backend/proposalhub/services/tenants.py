from __future__ import annotations

from typing import Any

from ..db.dynamodb.errors import DdbConflict
from ..db.dynamodb.table import get_main_table
from ..observability.logging import get_logger
from . import accounts_repo, contacts_repo, organizations_repo, permissions_repo, teams_repo, users_repo

log = get_logger("tenants")


class EmailAlreadyRegistered(Exception):
    pass


def provision_tenant(*, email: str, name: str | None, organization_name: str) -> dict[str, Any]:
    """Create a new tenant and its first user in one transaction.

    Writes the tenant organization, the user's home contact, the account billed to
    that contact, an "owner" permission and an organization team membership, plus
    the user record and its email pointer. Returns {user, organization, contact}.
    """
    if users_repo.get_user_by_email(email):
        raise EmailAlreadyRegistered("Email is already registered")

    t = get_main_table()
    org = organizations_repo.build_organization_item(
        data={"name": organization_name}, owner_organization_id=None
    )
    contact = contacts_repo.build_contact_item(
        data={"name": name or email, "email": email}, organization_id=org["id"]
    )
    # The counter is written directly: one transaction cannot touch the org item twice.
    org["contactCount"] = 1
    account = accounts_repo.build_account_item(organization_id=org["id"], billing_contact_id=contact["id"])
    owner = permissions_repo.build_permission_item(
        target_entity="organization", target_id=org["id"], role="owner", permitted_id=contact["id"]
    )
    membership = teams_repo.build_team_item(team_id=org["id"], team_type="organization", contact_id=contact["id"])
    user, pointer = users_repo.build_user_items(
        email=email, name=name, contact_id=contact["id"], organization_id=org["id"]
    )

    try:
        t.transact_write(
            ops=[t.tx_put(item=it, if_not_exists=True) for it in (org, contact, account, owner, membership, user, pointer)]
        )
    except DdbConflict as e:
        raise EmailAlreadyRegistered("Email is already registered") from e

    log.info("tenant_provisioned", organization_id=org["id"], user_id=user["id"], contact_id=contact["id"])
    return {
        "user": users_repo.normalize_user_for_api(user) or {},
        "organization": organizations_repo.normalize_organization_for_api(org) or {},
        "contact": contacts_repo.normalize_contact_for_api(contact) or {},
    }
