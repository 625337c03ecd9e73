from __future__ import annotations

from typing import Any

from ..db.dynamodb.table import get_main_table
from .records import new_id, next_timestamp, now_iso, pick, public_view

SUBSCRIPTION_TIERS = ("free", "basic", "pro", "enterprise")

EDITABLE_FIELDS = frozenset({"subscriptionTier", "billingContactId", "stripeCustomerId"})


def account_key(organization_id: str) -> dict[str, str]:
    # One account per tenant organization, so the org id is the natural key.
    return {"pk": f"ACCOUNT#{organization_id}", "sk": "PROFILE"}


def normalize_account_for_api(item: dict[str, Any] | None) -> dict[str, Any] | None:
    return public_view(item)


def build_account_item(
    *, organization_id: str, billing_contact_id: str, subscription_tier: str = "free"
) -> dict[str, Any]:
    now = now_iso()
    return {
        **account_key(organization_id),
        "entityType": "Account",
        "id": new_id("account"),
        "organizationId": organization_id,
        "subscriptionTier": subscription_tier,
        "billingContactId": billing_contact_id,
        "stripeCustomerId": None,
        "createdAt": now,
        "updatedAt": now,
    }


def get_account_for_organization(organization_id: str) -> dict[str, Any] | None:
    if not organization_id:
        return None
    return normalize_account_for_api(get_main_table().get_item(key=account_key(organization_id)))


def update_account(organization_id: str, existing: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    fields = pick(updates, EDITABLE_FIELDS)
    tier = fields.get("subscriptionTier")
    if tier is not None and tier not in SUBSCRIPTION_TIERS:
        raise ValueError(f"subscriptionTier must be one of {', '.join(SUBSCRIPTION_TIERS)}")
    fields["updatedAt"] = next_timestamp(existing.get("updatedAt"))
    updated = get_main_table().update_fields(key=account_key(organization_id), fields=fields)
    return normalize_account_for_api(updated) or {}
