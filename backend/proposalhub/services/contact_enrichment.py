from __future__ import annotations

from typing import Any

from ..ai.content import cleanup_profile
from ..integrations import perplexity
from ..integrations.errors import LinkedInSessionError
from ..integrations.linkedin_profile import ProfileEnricher
from ..observability.logging import get_logger
from . import contacts_repo, linkedin_sessions_repo, organizations_repo
from .records import now_iso

log = get_logger("contact_enrichment")

# Perplexity answers that map straight onto contact fields.
_SEARCH_FIELDS = ("title", "background", "linkedIn", "image", "skills")


def enrich_from_linkedin(*, user_id: str, contact: dict[str, Any], enricher: ProfileEnricher) -> dict[str, Any]:
    """Scrape the contact's LinkedIn profile with the user's stored session and save the cleaned result."""
    storage_state = linkedin_sessions_repo.get_active_storage_state(user_id)
    if storage_state is None:
        raise LinkedInSessionError("LinkedIn session not found or expired. Please authenticate first.")

    scraped = enricher.enrich(profile_url=str(contact.get("linkedIn") or ""), storage_state=storage_state)
    cleaned = cleanup_profile(scraped)

    updates: dict[str, Any] = {
        "skills": cleaned.get("skills") or [],
        "credentials": cleaned.get("credentials") or {},
        "lastEnriched": now_iso(),
        "enrichmentSource": "scraping+ai",
    }
    if cleaned.get("background"):
        updates["background"] = cleaned["background"]
    if cleaned.get("title"):
        updates["title"] = cleaned["title"]

    updated = contacts_repo.update_contact(contact["id"], contact, updates)
    log.info("contact_enriched", contact_id=contact["id"], source="scraping+ai")
    return updated


def search_contact_profile(contact: dict[str, Any]) -> dict[str, Any]:
    """Person search for the contact; the profile is returned and its known fields saved."""
    org = organizations_repo.get_organization(str(contact.get("organizationId") or ""))
    first, last = contact.get("firstName"), contact.get("lastName")
    if not first and not last:
        first = contact.get("name")
    profile = perplexity.search_person(
        first_name=first,
        last_name=last,
        linkedin=contact.get("linkedIn"),
        organization_name=(org or {}).get("name"),
    )

    updates: dict[str, Any] = {k: profile[k] for k in _SEARCH_FIELDS if profile.get(k)}
    if not isinstance(updates.get("skills", []), list):
        updates.pop("skills")
    if updates:
        updates["lastEnriched"] = now_iso()
        updates["enrichmentSource"] = "perplexity"
        contacts_repo.update_contact(contact["id"], contact, updates)
    log.info("contact_profile_searched", contact_id=contact["id"], fields=sorted(updates.keys()))
    return profile
