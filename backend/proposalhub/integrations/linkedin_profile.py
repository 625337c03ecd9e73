from __future__ import annotations

import re
import time
from typing import Any, Protocol

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from ..observability.logging import get_logger
from .errors import EnrichmentError, LinkedInSessionError

log = get_logger("linkedin_profile")

PROFILE_FIELDS = ("name", "headline", "location", "about", "experience", "education", "certifications", "skills")

_SECTION_ANCHORS = {
    "experience": "#experience",
    "education": "#education",
    "certifications": "#licenses_and_certifications",
    "skills": "#skills",
}


class ProfileEnricher(Protocol):
    def enrich(self, *, profile_url: str, storage_state: dict[str, Any]) -> dict[str, Any]:
        """Scrape a public profile with the caller's browser session.

        Returns text fields (name, headline, location, about) and lists of
        one-line entries (experience, education, certifications, skills).
        """
        ...


def normalize_profile_url(url: str | None) -> str:
    u = str(url or "").strip()
    if not u:
        return ""
    if u.startswith("/"):
        u = f"https://www.linkedin.com{u}"
    if not u.startswith("http"):
        u = f"https://{u}"
    u = u.split("?")[0].rstrip("/")
    return u if "linkedin.com/in/" in u.lower() else ""


def _is_login_url(url: str) -> bool:
    u = (url or "").lower()
    return "/login" in u or "checkpoint" in u or "/authwall" in u


def _sleep_jitter(base: float = 0.6, max_jitter: float = 0.6) -> None:
    t = base + (time.time() % max_jitter)
    time.sleep(max(0.1, min(2.0, t)))


def _text(page, selector: str) -> str:
    loc = page.locator(selector)
    if loc.count() == 0:
        return ""
    try:
        return re.sub(r"\s+", " ", loc.first.inner_text(timeout=1000) or "").strip()
    except PlaywrightError:
        return ""


def _section_entries(page, anchor: str, limit: int = 15) -> list[str]:
    """One line per list item of the profile section that follows `anchor`."""
    section = page.locator(f"section:has({anchor})")
    if section.count() == 0:
        return []
    items = section.first.locator("li.artdeco-list__item")
    out: list[str] = []
    for i in range(min(items.count(), limit)):
        try:
            raw = items.nth(i).inner_text(timeout=500) or ""
        except PlaywrightError:
            continue
        lines: list[str] = []
        for ln in re.split(r"[\r\n]+", raw):
            ln = ln.strip()
            # LinkedIn renders visually hidden duplicates of each line.
            if ln and ln not in lines:
                lines.append(ln)
        if lines:
            out.append(" | ".join(lines[:4]))
    return out


class PlaywrightLinkedInEnricher:
    def __init__(self, *, headless: bool = True, timeout_ms: int = 30_000):
        self.headless = bool(headless)
        self.timeout_ms = int(timeout_ms)

    def enrich(self, *, profile_url: str, storage_state: dict[str, Any]) -> dict[str, Any]:
        url = normalize_profile_url(profile_url)
        if not url:
            raise EnrichmentError("Contact has no LinkedIn profile URL")

        with sync_playwright() as p:
            browser = p.chromium.launch(headless=self.headless)
            try:
                context = browser.new_context(storage_state=storage_state)
                page = context.new_page()
                page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
                _sleep_jitter(0.4, 0.5)
                if _is_login_url(page.url):
                    raise LinkedInSessionError("LinkedIn session expired or requires login/checkpoint")

                try:
                    page.wait_for_selector("main h1", timeout=self.timeout_ms)
                except PlaywrightError as e:
                    raise EnrichmentError("LinkedIn profile did not load") from e

                out: dict[str, Any] = {
                    "name": _text(page, "main h1"),
                    "headline": _text(page, "main div.text-body-medium"),
                    "location": _text(page, "main span.text-body-small.inline"),
                    "about": _text(page, "section:has(#about) div.display-flex.full-width"),
                }
                for key, anchor in _SECTION_ANCHORS.items():
                    out[key] = _section_entries(page, anchor)
                context.close()
            finally:
                browser.close()

        log.info(
            "linkedin_profile_scraped",
            has_headline=bool(out.get("headline")),
            experience=len(out.get("experience") or []),
            skills=len(out.get("skills") or []),
        )
        return out


def get_profile_enricher() -> ProfileEnricher:
    return PlaywrightLinkedInEnricher()
