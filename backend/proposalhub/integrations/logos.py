"""Logo lookup across providers: LinkedIn company API, Clearbit, Google image search.

Providers are tried in that fixed order and the first one that yields a real
image wins. A provider without credentials is skipped rather than failed.
"""

from __future__ import annotations

import re
import threading
import urllib.parse
from dataclasses import dataclass
from typing import Any

import httpx
from cachetools import TTLCache
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..ai.fallback import FallbackExhausted, Skip, run_chain
from ..observability.logging import get_logger
from ..services.images import MAX_IMAGE_BYTES, sniff_image_extension
from ..settings import settings

log = get_logger("logos")

LINKEDIN_ORGS_URL = "https://api.linkedin.com/v2/organizations"
CLEARBIT_URL = "https://logo.clearbit.com/{domain}"

_cache: TTLCache = TTLCache(maxsize=256, ttl=3600)
_cache_lock = threading.Lock()


@dataclass(frozen=True)
class LogoImage:
    provider: str
    source_url: str
    data: bytes
    ext: str


def _http_client(timeout: float) -> httpx.Client:
    return httpx.Client(follow_redirects=True, timeout=timeout)


def _cse_service(api_key: str) -> Any:
    # Avoid discovery caching to disk (works better in containers).
    return build("customsearch", "v1", developerKey=api_key, cache_discovery=False)


def normalize_domain(value: str | None) -> str | None:
    v = str(value or "").strip().lower()
    if not v:
        return None
    if "://" not in v:
        v = f"https://{v}"
    host = (urllib.parse.urlsplit(v).hostname or "").strip(".")
    if host.startswith("www."):
        host = host[4:]
    return host if "." in host else None


def guess_domain(query: str, domain: str | None = None) -> str | None:
    if domain:
        return normalize_domain(domain)
    q = str(query or "").strip()
    if q and " " not in q and "." in q:
        return normalize_domain(q)
    return None


def vanity_name(query: str) -> str:
    """LinkedIn company slug guess: "Acme Corp." -> "acme-corp"."""
    return re.sub(r"[^a-z0-9]+", "-", str(query or "").lower()).strip("-")


def fetch_image(client: httpx.Client, url: str) -> tuple[bytes, str]:
    r = client.get(url)
    r.raise_for_status()
    ct = (r.headers.get("content-type") or "").split(";")[0].strip().lower()
    if ct and not ct.startswith("image/"):
        raise ValueError(f"not an image ({ct})")
    data = r.content
    if not data or len(data) > MAX_IMAGE_BYTES:
        raise ValueError("empty or oversized image")
    ext = sniff_image_extension(data)
    if not ext:
        raise ValueError("unreadable image")
    return data, ext


def _linkedin_logo_url(payload: dict[str, Any]) -> str | None:
    elements = payload.get("elements") or []
    if not elements:
        return None
    original = ((elements[0].get("logoV2") or {}).get("original~") or {}).get("elements") or []
    # Last rendition is the largest.
    for rendition in reversed(original):
        for ident in rendition.get("identifiers") or []:
            url = ident.get("identifier")
            if isinstance(url, str) and url.startswith("http"):
                return url
    return None


def _from_linkedin(client: httpx.Client, query: str) -> LogoImage:
    token = settings.linkedin_access_token
    if not token:
        raise Skip("linkedin not configured")
    vanity = vanity_name(query)
    if not vanity:
        raise Skip("no company name")
    r = client.get(
        LINKEDIN_ORGS_URL,
        params={
            "q": "vanityName",
            "vanityName": vanity,
            "projection": "(elements*(logoV2(original~:playableStreams)))",
        },
        headers={"Authorization": f"Bearer {token}", "X-Restli-Protocol-Version": "2.0.0"},
    )
    r.raise_for_status()
    url = _linkedin_logo_url(r.json())
    if not url:
        raise LookupError("linkedin organization has no logo")
    data, ext = fetch_image(client, url)
    return LogoImage(provider="linkedin", source_url=url, data=data, ext=ext)


def _from_clearbit(client: httpx.Client, domain: str | None) -> LogoImage:
    if not domain:
        raise Skip("no domain")
    url = CLEARBIT_URL.format(domain=domain)
    data, ext = fetch_image(client, url)
    return LogoImage(provider="clearbit", source_url=url, data=data, ext=ext)


def _from_google(client: httpx.Client, query: str) -> LogoImage:
    api_key = settings.google_cse_api_key
    cx = settings.google_cse_id
    if not api_key or not cx:
        raise Skip("google cse not configured")
    res = _cse_service(api_key).cse().list(q=f"{query} logo", cx=cx, searchType="image", num=5).execute() or {}
    last_error: Exception | None = None
    for it in res.get("items") or []:
        link = str((it or {}).get("link") or "").strip()
        if not link:
            continue
        try:
            data, ext = fetch_image(client, link)
        except (httpx.HTTPError, ValueError) as e:
            last_error = e
            continue
        return LogoImage(provider="google", source_url=link, data=data, ext=ext)
    if last_error is not None:
        raise last_error
    raise LookupError("no image results")


def _soft(fn):
    # A rejected request only rules out that provider; the next one may still have the logo.
    def _run() -> LogoImage:
        try:
            return fn()
        except httpx.HTTPStatusError as e:
            raise LookupError(f"HTTP {e.response.status_code} from {e.request.url.host}") from e
        except HttpError as e:
            raise LookupError(f"HTTP {e.resp.status} from google cse") from e

    return _run


def find_logo(query: str, domain: str | None = None) -> LogoImage | None:
    """First logo any provider can deliver, or None when all of them come up empty."""
    q = str(query or "").strip()
    if not q:
        raise ValueError("query is required")
    dom = guess_domain(q, domain)
    cache_key = (q.lower(), dom)
    with _cache_lock:
        hit = _cache.get(cache_key)
    if hit is not None:
        return hit

    with _http_client(settings.logo_fetch_timeout_seconds) as client:
        try:
            outcome = run_chain(
                [
                    ("linkedin", _soft(lambda: _from_linkedin(client, q))),
                    ("clearbit", _soft(lambda: _from_clearbit(client, dom))),
                    ("google", _soft(lambda: _from_google(client, q))),
                ],
                label="logo_search",
            )
        except FallbackExhausted as e:
            log.info("logo_not_found", query=q, domain=dom, attempts=len(e.attempts))
            return None

    with _cache_lock:
        _cache[cache_key] = outcome.value
    return outcome.value


def clear_cache() -> None:
    with _cache_lock:
        _cache.clear()
