from __future__ import annotations

import json
import re
from typing import Any

import httpx

from ..observability.logging import get_logger
from ..settings import settings
from .errors import ProviderUnavailable

log = get_logger("perplexity")

API_URL = "https://api.perplexity.ai/chat/completions"

SYSTEM_PROMPT = (
    "You are a professional researcher. Search for information about the person and return ONLY a "
    "JSON object with these fields (omit any you cannot find):\n"
    "{\n"
    '  "title": "current job title",\n'
    '  "background": "a concise professional summary",\n'
    '  "linkedIn": "LinkedIn profile URL",\n'
    '  "image": "URL of a professional headshot",\n'
    '  "skills": ["skill"],\n'
    '  "workHistory": [{"title": "", "company": "", "startDate": "", "endDate": ""}],\n'
    '  "education": [{"school": "", "degree": "", "field": ""}],\n'
    '  "certifications": [{"name": "", "authority": ""}]\n'
    "}\n"
    "Do not include any text outside the JSON object."
)


def _http_client(timeout: float) -> httpx.Client:
    return httpx.Client(timeout=timeout)


def person_query(
    *,
    first_name: str | None,
    last_name: str | None,
    linkedin: str | None = None,
    organization_name: str | None = None,
) -> str:
    parts = [p for p in (first_name, last_name) if p and str(p).strip()]
    q = " ".join(str(p).strip() for p in parts)
    if linkedin:
        q += f" ({linkedin})"
    if organization_name:
        q += f" at {organization_name}"
    return q.strip()


def parse_profile(content: str) -> dict[str, Any]:
    """The model's JSON object, or the raw answer as `background` when it is not JSON."""
    text = str(content or "").strip()
    m = re.match(r"^```(?:json)?\s*([\s\S]*?)\s*```$", text)
    if m:
        text = m.group(1)
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {"background": str(content or "").strip()}
    if not isinstance(data, dict):
        return {"background": str(content or "").strip()}
    return data


def search_person(
    *,
    first_name: str | None,
    last_name: str | None,
    linkedin: str | None = None,
    organization_name: str | None = None,
    timeout: float = 45.0,
) -> dict[str, Any]:
    if not settings.perplexity_api_key:
        raise ProviderUnavailable("PERPLEXITY_API_KEY not configured")

    query = person_query(
        first_name=first_name,
        last_name=last_name,
        linkedin=linkedin,
        organization_name=organization_name,
    )
    if not query:
        raise ValueError("Contact has no name to search for")

    body = {
        "model": settings.perplexity_model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": f"Find professional information about {query}"},
        ],
    }
    try:
        with _http_client(timeout) as client:
            r = client.post(
                API_URL,
                json=body,
                headers={"Authorization": f"Bearer {settings.perplexity_api_key}"},
            )
            r.raise_for_status()
            data = r.json()
    except httpx.HTTPError as e:
        log.warning("perplexity_request_failed", error=str(e)[:300])
        raise ProviderUnavailable("Perplexity search failed") from e

    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        raise ProviderUnavailable("Perplexity returned an unexpected response") from e

    profile = parse_profile(content)
    log.info("perplexity_person_found", fields=sorted(profile.keys()))
    return profile
