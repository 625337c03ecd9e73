from __future__ import annotations

LOCAL_ORIGINS = ("http://localhost:3000", "http://localhost:3001")


def build_allowed_origins(*, frontend_base_url: str, frontend_urls: str | None) -> list[str]:
    allowed: set[str] = set(LOCAL_ORIGINS)
    if frontend_base_url:
        allowed.add(frontend_base_url.rstrip("/"))
    for origin in str(frontend_urls or "").split(","):
        origin = origin.strip().rstrip("/")
        if origin:
            allowed.add(origin)
    return sorted(allowed)


def build_allowed_origin_regex(frontend_base_url: str) -> str | None:
    """
    Allow preview subdomains of the configured frontend host, e.g.
    https://pr-12.app.example.com for https://app.example.com.
    Matches the registrable host only, never a suffix like "evilexample.com".
    """
    host = frontend_base_url.split("://", 1)[-1].split("/", 1)[0].split(":", 1)[0]
    if not host or host == "localhost":
        return None
    escaped = host.replace(".", r"\.")
    return rf"^https://([a-z0-9-]+\.)*{escaped}$"
