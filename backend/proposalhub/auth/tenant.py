from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantContext:
    """Who is calling, and on behalf of which tenant organization.

    Resolved once per request and passed explicitly into services; nothing
    below the routers reads the session directly.
    """

    user_id: str
    email: str | None
    contact_id: str
    organization_id: str
    role: str | None

    @property
    def is_org_admin(self) -> bool:
        return self.role in ("owner", "admin")
