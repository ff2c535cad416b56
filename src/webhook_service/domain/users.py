"""Caller identity as forwarded by the API gateway."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class UserContext:
    user_id: str
    admin_site_ids: frozenset[str] = field(default_factory=frozenset)
    is_global_admin: bool = False

    def can_manage_site(self, site_id: str | None) -> bool:
        if self.is_global_admin:
            return True
        return site_id is not None and site_id in self.admin_site_ids
