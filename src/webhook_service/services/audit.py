"""Audit trail sink for subscription management."""
from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger("webhook_service.audit")


class AuditLogSink:
    """Writes audit records as structured log events.

    Audit storage lives outside this service; the log stream is shipped to it.
    """

    async def record(
        self,
        action: str,
        entity_id: str,
        *,
        actor_id: str | None,
        site_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "audit",
            action=action,
            entity_type="webhook",
            entity_id=entity_id,
            actor_id=actor_id,
            site_id=site_id,
            details=details or {},
        )
