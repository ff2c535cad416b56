"""Notification inbox writer."""
from __future__ import annotations

from asyncpg import Pool  # type: ignore[import-untyped]

from webhook_service.domain.enums import NotificationType
from webhook_service.domain.webhooks import Notification
from webhook_service.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    async def create(self, *, user_id: str, message: str, type: NotificationType) -> Notification:
        record = await self._fetchrow(
            """
            INSERT INTO notifications (user_id, message, type, read)
            VALUES ($1, $2, $3, false)
            RETURNING id, user_id, message, type, read, created_at
            """,
            user_id,
            message,
            type.value,
        )
        assert record is not None
        return Notification.model_validate(dict(record))
