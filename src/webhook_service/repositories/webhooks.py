"""Webhook repositories (subscriptions + delivery log)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Sequence, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import DeliveryLogCreateDTO
from webhook_service.domain.enums import WebhookEventType
from webhook_service.domain.webhooks import WebhookDeliveryLog, WebhookSubscription
from webhook_service.repositories.base import BaseRepository

_UPDATABLE_SUBSCRIPTION_COLUMNS = (
    "name",
    "url",
    "event_type",
    "enabled",
    "max_retries",
    "retry_delay_seconds",
)


class WebhookSubscriptionRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record) -> WebhookSubscription:
        return WebhookSubscription.model_validate(dict(record))

    async def create(
        self,
        *,
        name: str,
        url: str,
        event_type: WebhookEventType,
        enabled: bool,
        site_id: str,
        resource_id: int | None,
        resource_type_id: int | None,
        include_sub_resources: bool,
        secret: str,
        max_retries: int,
        retry_delay_seconds: int,
    ) -> WebhookSubscription:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_subscriptions (
                name,
                url,
                event_type,
                enabled,
                site_id,
                resource_id,
                resource_type_id,
                include_sub_resources,
                secret,
                max_retries,
                retry_delay_seconds
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            RETURNING *
            """,
            name,
            url,
            event_type.value,
            enabled,
            site_id,
            resource_id,
            resource_type_id,
            include_sub_resources,
            secret,
            max_retries,
            retry_delay_seconds,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, subscription_id: UUID) -> WebhookSubscription:
        record = await self._fetchrow(
            "SELECT * FROM webhook_subscriptions WHERE id = $1",
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def list_all(self) -> List[WebhookSubscription]:
        records = await self._fetch(
            "SELECT * FROM webhook_subscriptions ORDER BY created_at DESC"
        )
        return [self._to_model(r) for r in records]

    async def list_by_sites(self, site_ids: Sequence[str]) -> List[WebhookSubscription]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_subscriptions
            WHERE site_id = ANY($1::text[])
            ORDER BY created_at DESC
            """,
            list(site_ids),
        )
        return [self._to_model(r) for r in records]

    async def update(self, subscription_id: UUID, updates: dict[str, Any]) -> WebhookSubscription:
        assignments: list[str] = []
        values: list[Any] = [subscription_id]
        for column in _UPDATABLE_SUBSCRIPTION_COLUMNS:
            if column not in updates:
                continue
            value = updates[column]
            if isinstance(value, WebhookEventType):
                value = value.value
            values.append(value)
            assignments.append(f"{column} = ${len(values)}")
        if not assignments:
            return await self.get(subscription_id)
        record = await self._fetchrow(
            f"""
            UPDATE webhook_subscriptions
            SET {", ".join(assignments)},
                updated_at = now()
            WHERE id = $1
            RETURNING *
            """,
            *values,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def delete(self, subscription_id: UUID) -> None:
        # delivery log rows go with it (ON DELETE CASCADE)
        record = await self._fetchrow(
            "DELETE FROM webhook_subscriptions WHERE id = $1 RETURNING id",
            subscription_id,
        )
        if record is None:
            raise NotFoundError("Webhook subscription not found")

    async def list_candidates(
        self,
        event_type: WebhookEventType,
        *,
        resource_ids: Sequence[int],
        resource_type_id: int | None,
        site_id: str | None,
    ) -> List[WebhookSubscription]:
        """Enabled subscriptions that may match; the matcher makes the final call.

        ``resource_ids`` holds the event resource followed by its ancestors.
        """
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_subscriptions
            WHERE enabled = true
              AND (event_type = $1 OR event_type = 'ALL')
              AND (
                    resource_id = ANY($2::bigint[])
                 OR ($3::bigint IS NOT NULL AND resource_type_id = $3)
                 OR (
                        $4::text IS NOT NULL
                    AND site_id = $4
                    AND resource_id IS NULL
                    AND resource_type_id IS NULL
                 )
              )
            ORDER BY created_at ASC
            """,
            event_type.value,
            list(resource_ids),
            resource_type_id,
            site_id,
        )
        return [self._to_model(r) for r in records]


class WebhookDeliveryLogRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @staticmethod
    def _to_model(record: Record | dict[str, Any]) -> WebhookDeliveryLog:
        return WebhookDeliveryLog.model_validate(dict(record))

    async def create(self, data: DeliveryLogCreateDTO) -> WebhookDeliveryLog:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_delivery_logs (
                subscription_id,
                event_type,
                payload,
                resource_id,
                status_code,
                response,
                success,
                retry_count,
                next_retry_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
            """,
            data.subscription_id,
            data.event_type.value,
            data.payload,
            data.resource_id,
            data.status_code,
            data.response,
            data.success,
            data.retry_count,
            data.next_retry_at,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, log_id: UUID) -> WebhookDeliveryLog:
        record = await self._fetchrow("SELECT * FROM webhook_delivery_logs WHERE id = $1", log_id)
        if record is None:
            raise NotFoundError("Webhook delivery log not found")
        return self._to_model(record)

    async def list_by_subscription(
        self,
        subscription_id: UUID,
        *,
        success: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDeliveryLog], int]:
        where = ["subscription_id = $1"]
        values: list[Any] = [subscription_id]
        if success is not None:
            values.append(success)
            where.append(f"success = ${len(values)}")
        return await self._paginate(where, values, limit=limit, offset=offset)

    async def list_accessible(
        self,
        *,
        site_ids: Sequence[str] | None,
        success: bool | None = None,
        query: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDeliveryLog], int]:
        """Logs of subscriptions in ``site_ids``; ``None`` means every site."""
        where: list[str] = []
        values: list[Any] = []
        if site_ids is not None:
            values.append(list(site_ids))
            where.append(
                f"subscription_id IN (SELECT id FROM webhook_subscriptions WHERE site_id = ANY(${len(values)}::text[]))"
            )
        if success is not None:
            values.append(success)
            where.append(f"success = ${len(values)}")
        if query:
            values.append(f"%{query}%")
            where.append(f"(payload ILIKE ${len(values)} OR response ILIKE ${len(values)})")
        return await self._paginate(where, values, limit=limit, offset=offset)

    async def _paginate(
        self, where: list[str], values: list[Any], *, limit: int, offset: int
    ) -> Tuple[List[WebhookDeliveryLog], int]:
        where_sql = " AND ".join(where) if where else "true"
        idx = len(values) + 1
        records = await self._fetch(
            f"""
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_delivery_logs
            WHERE {where_sql}
            ORDER BY created_at DESC
            LIMIT ${idx} OFFSET ${idx + 1}
            """,
            *values,
            limit,
            offset,
        )
        rows, total = self._split_total(records)
        if total is None:
            # page past the end: COUNT(*) OVER() yields nothing
            record = await self._fetchrow(
                f"SELECT COUNT(*) AS total FROM webhook_delivery_logs WHERE {where_sql}",
                *values,
            )
            total = int(record["total"]) if record else 0
        return [self._to_model(r) for r in rows], total

    async def claim_due_retries(
        self, *, now: datetime, lease_until: datetime, limit: int = 100
    ) -> List[WebhookDeliveryLog]:
        """
        Atomically claim failed deliveries whose retry is due.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so concurrent sweeps
        never claim the same entry.

        Side-effects:
          - next_retry_at -> lease_until (the entry is re-claimable after the
            lease if the attempt is never recorded)
        """
        records = await self._fetch_in_transaction(
            """
            WITH cte AS (
                SELECT l.id
                FROM webhook_delivery_logs l
                JOIN webhook_subscriptions s ON s.id = l.subscription_id
                WHERE l.success = false
                  AND l.next_retry_at IS NOT NULL
                  AND l.next_retry_at <= $1
                  AND l.retry_count < s.max_retries
                ORDER BY l.next_retry_at ASC, l.created_at ASC
                FOR UPDATE OF l SKIP LOCKED
                LIMIT $3
            )
            UPDATE webhook_delivery_logs d
            SET next_retry_at = $2,
                updated_at = now()
            FROM cte
            WHERE d.id = cte.id
            RETURNING d.*
            """,
            now,
            lease_until,
            limit,
        )
        return [self._to_model(r) for r in records]

    async def record_retry_attempt(
        self,
        log_id: UUID,
        *,
        success: bool,
        status_code: int | None,
        response: str | None,
        retry_count: int,
        next_retry_at: datetime | None,
    ) -> WebhookDeliveryLog | None:
        """Store a retry outcome. Returns ``None`` if the entry already succeeded."""
        record = await self._fetchrow(
            """
            UPDATE webhook_delivery_logs
            SET success = $2,
                status_code = $3,
                response = $4,
                retry_count = $5,
                next_retry_at = $6,
                updated_at = now()
            WHERE id = $1
              AND success = false
            RETURNING *
            """,
            log_id,
            success,
            status_code,
            response,
            retry_count,
            next_retry_at,
        )
        return self._to_model(record) if record is not None else None
