"""Retry scheduling for failed webhook deliveries."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, List, Protocol
from uuid import UUID

import structlog
from pydantic import ValidationError

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.webhooks import WebhookDeliveryLog, WebhookEnvelope, WebhookSubscription

if TYPE_CHECKING:
    from webhook_service.services.dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)


def compute_next_retry_at(
    now: datetime,
    *,
    retry_delay_seconds: int,
    retry_count: int,
    max_retries: int,
) -> datetime | None:
    """When the next attempt is due after ``retry_count`` retries, or ``None`` once exhausted.

    The first retry waits ``retry_delay_seconds``; every later one doubles it.
    """
    if retry_count >= max_retries:
        return None
    return now + timedelta(seconds=retry_delay_seconds * 2**retry_count)


class RetryLogStore(Protocol):
    async def claim_due_retries(
        self, *, now: datetime, lease_until: datetime, limit: int = 100
    ) -> List[WebhookDeliveryLog]: ...

    async def record_retry_attempt(
        self,
        log_id: UUID,
        *,
        success: bool,
        status_code: int | None,
        response: str | None,
        retry_count: int,
        next_retry_at: datetime | None,
    ) -> WebhookDeliveryLog | None: ...


class SubscriptionGetter(Protocol):
    async def get(self, subscription_id: UUID) -> WebhookSubscription: ...


@dataclass
class RetrySweepResult:
    claimed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    exhausted: int = 0
    errors: int = 0

    def summary(self) -> str | None:
        if not self.claimed:
            return None
        return (
            f"claimed={self.claimed} succeeded={self.succeeded} rescheduled={self.rescheduled} "
            f"exhausted={self.exhausted} errors={self.errors}"
        )


class RetryScheduler:
    def __init__(
        self,
        logs: RetryLogStore,
        subscriptions: SubscriptionGetter,
        dispatcher: "WebhookDispatcher",
        *,
        batch_size: int = 100,
        lease_seconds: int = 120,
    ):
        self._logs = logs
        self._subscriptions = subscriptions
        self._dispatcher = dispatcher
        self._batch_size = batch_size
        self._lease = timedelta(seconds=lease_seconds)

    async def process_due_retries(self, now: datetime) -> RetrySweepResult:
        result = RetrySweepResult()
        due = await self._logs.claim_due_retries(
            now=now, lease_until=now + self._lease, limit=self._batch_size
        )
        result.claimed = len(due)
        for entry in due:
            try:
                updated = await self._retry_one(entry, now)
            except Exception:
                result.errors += 1
                logger.exception(
                    "webhook retry failed",
                    log_id=str(entry.id),
                    subscription_id=str(entry.subscription_id),
                )
                continue
            if updated is None:
                continue
            if updated.success:
                result.succeeded += 1
            elif updated.next_retry_at is not None:
                result.rescheduled += 1
            else:
                result.exhausted += 1
        return result

    async def _retry_one(self, entry: WebhookDeliveryLog, now: datetime) -> WebhookDeliveryLog | None:
        try:
            subscription = await self._subscriptions.get(entry.subscription_id)
        except NotFoundError:
            logger.info("webhook retry skipped, subscription gone", log_id=str(entry.id))
            return None

        try:
            body = WebhookEnvelope.model_validate_json(entry.payload).to_json()
        except ValidationError:
            logger.warning("stored webhook payload is not an envelope", log_id=str(entry.id))
            body = entry.payload

        attempt = await self._dispatcher.deliver(subscription, body, entry.event_type)
        retry_count = entry.retry_count + 1
        next_retry_at = None
        if not attempt.success:
            next_retry_at = compute_next_retry_at(
                now,
                retry_delay_seconds=subscription.retry_delay_seconds,
                retry_count=retry_count,
                max_retries=subscription.max_retries,
            )
        updated = await self._logs.record_retry_attempt(
            entry.id,
            success=attempt.success,
            status_code=attempt.status_code,
            response=attempt.response,
            retry_count=retry_count,
            next_retry_at=next_retry_at,
        )
        logger.info(
            "webhook retry attempted",
            log_id=str(entry.id),
            subscription_id=str(subscription.id),
            success=attempt.success,
            status_code=attempt.status_code,
            retry_count=retry_count,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
        )
        return updated
