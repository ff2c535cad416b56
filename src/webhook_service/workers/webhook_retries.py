"""Worker: re-send failed webhook deliveries whose retry is due."""
from __future__ import annotations

from datetime import datetime

from backend_common.db.pool import get_pool

from webhook_service.repositories.webhooks import (
    WebhookDeliveryLogRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services.retries import RetryScheduler
from webhook_service.settings import settings
from webhook_service.webhooks_dispatcher import build_dispatcher


async def webhook_retry_sweep(now: datetime) -> str | None:
    """Claim due failed deliveries and attempt each one again."""
    pool = await get_pool()
    scheduler = RetryScheduler(
        WebhookDeliveryLogRepository(pool),
        WebhookSubscriptionRepository(pool),
        await build_dispatcher(),
        batch_size=settings.webhook_retry_batch_size,
        lease_seconds=settings.webhook_retry_lease_seconds,
    )
    result = await scheduler.process_due_retries(now)
    return result.summary()
