"""Fire-and-forget webhook runtime: shared HTTP session and the resource event queue."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import structlog
from aiohttp import ClientSession, ClientTimeout, web

from backend_common.db.pool import get_pool

from webhook_service.domain.enums import WebhookEventType
from webhook_service.domain.webhooks import Resource
from webhook_service.repositories import (
    ResourceRepository,
    WebhookDeliveryLogRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.matcher import SubscriptionMatcher
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

EVENT_QUEUE_KEY = "webhook_event_queue"
_EVENT_WORKERS_KEY = "webhook_event_workers"

_session: ClientSession | None = None


@dataclass(frozen=True)
class ResourceEventJob:
    event_type: WebhookEventType
    resource_id: int
    resource: Resource | None = None
    data: Any = None


async def init_http_session(_app: web.Application | None = None) -> None:
    global _session
    if _session is None:
        timeout = ClientTimeout(
            total=settings.webhook_request_timeout_seconds,
            connect=settings.webhook_connect_timeout_seconds,
        )
        _session = ClientSession(timeout=timeout)


async def close_http_session(_app: web.Application | None = None) -> None:
    global _session
    if _session is not None:
        await _session.close()
        _session = None


def get_http_session() -> ClientSession:
    if _session is None:
        raise RuntimeError("Webhook HTTP session not initialized. Call init_http_session() first.")
    return _session


async def build_dispatcher() -> WebhookDispatcher:
    pool = await get_pool()
    matcher = SubscriptionMatcher(WebhookSubscriptionRepository(pool), ResourceRepository(pool))
    return WebhookDispatcher(
        matcher,
        WebhookDeliveryLogRepository(pool),
        get_http_session(),
        response_max_chars=settings.webhook_response_max_chars,
        max_concurrency=settings.webhook_dispatch_max_concurrency,
    )


async def _handle_job(job: ResourceEventJob) -> None:
    dispatcher = await build_dispatcher()
    outcomes = await dispatcher.process_resource_event(
        job.event_type, job.resource_id, resource=job.resource, data=job.data
    )
    logger.info(
        "resource event dispatched",
        event_type=job.event_type.value,
        resource_id=job.resource_id,
        deliveries=len(outcomes),
        failed=sum(1 for o in outcomes if not o.success),
    )


async def _event_worker(queue: "asyncio.Queue[ResourceEventJob]", worker_id: int) -> None:
    while True:
        job = await queue.get()
        try:
            await _handle_job(job)
        except Exception:
            logger.exception(
                "resource event dispatch failed",
                worker=worker_id,
                event_type=job.event_type.value,
                resource_id=job.resource_id,
            )
        finally:
            queue.task_done()


async def start_webhook_dispatcher(app: web.Application) -> None:
    await init_http_session()
    queue: asyncio.Queue[ResourceEventJob] = asyncio.Queue(maxsize=settings.webhook_event_queue_size)
    app[EVENT_QUEUE_KEY] = queue
    app[_EVENT_WORKERS_KEY] = [
        asyncio.create_task(_event_worker(queue, i)) for i in range(settings.webhook_event_workers)
    ]
    logger.info("webhook dispatcher started", workers=settings.webhook_event_workers)


async def stop_webhook_dispatcher(app: web.Application) -> None:
    tasks = app.get(_EVENT_WORKERS_KEY) or []
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    queue = app.get(EVENT_QUEUE_KEY)
    if queue is not None and queue.qsize():
        logger.warning("webhook dispatcher stopped with queued events", dropped=queue.qsize())
    await close_http_session()


async def submit_resource_event(app: web.Application, job: ResourceEventJob) -> None:
    """Enqueue an event for delivery; waits only while the queue is full."""
    queue: asyncio.Queue[ResourceEventJob] | None = app.get(EVENT_QUEUE_KEY)
    if queue is None:
        raise RuntimeError("Webhook dispatcher is not running")
    await queue.put(job)
