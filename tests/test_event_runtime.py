import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web

from webhook_service import webhooks_dispatcher
from webhook_service.domain.enums import WebhookEventType
from webhook_service.webhooks_dispatcher import (
    EVENT_QUEUE_KEY,
    ResourceEventJob,
    start_webhook_dispatcher,
    stop_webhook_dispatcher,
    submit_resource_event,
)


@pytest.mark.asyncio
async def test_submitted_events_reach_workers():
    handled = asyncio.Event()
    seen: list[ResourceEventJob] = []

    async def fake_handle(job: ResourceEventJob) -> None:
        seen.append(job)
        handled.set()

    app = web.Application()
    with patch.object(webhooks_dispatcher, "_handle_job", fake_handle):
        await start_webhook_dispatcher(app)
        try:
            job = ResourceEventJob(event_type=WebhookEventType.RESOURCE_UPDATED, resource_id=7)
            await submit_resource_event(app, job)
            await asyncio.wait_for(handled.wait(), timeout=1.0)
        finally:
            await stop_webhook_dispatcher(app)

    assert seen == [job]


@pytest.mark.asyncio
async def test_failing_job_does_not_stop_worker():
    handle = AsyncMock(side_effect=[RuntimeError("db down"), None])
    app = web.Application()
    with patch.object(webhooks_dispatcher, "_handle_job", handle):
        await start_webhook_dispatcher(app)
        try:
            queue = app[EVENT_QUEUE_KEY]
            await submit_resource_event(app, ResourceEventJob(WebhookEventType.RESOURCE_CREATED, 1))
            await submit_resource_event(app, ResourceEventJob(WebhookEventType.RESOURCE_CREATED, 2))
            await asyncio.wait_for(queue.join(), timeout=1.0)
        finally:
            await stop_webhook_dispatcher(app)

    assert handle.await_count == 2


@pytest.mark.asyncio
async def test_submit_without_running_dispatcher_raises():
    with pytest.raises(RuntimeError):
        await submit_resource_event(
            web.Application(), ResourceEventJob(WebhookEventType.RESOURCE_DELETED, 1)
        )


@pytest.mark.asyncio
async def test_http_session_lifecycle():
    await webhooks_dispatcher.init_http_session()
    session = webhooks_dispatcher.get_http_session()
    await webhooks_dispatcher.init_http_session()
    assert webhooks_dispatcher.get_http_session() is session
    await webhooks_dispatcher.close_http_session()
    with pytest.raises(RuntimeError):
        webhooks_dispatcher.get_http_session()
