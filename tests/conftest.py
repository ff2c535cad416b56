import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp import ClientSession, web

from backend_common.aiohttp_app import add_healthcheck, create_base_app
from webhook_service.api.router import setup_routes
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.matcher import SubscriptionMatcher
from webhook_service.settings import settings
from webhook_service.webhooks_dispatcher import (
    EVENT_QUEUE_KEY,
    close_http_session,
    get_http_session,
    init_http_session,
)

from tests.fakes import (
    InMemoryDeliveryLogRepository,
    InMemoryNotificationRepository,
    InMemoryResourceRepository,
    InMemorySubscriptionRepository,
    RecordingAuditSink,
    WebhookReceiver,
)
from tests.utils import FIXED_NOW


@pytest.fixture
def store():
    """Shared in-memory state behind every repository."""
    subscriptions = InMemorySubscriptionRepository()
    return SimpleNamespace(
        subscriptions=subscriptions,
        logs=InMemoryDeliveryLogRepository(subscriptions),
        resources=InMemoryResourceRepository(),
        notifications=InMemoryNotificationRepository(),
        audit=RecordingAuditSink(),
    )


@pytest.fixture
async def receiver(aiohttp_server):
    """Partner endpoint on a local port."""
    hook = WebhookReceiver()
    server = await aiohttp_server(hook.app)
    hook.url = str(server.make_url("/hook"))
    return hook


@pytest.fixture
async def http_session():
    session = ClientSession()
    yield session
    await session.close()


@pytest.fixture
def make_dispatcher(store, http_session):
    def factory(**kwargs) -> WebhookDispatcher:
        matcher = SubscriptionMatcher(store.subscriptions, store.resources)
        kwargs.setdefault("clock", lambda: FIXED_NOW)
        return WebhookDispatcher(matcher, store.logs, http_session, **kwargs)

    return factory


@pytest.fixture
async def service_client(aiohttp_client, store):
    """API client over the real routes with repositories backed by ``store``."""

    async def build_dispatcher() -> WebhookDispatcher:
        matcher = SubscriptionMatcher(store.subscriptions, store.resources)
        return WebhookDispatcher(matcher, store.logs, get_http_session())

    app, _cors = create_base_app(settings)
    add_healthcheck(app, settings)
    setup_routes(app)
    app[EVENT_QUEUE_KEY] = asyncio.Queue(maxsize=10)
    app.on_startup.append(init_http_session)
    app.on_cleanup.append(close_http_session)

    with patch.multiple(
        "webhook_service.services.dependencies",
        get_pool=AsyncMock(return_value=object()),
        WebhookSubscriptionRepository=lambda _pool: store.subscriptions,
        WebhookDeliveryLogRepository=lambda _pool: store.logs,
        ResourceRepository=lambda _pool: store.resources,
        NotificationRepository=lambda _pool: store.notifications,
        AuditLogSink=lambda: store.audit,
        build_dispatcher=build_dispatcher,
    ):
        client = await aiohttp_client(app)
        yield client


@pytest.fixture
def lean_app() -> web.Application:
    app, _cors = create_base_app(settings)
    add_healthcheck(app, settings)
    return app


@pytest.fixture
def mock_db_pool():
    """asyncpg pool whose connection records every statement."""
    pool = MagicMock()
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = None
    conn.transaction.return_value.__aenter__.return_value = None
    conn.transaction.return_value.__aexit__.return_value = None
    return pool, conn
