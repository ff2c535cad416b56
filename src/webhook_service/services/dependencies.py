"""Shared dependency providers for aiohttp handlers."""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

from aiohttp import web

from backend_common.db.pool import get_pool
from webhook_service.domain.users import UserContext
from webhook_service.repositories import (
    NotificationRepository,
    ResourceRepository,
    WebhookDeliveryLogRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services.audit import AuditLogSink
from webhook_service.services.inbound import InboundVerificationGateway
from webhook_service.services.webhooks import WebhookService
from webhook_service.webhooks_dispatcher import build_dispatcher

TService = TypeVar("TService")

_WEBHOOK_SERVICE_KEY = "webhook_service"
_INBOUND_GATEWAY_KEY = "inbound_gateway"

USER_ID_HEADER = "X-User-Id"
ADMIN_SITES_HEADER = "X-Admin-Sites"
GLOBAL_ADMIN_HEADER = "X-Global-Admin"


async def require_current_user(request: web.Request) -> UserContext:
    """Temporary auth hook: relies on identity headers set by the API gateway/tests."""
    user_id = request.headers.get(USER_ID_HEADER, "").strip()
    if not user_id:
        raise web.HTTPUnauthorized(reason=f"Header {USER_ID_HEADER} is required")
    sites = request.headers.get(ADMIN_SITES_HEADER, "")
    return UserContext(
        user_id=user_id,
        admin_site_ids=frozenset(s.strip() for s in sites.split(",") if s.strip()),
        is_global_admin=request.headers.get(GLOBAL_ADMIN_HEADER, "").strip().lower() == "true",
    )


async def _get_or_create_service(
    request: web.Request,
    cache_key: str,
    builder: Callable[[web.Request], Awaitable[TService]],
) -> TService:
    service = request.get(cache_key)
    if service is None:
        service = await builder(request)
        request[cache_key] = service
    return service


async def get_webhook_service(request: web.Request) -> WebhookService:
    async def builder(_: web.Request) -> WebhookService:
        pool = await get_pool()
        return WebhookService(
            WebhookSubscriptionRepository(pool),
            WebhookDeliveryLogRepository(pool),
            ResourceRepository(pool),
            AuditLogSink(),
            await build_dispatcher(),
        )

    return await _get_or_create_service(request, _WEBHOOK_SERVICE_KEY, builder)


async def get_inbound_gateway(request: web.Request) -> InboundVerificationGateway:
    async def builder(_: web.Request) -> InboundVerificationGateway:
        pool = await get_pool()
        return InboundVerificationGateway(
            WebhookSubscriptionRepository(pool),
            WebhookDeliveryLogRepository(pool),
            NotificationRepository(pool),
            ResourceRepository(pool),
        )

    return await _get_or_create_service(request, _INBOUND_GATEWAY_KEY, builder)
