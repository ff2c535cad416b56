"""Webhook subscription endpoints."""
from __future__ import annotations

from typing import Any

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import (
    paginated_response,
    pagination_params,
    parse_bool_param,
    parse_uuid,
    read_json,
    service_errors,
)
from webhook_service.domain.dto import SubscriptionCreateDTO, SubscriptionUpdateDTO
from webhook_service.domain.webhooks import WebhookSubscription
from webhook_service.services.dependencies import get_webhook_service, require_current_user

routes = web.RouteTableDef()


def _public(subscription: WebhookSubscription) -> dict[str, Any]:
    return subscription.model_dump(mode="json", exclude={"secret"})


@routes.get("/api/v1/webhooks")
async def list_webhooks(request: web.Request):
    user = await require_current_user(request)
    service = await get_webhook_service(request)
    items = await service.list_subscriptions(user)
    return web.json_response({"webhooks": [_public(item) for item in items]})


@routes.post("/api/v1/webhooks")
async def create_webhook(request: web.Request):
    user = await require_current_user(request)
    body = await read_json(request)
    try:
        dto = SubscriptionCreateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    with service_errors():
        subscription, secret = await service.create_subscription(dto, user)
    payload = _public(subscription)
    payload["secret"] = secret
    return web.json_response(payload, status=201)


@routes.get("/api/v1/webhooks/logs")
async def list_accessible_logs(request: web.Request):
    user = await require_current_user(request)
    success = parse_bool_param(request, "success")
    query = request.rel_url.query.get("query") or None
    limit, offset = pagination_params(request)
    service = await get_webhook_service(request)
    items, total = await service.list_accessible_logs(
        user, success=success, query=query, limit=limit, offset=offset
    )
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=limit,
        offset=offset,
        key="logs",
        total=total,
    )
    return web.json_response(payload)


@routes.get("/api/v1/webhooks/{webhook_id}")
async def get_webhook(request: web.Request):
    user = await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        subscription = await service.get_subscription(webhook_id, user)
    return web.json_response(_public(subscription))


@routes.put("/api/v1/webhooks/{webhook_id}")
async def update_webhook(request: web.Request):
    user = await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    body = await read_json(request)
    try:
        dto = SubscriptionUpdateDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    service = await get_webhook_service(request)
    with service_errors():
        subscription = await service.update_subscription(webhook_id, dto, user)
    return web.json_response(_public(subscription))


@routes.delete("/api/v1/webhooks/{webhook_id}")
async def delete_webhook(request: web.Request):
    user = await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        await service.delete_subscription(webhook_id, user)
    return web.Response(status=204)


@routes.post("/api/v1/webhooks/{webhook_id}/test")
async def test_webhook(request: web.Request):
    user = await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    service = await get_webhook_service(request)
    with service_errors():
        outcome = await service.test_subscription(webhook_id, user)
    return web.json_response(outcome.model_dump(mode="json"))


@routes.get("/api/v1/webhooks/{webhook_id}/logs")
async def list_webhook_logs(request: web.Request):
    user = await require_current_user(request)
    webhook_id = parse_uuid(request.match_info["webhook_id"], "webhook_id")
    success = parse_bool_param(request, "success")
    limit, offset = pagination_params(request)
    service = await get_webhook_service(request)
    with service_errors():
        items, total = await service.list_logs(
            webhook_id, user, success=success, limit=limit, offset=offset
        )
    payload = paginated_response(
        [item.model_dump(mode="json") for item in items],
        limit=limit,
        offset=offset,
        key="logs",
        total=total,
    )
    return web.json_response(payload)
