"""Partner callbacks authenticated by a subscription's signing secret."""
from __future__ import annotations

from aiohttp import web

from webhook_service.api.utils import service_errors
from webhook_service.services.dependencies import get_inbound_gateway
from webhook_service.services.dispatcher import SIGNATURE_HEADER

routes = web.RouteTableDef()


@routes.post("/api/v1/inbound/notifications")
async def receive_notification(request: web.Request):
    raw_body = await request.read()
    gateway = await get_inbound_gateway(request)
    with service_errors():
        notification = await gateway.accept_notification(
            raw_body, request.headers.get(SIGNATURE_HEADER)
        )
    return web.json_response(
        {"success": True, "message": "Notification created", "id": notification.id}
    )


@routes.post("/api/v1/inbound/webhook-logs")
async def receive_delivery_log(request: web.Request):
    raw_body = await request.read()
    gateway = await get_inbound_gateway(request)
    with service_errors():
        log = await gateway.accept_delivery_log(raw_body, request.headers.get(SIGNATURE_HEADER))
    return web.json_response(log.model_dump(mode="json"), status=201)
