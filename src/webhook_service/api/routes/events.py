"""Producer entry point for resource and booking events."""
from __future__ import annotations

from aiohttp import web
from pydantic import ValidationError

from webhook_service.api.utils import read_json
from webhook_service.domain.dto import ResourceEventDTO
from webhook_service.webhooks_dispatcher import ResourceEventJob, submit_resource_event

routes = web.RouteTableDef()


@routes.post("/api/v1/resource-events")
async def publish_resource_event(request: web.Request):
    body = await read_json(request)
    try:
        dto = ResourceEventDTO.model_validate(body)
    except ValidationError as exc:
        raise web.HTTPBadRequest(text=exc.json()) from exc
    if dto.resource is not None and dto.resource.id != dto.resource_id:
        raise web.HTTPBadRequest(text="resource.id must equal resource_id")
    await submit_resource_event(
        request.app,
        ResourceEventJob(
            event_type=dto.event_type,
            resource_id=dto.resource_id,
            resource=dto.resource,
            data=dto.data,
        ),
    )
    return web.json_response({"status": "queued"}, status=202)
