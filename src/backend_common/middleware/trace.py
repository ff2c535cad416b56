"""Request tracing middleware: trace/request ids bound into structlog context."""
from __future__ import annotations

import time
from typing import Any, Mapping
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

logger = structlog.get_logger(__name__)

# Never written to logs
SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "x-auth-token",
        "x-webhook-signature",
    }
)


def is_valid_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


def get_safe_headers(headers: Mapping[str, Any]) -> dict[str, Any]:
    """Copy headers without sensitive values; multi-valued headers keep at most three."""
    safe: dict[str, Any] = {}
    for key, value in dict(headers).items():
        if key.lower() in SENSITIVE_HEADERS:
            continue
        if hasattr(value, "__iter__") and not isinstance(value, (str, bytes)):
            values = list(value)
            if len(values) == 1:
                safe[key] = values[0]
            elif values:
                safe[key] = values[:3]
        else:
            safe[key] = value
    return safe


def _incoming_id(request: web.Request, header: str) -> str:
    value = request.headers.get(header)
    if value and is_valid_uuid(value):
        return value
    return str(uuid4())


def create_trace_middleware(service_name: str):
    """Build the middleware for ``service_name``."""

    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        started = time.monotonic()
        trace_id = _incoming_id(request, TRACE_ID_HEADER)
        request_id = _incoming_id(request, REQUEST_ID_HEADER)
        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
        )
        logger.info(
            "Incoming request",
            url=str(request.url),
            query_string=request.query_string or None,
            remote=request.remote,
            content_length=request.content_length,
            headers=get_safe_headers(request.headers),
        )

        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.warning(
                "Request failed with HTTP exception",
                status_code=exc.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
                error=exc.text or exc.reason,
            )
            raise
        except Exception as exc:
            logger.error(
                "Request failed with exception",
                duration_ms=round((time.monotonic() - started) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise
        else:
            fields = {
                "status_code": response.status,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            }
            if response.status >= 400:
                logger.warning("Request completed with error status", **fields)
            else:
                logger.info("Request completed", **fields)
            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware
