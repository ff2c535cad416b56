"""Helper utilities for API handlers."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

from aiohttp import web

from backend_common.aiohttp_app import read_json as read_json  # noqa: F401
from webhook_service.core.exceptions import (
    AccessDeniedError,
    InboundValidationError,
    NotFoundError,
    SignatureVerificationError,
    SubscriptionConfigError,
)


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(str(value))
    except (ValueError, TypeError) as exc:
        raise web.HTTPBadRequest(text=f"Invalid {label}") from exc


def parse_bool_param(request: web.Request, name: str) -> bool | None:
    raw = request.rel_url.query.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise web.HTTPBadRequest(text=f"{name} must be true or false")


def pagination_params(
    request: web.Request,
    *,
    default_limit: int = 50,
    max_limit: int = 100,
) -> tuple[int, int]:
    query = request.rel_url.query
    try:
        limit = int(query.get("limit", str(default_limit)))
        offset = int(query.get("offset", "0"))
    except ValueError as exc:
        raise web.HTTPBadRequest(text="limit and offset must be integers") from exc
    if limit <= 0:
        limit = default_limit
    limit = min(limit, max_limit)
    if offset < 0:
        offset = 0
    return limit, offset


def paginated_response(
    items: list[Any],
    *,
    limit: int,
    offset: int,
    key: str,
    total: int,
) -> dict[str, Any]:
    page = offset // limit + 1 if limit else 1
    return {
        key: items,
        "total": total,
        "page": page,
        "page_size": limit,
    }


@contextmanager
def service_errors() -> Iterator[None]:
    """Translate service exceptions into HTTP errors."""
    try:
        yield
    except (SubscriptionConfigError, InboundValidationError) as exc:
        raise web.HTTPBadRequest(text=str(exc)) from exc
    except SignatureVerificationError as exc:
        raise web.HTTPUnauthorized(text=str(exc)) from exc
    except AccessDeniedError as exc:
        raise web.HTTPForbidden(text=str(exc)) from exc
    except NotFoundError as exc:
        raise web.HTTPNotFound(text=str(exc)) from exc
