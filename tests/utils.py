from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from webhook_service.services.signing import sign
from webhook_service.webhooks_dispatcher import EVENT_QUEUE_KEY

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_headers(
    user_id: str = "user-1",
    *,
    sites: tuple[str, ...] = (),
    global_admin: bool = False,
) -> dict[str, str]:
    headers = {"X-User-Id": user_id}
    if sites:
        headers["X-Admin-Sites"] = ",".join(sites)
    if global_admin:
        headers["X-Global-Admin"] = "true"
    return headers


def signed_body(payload: dict[str, Any], secret: str) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode("utf-8")
    return body, {"Content-Type": "application/json", "X-Webhook-Signature": sign(body, secret)}


def queued_jobs(client) -> list:
    """Drain the resource event queue of a test app."""
    queue = client.server.app[EVENT_QUEUE_KEY]
    jobs = []
    while not queue.empty():
        jobs.append(queue.get_nowait())
    return jobs
