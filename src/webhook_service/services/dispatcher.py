"""Outbound webhook delivery: envelope, signature, HTTP POST, delivery log."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Protocol

import structlog
from aiohttp import ClientSession
from pydantic_core import PydanticSerializationError

from webhook_service.domain.dto import DeliveryLogCreateDTO
from webhook_service.domain.enums import WebhookEventType
from webhook_service.domain.webhooks import (
    DeliveryOutcome,
    Resource,
    ResourceEventData,
    TestEventData,
    WebhookDeliveryLog,
    WebhookEnvelope,
    WebhookSubscription,
)
from webhook_service.otel import get_tracer
from webhook_service.services.matcher import SubscriptionMatcher
from webhook_service.services.retries import compute_next_retry_at
from webhook_service.services.signing import sign

logger = structlog.get_logger(__name__)
_tracer = get_tracer(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
WEBHOOK_ID_HEADER = "X-Webhook-Id"

TEST_EVENT_MESSAGE = "This is a test event"


class DeliveryLogStore(Protocol):
    async def create(self, data: DeliveryLogCreateDTO) -> WebhookDeliveryLog: ...


@dataclass(frozen=True)
class DeliveryAttempt:
    success: bool
    status_code: int | None
    response: str | None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_payload(
    subscription: WebhookSubscription,
    event_type: WebhookEventType,
    data: Any,
    timestamp: datetime,
) -> str:
    """Serialize the envelope; unserializable data is replaced by a notice."""
    envelope = WebhookEnvelope(
        event_type=event_type,
        timestamp=timestamp,
        webhook_id=str(subscription.id),
        data=data,
    )
    try:
        return envelope.to_json()
    except (PydanticSerializationError, TypeError, ValueError) as exc:
        logger.warning(
            "webhook payload serialization failed",
            subscription_id=str(subscription.id),
            event_type=event_type.value,
            error=str(exc),
        )
        envelope.data = f"Payload serialization failed. Event type: {event_type.value}"
        return envelope.to_json()


class WebhookDispatcher:
    def __init__(
        self,
        matcher: SubscriptionMatcher,
        logs: DeliveryLogStore,
        session: ClientSession,
        *,
        response_max_chars: int = 4000,
        max_concurrency: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._matcher = matcher
        self._logs = logs
        self._session = session
        self._response_max_chars = response_max_chars
        self._max_concurrency = max(1, max_concurrency)
        self._clock = clock

    def _truncate(self, text: str | None) -> str | None:
        if text is None:
            return None
        return text[: self._response_max_chars]

    async def deliver(
        self,
        subscription: WebhookSubscription,
        body: str,
        event_type: WebhookEventType,
    ) -> DeliveryAttempt:
        """POST an already serialized body. Never raises on transport errors."""
        body_bytes = body.encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: event_type.value,
            WEBHOOK_ID_HEADER: str(subscription.id),
        }
        if subscription.secret:
            headers[SIGNATURE_HEADER] = sign(body_bytes, subscription.secret)
        with _tracer.start_as_current_span("webhook.deliver") as span:
            span.set_attribute("webhook.id", str(subscription.id))
            span.set_attribute("webhook.event_type", event_type.value)
            try:
                async with self._session.post(
                    subscription.url, data=body_bytes, headers=headers
                ) as resp:
                    text = await resp.text()
                    span.set_attribute("http.status_code", resp.status)
                    return DeliveryAttempt(
                        success=200 <= resp.status < 300,
                        status_code=resp.status,
                        response=self._truncate(text),
                    )
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "webhook request failed",
                    subscription_id=str(subscription.id),
                    url=subscription.url,
                    error=error,
                )
                return DeliveryAttempt(
                    success=False,
                    status_code=None,
                    response=self._truncate(f"Request failed: {error}"),
                )

    async def send(
        self,
        subscription: WebhookSubscription,
        event_type: WebhookEventType,
        data: Any,
        resource: Resource | None = None,
        *,
        resource_id: int | None = None,
    ) -> DeliveryOutcome:
        """Deliver one event to one subscription and write its delivery log entry."""
        now = self._clock()
        body = build_payload(subscription, event_type, data, now)
        attempt = await self.deliver(subscription, body, event_type)

        next_retry_at = None
        if not attempt.success:
            next_retry_at = compute_next_retry_at(
                now,
                retry_delay_seconds=subscription.retry_delay_seconds,
                retry_count=0,
                max_retries=subscription.max_retries,
            )
        log = await self._logs.create(
            DeliveryLogCreateDTO(
                subscription_id=subscription.id,
                event_type=event_type,
                payload=body,
                resource_id=resource.id if resource is not None else resource_id,
                status_code=attempt.status_code,
                response=attempt.response,
                success=attempt.success,
                retry_count=0,
                next_retry_at=next_retry_at,
            )
        )
        logger.info(
            "webhook delivered" if attempt.success else "webhook delivery failed",
            subscription_id=str(subscription.id),
            event_type=event_type.value,
            status_code=attempt.status_code,
            next_retry_at=next_retry_at.isoformat() if next_retry_at else None,
        )
        return DeliveryOutcome(
            log_id=log.id,
            subscription_id=subscription.id,
            success=attempt.success,
            status_code=attempt.status_code,
            response=attempt.response,
            retry_count=0,
            next_retry_at=next_retry_at,
        )

    async def process_resource_event(
        self,
        event_type: WebhookEventType,
        resource_id: int,
        *,
        resource: Resource | None = None,
        data: Any = None,
    ) -> List[DeliveryOutcome]:
        """Fan an event out to every matching subscription.

        Without ``data`` the stored resource, or the given snapshot, is sent.
        A failure for one subscription is logged and never affects the others.
        """
        scope, subscriptions = await self._matcher.match(resource_id, event_type, resource=resource)
        if not subscriptions:
            return []
        resource = resource or scope.resource
        if data is None and resource is not None:
            data = ResourceEventData.from_resource(resource)

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _send_one(subscription: WebhookSubscription) -> DeliveryOutcome | None:
            async with semaphore:
                try:
                    return await self.send(
                        subscription, event_type, data, resource, resource_id=resource_id
                    )
                except Exception:
                    logger.exception(
                        "webhook dispatch failed",
                        subscription_id=str(subscription.id),
                        event_type=event_type.value,
                    )
                    return None

        results = await asyncio.gather(*(_send_one(s) for s in subscriptions))
        return [r for r in results if r is not None]

    async def send_test(self, subscription: WebhookSubscription) -> DeliveryOutcome:
        data = TestEventData(
            message=TEST_EVENT_MESSAGE,
            timestamp=self._clock(),
            webhook_id=str(subscription.id),
        )
        return await self.send(subscription, WebhookEventType.ALL, data)
