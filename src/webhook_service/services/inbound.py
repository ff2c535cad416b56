"""Authentication and intake of partner callbacks signed with a subscription secret."""
from __future__ import annotations

import json
from typing import Any, Protocol, Type, TypeVar
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError

from webhook_service.core.exceptions import (
    InboundValidationError,
    NotFoundError,
    SignatureVerificationError,
)
from webhook_service.domain.dto import (
    DeliveryLogCreateDTO,
    InboundDeliveryLogDTO,
    InboundNotificationDTO,
)
from webhook_service.domain.enums import NotificationType
from webhook_service.domain.webhooks import Notification, Resource, WebhookDeliveryLog, WebhookSubscription
from webhook_service.services.dispatcher import DeliveryLogStore
from webhook_service.services.signing import verify

logger = structlog.get_logger(__name__)

TModel = TypeVar("TModel", bound=BaseModel)


class SubscriptionGetter(Protocol):
    async def get(self, subscription_id: UUID) -> WebhookSubscription: ...


class ResourceGetter(Protocol):
    async def get(self, resource_id: int) -> Resource | None: ...


class NotificationSink(Protocol):
    async def create(self, *, user_id: str, message: str, type: NotificationType) -> Notification: ...


def _parse(raw_body: bytes, model: Type[TModel]) -> TModel:
    try:
        data: Any = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InboundValidationError("Invalid JSON payload") from exc
    if not isinstance(data, dict):
        raise InboundValidationError("JSON body must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        error = exc.errors()[0]
        message = str(error.get("msg", "invalid payload")).removeprefix("Value error, ")
        location = ".".join(str(part) for part in error.get("loc", ()))
        if location and location not in message:
            message = f"{location}: {message}"
        raise InboundValidationError(message) from exc


class InboundVerificationGateway:
    def __init__(
        self,
        subscriptions: SubscriptionGetter,
        logs: DeliveryLogStore,
        notifications: NotificationSink,
        resources: ResourceGetter,
    ):
        self._subscriptions = subscriptions
        self._logs = logs
        self._notifications = notifications
        self._resources = resources

    async def _verified_subscription(
        self, subscription_id: str, signature: str | None, raw_body: bytes
    ) -> WebhookSubscription | None:
        try:
            webhook_id = UUID(str(subscription_id))
        except ValueError:
            return None
        try:
            subscription = await self._subscriptions.get(webhook_id)
        except NotFoundError:
            return None
        if not subscription.enabled or not subscription.secret or not signature:
            return None
        if not verify(raw_body, signature, subscription.secret):
            return None
        return subscription

    async def authenticate(self, subscription_id: str, signature: str | None, raw_body: bytes) -> bool:
        """True only when ``raw_body`` is signed with the secret of an enabled subscription."""
        return await self._verified_subscription(subscription_id, signature, raw_body) is not None

    async def _require_signature(
        self, webhook_id: str, signature: str | None, raw_body: bytes
    ) -> WebhookSubscription:
        subscription = await self._verified_subscription(webhook_id, signature, raw_body)
        if subscription is None:
            logger.warning("inbound webhook signature rejected", webhook_id=webhook_id)
            raise SignatureVerificationError("Invalid signature")
        return subscription

    async def accept_notification(self, raw_body: bytes, signature: str | None) -> Notification:
        request = _parse(raw_body, InboundNotificationDTO)
        assert request.webhook_id is not None and request.user_id is not None
        assert request.message is not None
        await self._require_signature(request.webhook_id, signature, raw_body)

        notification = await self._notifications.create(
            user_id=request.user_id,
            message=request.message,
            type=request.notification_type,
        )
        logger.info(
            "inbound notification accepted",
            webhook_id=request.webhook_id,
            user_id=request.user_id,
            type=request.notification_type.value,
            event_id=request.event_id,
            event_type=request.event_type,
            resource_id=request.resource_id,
        )
        return notification

    async def accept_delivery_log(self, raw_body: bytes, signature: str | None) -> WebhookDeliveryLog:
        request = _parse(raw_body, InboundDeliveryLogDTO)
        assert request.webhook_id is not None and request.event_type is not None
        assert request.payload is not None and request.success is not None
        subscription = await self._require_signature(request.webhook_id, signature, raw_body)

        retry_count = request.retry_count or 0
        if retry_count > subscription.max_retries:
            raise InboundValidationError(
                f"retryCount cannot exceed the webhook's maxRetries ({subscription.max_retries})"
            )
        if request.resource_id is not None:
            resource = await self._resources.get(request.resource_id)
            if resource is None:
                raise NotFoundError(f"Resource {request.resource_id} not found")

        log = await self._logs.create(
            DeliveryLogCreateDTO(
                subscription_id=subscription.id,
                event_type=request.event_type,
                payload=request.payload,
                resource_id=request.resource_id,
                status_code=request.status_code,
                response=request.response,
                success=request.success,
                retry_count=retry_count,
                next_retry_at=None,
            )
        )
        logger.info(
            "inbound delivery log accepted",
            webhook_id=request.webhook_id,
            log_id=str(log.id),
            success=request.success,
        )
        return log
