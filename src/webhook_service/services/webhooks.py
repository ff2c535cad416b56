"""Webhook subscription management (CRUD, delivery logs, test deliveries)."""
from __future__ import annotations

from typing import Any, List, Tuple
from uuid import UUID

import structlog

from webhook_service.core.exceptions import (
    AccessDeniedError,
    NotFoundError,
    SubscriptionConfigError,
)
from webhook_service.domain.dto import SubscriptionCreateDTO, SubscriptionUpdateDTO
from webhook_service.domain.enums import WebhookEventType
from webhook_service.domain.users import UserContext
from webhook_service.domain.webhooks import DeliveryOutcome, WebhookDeliveryLog, WebhookSubscription
from webhook_service.repositories.resources import ResourceRepository
from webhook_service.repositories.webhooks import (
    WebhookDeliveryLogRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services.audit import AuditLogSink
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.signing import generate_secret

logger = structlog.get_logger(__name__)

_IMMUTABLE_SCOPE_FIELDS = ("site_id", "resource_id", "resource_type_id", "include_sub_resources")


class WebhookService:
    def __init__(
        self,
        subscription_repository: WebhookSubscriptionRepository,
        log_repository: WebhookDeliveryLogRepository,
        resource_repository: ResourceRepository,
        audit: AuditLogSink,
        dispatcher: WebhookDispatcher,
    ):
        self._subscriptions = subscription_repository
        self._logs = log_repository
        self._resources = resource_repository
        self._audit = audit
        self._dispatcher = dispatcher

    async def _get_managed(self, subscription_id: UUID, actor: UserContext) -> WebhookSubscription:
        subscription = await self._subscriptions.get(subscription_id)
        if not actor.can_manage_site(subscription.site_id):
            raise AccessDeniedError("You don't have permission to manage this webhook")
        return subscription

    async def _validate_scope(self, data: SubscriptionCreateDTO, actor: UserContext) -> None:
        if (
            data.resource_id is None
            and data.resource_type_id is None
            and data.event_type is not WebhookEventType.ALL
        ):
            raise SubscriptionConfigError(
                "Either resource_id, resource_type_id or event_type ALL must be specified"
            )
        if not actor.can_manage_site(data.site_id):
            raise AccessDeniedError("You don't have permission to create webhooks for this site")
        if data.resource_id is not None:
            resource = await self._resources.get(data.resource_id)
            if resource is None:
                raise NotFoundError(f"Resource {data.resource_id} not found")
            if resource.site_id != data.site_id:
                raise SubscriptionConfigError("Resource does not belong to the webhook's site")
            if not actor.can_manage_site(resource.site_id):
                raise AccessDeniedError("You don't have permission to manage this resource")
        if data.resource_type_id is not None:
            resource_type = await self._resources.get_type(data.resource_type_id)
            if resource_type is None:
                raise NotFoundError(f"Resource type {data.resource_type_id} not found")
            if resource_type.site_id != data.site_id:
                raise SubscriptionConfigError("Resource type does not belong to the webhook's site")

    async def create_subscription(
        self, data: SubscriptionCreateDTO, actor: UserContext
    ) -> Tuple[WebhookSubscription, str]:
        """Persist a subscription. The secret is returned here and nowhere else."""
        await self._validate_scope(data, actor)
        secret = generate_secret()
        subscription = await self._subscriptions.create(
            name=data.name,
            url=data.url,
            event_type=data.event_type,
            enabled=data.enabled,
            site_id=data.site_id,
            resource_id=data.resource_id,
            resource_type_id=data.resource_type_id,
            include_sub_resources=data.include_sub_resources,
            secret=secret,
            max_retries=data.max_retries,
            retry_delay_seconds=data.retry_delay_seconds,
        )
        await self._audit.record(
            "CREATE",
            str(subscription.id),
            actor_id=actor.user_id,
            site_id=subscription.site_id,
            details={"name": subscription.name, "event_type": subscription.event_type.value},
        )
        return subscription, secret

    async def update_subscription(
        self, subscription_id: UUID, data: SubscriptionUpdateDTO, actor: UserContext
    ) -> WebhookSubscription:
        subscription = await self._get_managed(subscription_id, actor)
        changes = data.model_dump(exclude_unset=True)
        for field_name in _IMMUTABLE_SCOPE_FIELDS:
            if field_name in changes and changes[field_name] != getattr(subscription, field_name):
                raise SubscriptionConfigError(f"{field_name} cannot be changed after creation")

        updates: dict[str, Any] = {
            key: value
            for key, value in changes.items()
            if key not in _IMMUTABLE_SCOPE_FIELDS and value is not None
        }
        new_event_type = updates.get("event_type", subscription.event_type)
        if (
            subscription.resource_id is None
            and subscription.resource_type_id is None
            and new_event_type is not WebhookEventType.ALL
        ):
            raise SubscriptionConfigError(
                "Either resource_id, resource_type_id or event_type ALL must be specified"
            )

        updated = await self._subscriptions.update(subscription_id, updates)
        await self._audit.record(
            "UPDATE",
            str(subscription_id),
            actor_id=actor.user_id,
            site_id=updated.site_id,
            details={"fields": sorted(updates)},
        )
        return updated

    async def delete_subscription(self, subscription_id: UUID, actor: UserContext) -> None:
        subscription = await self._get_managed(subscription_id, actor)
        await self._subscriptions.delete(subscription_id)
        await self._audit.record(
            "DELETE",
            str(subscription_id),
            actor_id=actor.user_id,
            site_id=subscription.site_id,
            details={"name": subscription.name},
        )

    async def get_subscription(self, subscription_id: UUID, actor: UserContext) -> WebhookSubscription:
        return await self._get_managed(subscription_id, actor)

    async def list_subscriptions(self, actor: UserContext) -> List[WebhookSubscription]:
        if actor.is_global_admin:
            return await self._subscriptions.list_all()
        if not actor.admin_site_ids:
            return []
        return await self._subscriptions.list_by_sites(sorted(actor.admin_site_ids))

    async def list_logs(
        self,
        subscription_id: UUID,
        actor: UserContext,
        *,
        success: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDeliveryLog], int]:
        await self._get_managed(subscription_id, actor)
        return await self._logs.list_by_subscription(
            subscription_id, success=success, limit=limit, offset=offset
        )

    async def list_accessible_logs(
        self,
        actor: UserContext,
        *,
        success: bool | None = None,
        query: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookDeliveryLog], int]:
        if actor.is_global_admin:
            site_ids = None
        elif actor.admin_site_ids:
            site_ids = sorted(actor.admin_site_ids)
        else:
            return [], 0
        return await self._logs.list_accessible(
            site_ids=site_ids, success=success, query=query, limit=limit, offset=offset
        )

    async def test_subscription(self, subscription_id: UUID, actor: UserContext) -> DeliveryOutcome:
        subscription = await self._get_managed(subscription_id, actor)
        outcome = await self._dispatcher.send_test(subscription)
        logger.info(
            "webhook test delivery",
            subscription_id=str(subscription_id),
            success=outcome.success,
            status_code=outcome.status_code,
        )
        return outcome
