"""Resolve which subscriptions receive a resource event."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Protocol, Sequence, Tuple

import structlog

from webhook_service.domain.enums import WebhookEventType
from webhook_service.domain.webhooks import Resource, WebhookSubscription

logger = structlog.get_logger(__name__)


class SubscriptionSource(Protocol):
    async def list_candidates(
        self,
        event_type: WebhookEventType,
        *,
        resource_ids: Sequence[int],
        resource_type_id: int | None,
        site_id: str | None,
    ) -> List[WebhookSubscription]: ...


class ResourceLookup(Protocol):
    async def get(self, resource_id: int) -> Resource | None: ...

    async def list_ancestor_ids(self, resource_id: int) -> List[int]: ...


@dataclass(frozen=True)
class EventScope:
    """Where an event happened: the resource, its parent chain, type and site.

    Only ``resource_id`` is known when the resource could not be looked up.
    """

    resource_id: int
    ancestor_ids: tuple[int, ...] = ()
    resource_type_id: int | None = None
    site_id: str | None = None
    resource: Resource | None = field(default=None, compare=False)


def subscription_matches(
    subscription: WebhookSubscription,
    scope: EventScope,
    event_type: WebhookEventType,
) -> bool:
    if not subscription.enabled:
        return False
    if subscription.event_type not in (event_type, WebhookEventType.ALL):
        return False
    if subscription.resource_id is not None:
        if subscription.resource_id == scope.resource_id:
            return True
        if subscription.include_sub_resources and subscription.resource_id in scope.ancestor_ids:
            return True
    if (
        subscription.resource_type_id is not None
        and scope.resource_type_id is not None
        and subscription.resource_type_id == scope.resource_type_id
    ):
        return True
    if subscription.is_site_wide and scope.site_id is not None:
        return subscription.site_id == scope.site_id
    return False


class SubscriptionMatcher:
    def __init__(self, subscriptions: SubscriptionSource, resources: ResourceLookup):
        self._subscriptions = subscriptions
        self._resources = resources

    async def resolve_scope(self, resource_id: int, resource: Resource | None = None) -> EventScope:
        if resource is None:
            try:
                resource = await self._resources.get(resource_id)
            except Exception:
                logger.warning("resource lookup failed", resource_id=resource_id, exc_info=True)
                resource = None
        if resource is None:
            return EventScope(resource_id=resource_id)

        ancestors: list[int] = []
        if resource.parent_id is not None and resource.parent_id != resource_id:
            ancestors.append(resource.parent_id)
            try:
                chain = await self._resources.list_ancestor_ids(resource.parent_id)
            except Exception:
                logger.warning("ancestor lookup failed", resource_id=resource_id, exc_info=True)
                chain = []
            seen = {resource_id, resource.parent_id}
            for ancestor_id in chain:
                if ancestor_id in seen:
                    break
                seen.add(ancestor_id)
                ancestors.append(ancestor_id)
        return EventScope(
            resource_id=resource_id,
            ancestor_ids=tuple(ancestors),
            resource_type_id=resource.type_id,
            site_id=resource.site_id,
            resource=resource,
        )

    async def find_relevant(
        self,
        resource_id: int,
        event_type: WebhookEventType,
        *,
        resource: Resource | None = None,
    ) -> List[WebhookSubscription]:
        _scope, matched = await self.match(resource_id, event_type, resource=resource)
        return matched

    async def match(
        self,
        resource_id: int,
        event_type: WebhookEventType,
        *,
        resource: Resource | None = None,
    ) -> Tuple[EventScope, List[WebhookSubscription]]:
        """Matching subscriptions together with the scope they were matched against."""
        scope = await self.resolve_scope(resource_id, resource)
        candidates = await self._subscriptions.list_candidates(
            event_type,
            resource_ids=[scope.resource_id, *scope.ancestor_ids],
            resource_type_id=scope.resource_type_id,
            site_id=scope.site_id,
        )
        matched: list[WebhookSubscription] = []
        seen_ids = set()
        for subscription in candidates:
            if subscription.id in seen_ids:
                continue
            if subscription_matches(subscription, scope, event_type):
                seen_ids.add(subscription.id)
                matched.append(subscription)
        logger.debug(
            "webhooks matched",
            resource_id=resource_id,
            event_type=event_type.value,
            candidates=len(candidates),
            matched=len(matched),
        )
        return scope, matched
