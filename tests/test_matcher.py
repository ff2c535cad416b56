from __future__ import annotations

import random

import pytest

from webhook_service.domain.enums import WebhookEventType
from webhook_service.domain.webhooks import Resource
from webhook_service.services.matcher import EventScope, SubscriptionMatcher, subscription_matches

from tests.fakes import (
    InMemoryResourceRepository,
    InMemorySubscriptionRepository,
    make_subscription,
)

CONCRETE_EVENTS = [e for e in WebhookEventType if e is not WebhookEventType.ALL]


@pytest.fixture
def subscriptions():
    return InMemorySubscriptionRepository()


@pytest.fixture
def resources():
    return InMemoryResourceRepository()


@pytest.fixture
def matcher(subscriptions, resources):
    return SubscriptionMatcher(subscriptions, resources)


@pytest.mark.asyncio
async def test_parent_subscription_with_sub_resources_matches_child(subscriptions, resources, matcher):
    resources.add(1, site_id="site-1")
    resources.add(2, site_id="site-1", parent_id=1)
    parent_sub = subscriptions.add(resource_id=1, include_sub_resources=True)
    subscriptions.add(resource_id=1, include_sub_resources=False)

    matched = await matcher.find_relevant(2, WebhookEventType.RESOURCE_UPDATED)

    assert [s.id for s in matched] == [parent_sub.id]


@pytest.mark.asyncio
async def test_ancestor_match_walks_whole_chain(subscriptions, resources, matcher):
    resources.add(1)
    resources.add(2, parent_id=1)
    resources.add(3, parent_id=2)
    resources.add(4, parent_id=3)
    root_sub = subscriptions.add(resource_id=1, include_sub_resources=True)

    matched = await matcher.find_relevant(4, WebhookEventType.RESOURCE_STATUS_CHANGED)

    assert [s.id for s in matched] == [root_sub.id]


@pytest.mark.asyncio
async def test_site_wide_subscription_only_matches_its_site(subscriptions, resources, matcher):
    resources.add(10, site_id="site-1")
    resources.add(20, site_id="site-2")
    site_sub = subscriptions.add(site_id="site-1", event_type=WebhookEventType.ALL)

    for event in CONCRETE_EVENTS:
        assert [s.id for s in await matcher.find_relevant(10, event)] == [site_sub.id]
        assert await matcher.find_relevant(20, event) == []


@pytest.mark.asyncio
async def test_event_filter_and_enabled_flag(subscriptions, resources, matcher):
    resources.add(1)
    created = subscriptions.add(resource_id=1, event_type=WebhookEventType.EVENT_CREATED)
    subscriptions.add(resource_id=1, event_type=WebhookEventType.ALL, enabled=False)

    assert [s.id for s in await matcher.find_relevant(1, WebhookEventType.EVENT_CREATED)] == [created.id]
    assert await matcher.find_relevant(1, WebhookEventType.EVENT_DELETED) == []


@pytest.mark.asyncio
async def test_resource_type_subscription(subscriptions, resources, matcher):
    resources.add(1, type_id=7)
    resources.add(2, type_id=8)
    typed = subscriptions.add(resource_type_id=7)

    assert [s.id for s in await matcher.find_relevant(1, WebhookEventType.RESOURCE_CREATED)] == [typed.id]
    assert await matcher.find_relevant(2, WebhookEventType.RESOURCE_CREATED) == []


@pytest.mark.asyncio
async def test_snapshot_is_used_for_deleted_resource(subscriptions, resources, matcher):
    resources.add(1, site_id="site-1")
    parent_sub = subscriptions.add(resource_id=1, include_sub_resources=True)
    site_sub = subscriptions.add(site_id="site-1")
    snapshot = Resource(id=99, name="gone", parent_id=1, site_id="site-1")

    matched = await matcher.find_relevant(99, WebhookEventType.RESOURCE_DELETED, resource=snapshot)

    assert {s.id for s in matched} == {parent_sub.id, site_sub.id}


@pytest.mark.asyncio
async def test_match_returns_looked_up_resource(subscriptions, resources, matcher):
    stored = resources.add(4, site_id="site-1", type_id=2)
    sub = subscriptions.add(site_id="site-1")

    scope, matched = await matcher.match(4, WebhookEventType.RESOURCE_STATUS_CHANGED)

    assert scope.resource == stored
    assert scope.site_id == "site-1"
    assert [s.id for s in matched] == [sub.id]


@pytest.mark.asyncio
async def test_failed_lookup_falls_back_to_exact_resource(subscriptions, resources, matcher):
    resources.add(1, site_id="site-1", type_id=3)
    exact = subscriptions.add(resource_id=1)
    subscriptions.add(resource_type_id=3)
    subscriptions.add(site_id="site-1")
    resources.fail_lookups = True

    matched = await matcher.find_relevant(1, WebhookEventType.RESOURCE_UPDATED)

    assert [s.id for s in matched] == [exact.id]


@pytest.mark.asyncio
async def test_parent_cycle_terminates(subscriptions, resources, matcher):
    resources.add(1, parent_id=2)
    resources.add(2, parent_id=1)
    sub = subscriptions.add(resource_id=2, include_sub_resources=True)

    matched = await matcher.find_relevant(1, WebhookEventType.RESOURCE_UPDATED)

    assert [s.id for s in matched] == [sub.id]


def _expected(subscription, resource_id, chain, type_id, site_id, event) -> bool:
    if not subscription.enabled:
        return False
    if subscription.event_type not in (event, WebhookEventType.ALL):
        return False
    return (
        subscription.resource_id == resource_id
        or (subscription.include_sub_resources and subscription.resource_id in chain)
        or (subscription.resource_type_id is not None and subscription.resource_type_id == type_id)
        or (
            subscription.resource_id is None
            and subscription.resource_type_id is None
            and subscription.site_id == site_id
        )
    )


@pytest.mark.asyncio
async def test_find_relevant_agrees_with_definition_on_random_graphs():
    rng = random.Random(42)
    sites = ["site-1", "site-2"]
    for _ in range(40):
        subscriptions = InMemorySubscriptionRepository()
        resources = InMemoryResourceRepository()
        matcher = SubscriptionMatcher(subscriptions, resources)

        for rid in range(1, 13):
            parent = rng.choice([None, *range(1, rid)])
            resources.add(
                rid,
                site_id=rng.choice(sites),
                type_id=rng.choice([None, 1, 2, 3]),
                parent_id=parent,
            )
        for _ in range(25):
            resource_id = rng.choice([None, None, *range(1, 13)])
            type_id = rng.choice([None, None, 1, 2, 3])
            event = rng.choice([WebhookEventType.ALL, *CONCRETE_EVENTS])
            subscriptions.add(
                resource_id=resource_id,
                resource_type_id=type_id,
                event_type=event,
                enabled=rng.random() > 0.2,
                include_sub_resources=rng.random() > 0.5,
                site_id=rng.choice(sites),
            )

        for rid in range(1, 13):
            event = rng.choice(CONCRETE_EVENTS)
            resource = resources.resources[rid]
            chain = await resources.list_ancestor_ids(rid)
            expected = {
                s.id
                for s in subscriptions.items.values()
                if _expected(s, rid, chain, resource.type_id, resource.site_id, event)
            }
            matched = await matcher.find_relevant(rid, event)
            assert len(matched) == len({s.id for s in matched})
            assert {s.id for s in matched} == expected


def test_subscription_matches_requires_scope_data():
    site_wide = make_subscription(site_id="site-1")
    assert not subscription_matches(site_wide, EventScope(resource_id=5), WebhookEventType.EVENT_START)
    assert subscription_matches(
        site_wide, EventScope(resource_id=5, site_id="site-1"), WebhookEventType.EVENT_START
    )
