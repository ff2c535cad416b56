from __future__ import annotations

import json

import pytest

from webhook_service.core.exceptions import (
    InboundValidationError,
    NotFoundError,
    SignatureVerificationError,
)
from webhook_service.domain.enums import NotificationType
from webhook_service.services.inbound import InboundVerificationGateway
from webhook_service.services.signing import sign


@pytest.fixture
def gateway(store):
    return InboundVerificationGateway(store.subscriptions, store.logs, store.notifications, store.resources)


def _body(**fields) -> bytes:
    return json.dumps(fields).encode("utf-8")


@pytest.mark.asyncio
async def test_authenticate_accepts_valid_signature(store, gateway):
    subscription = store.subscriptions.add()
    body = b'{"hello": "world"}'

    assert await gateway.authenticate(str(subscription.id), sign(body, subscription.secret), body)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "case",
    ["malformed_id", "unknown_id", "disabled", "no_secret", "no_signature", "wrong_signature"],
)
async def test_authenticate_fails_closed(store, gateway, case):
    body = b"{}"
    subscription = store.subscriptions.add(
        enabled=case != "disabled",
        secret=None if case == "no_secret" else "c2VjcmV0",
    )
    subscription_id = str(subscription.id)
    signature: str | None = sign(body, "c2VjcmV0")
    if case == "malformed_id":
        subscription_id = "42"
    elif case == "unknown_id":
        subscription_id = "00000000-0000-0000-0000-000000000000"
    elif case == "no_signature":
        signature = None
    elif case == "wrong_signature":
        signature = sign(body, "other")

    assert await gateway.authenticate(subscription_id, signature, body) is False


@pytest.mark.asyncio
async def test_accept_notification_creates_notification(store, gateway):
    subscription = store.subscriptions.add()
    body = _body(webhookId=str(subscription.id), userId="u-1", message="Disk almost full", type="warning")

    notification = await gateway.accept_notification(body, sign(body, subscription.secret))

    assert notification.user_id == "u-1"
    assert notification.type is NotificationType.WARNING
    assert store.notifications.items == [notification]


@pytest.mark.asyncio
async def test_accept_notification_defaults_type_to_info(store, gateway):
    subscription = store.subscriptions.add()
    body = _body(webhookId=str(subscription.id), userId="u-1", message="hello", type="  ")

    notification = await gateway.accept_notification(body, sign(body, subscription.secret))

    assert notification.type is NotificationType.INFO


@pytest.mark.asyncio
async def test_wrong_signature_is_rejected_without_side_effects(store, gateway):
    subscription = store.subscriptions.add()
    body = _body(webhookId=str(subscription.id), userId="u-1", message="hi")

    with pytest.raises(SignatureVerificationError):
        await gateway.accept_notification(body, sign(body, "not-the-secret"))

    assert store.notifications.items == []
    assert store.logs.entries == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("body", "message"),
    [
        (b"not json", "Invalid JSON payload"),
        (b"[1, 2]", "JSON body must be an object"),
        (json.dumps({"userId": "u", "message": "m"}).encode(), "webhookId is required"),
        (json.dumps({"webhookId": "x", "message": "m"}).encode(), "userId is required"),
        (json.dumps({"webhookId": "x", "userId": "u", "message": " "}).encode(), "message is required"),
        (json.dumps({"webhookId": "x", "userId": "u", "message": "m" * 501}).encode(), "500"),
    ],
)
async def test_notification_validation_runs_before_signature(store, gateway, body, message):
    with pytest.raises(InboundValidationError, match=message):
        await gateway.accept_notification(body, None)


@pytest.mark.asyncio
async def test_accept_delivery_log_records_entry_without_retry(store, gateway):
    subscription = store.subscriptions.add()
    store.resources.add(3)
    body = _body(
        webhookId=str(subscription.id),
        eventType="EVENT_UPDATED",
        payload='{"id": 3}',
        success=False,
        resourceId=3,
        statusCode=502,
        response="bad gateway",
    )

    entry = await gateway.accept_delivery_log(body, sign(body, subscription.secret))

    assert entry.subscription_id == subscription.id
    assert entry.retry_count == 0
    assert entry.next_retry_at is None
    assert entry.status_code == 502
    assert store.logs.entries[entry.id] == entry


@pytest.mark.asyncio
async def test_accept_delivery_log_unknown_resource(store, gateway):
    subscription = store.subscriptions.add()
    body = _body(
        webhookId=str(subscription.id),
        eventType="EVENT_UPDATED",
        payload="{}",
        success=True,
        resourceId=404,
    )

    with pytest.raises(NotFoundError):
        await gateway.accept_delivery_log(body, sign(body, subscription.secret))
    assert store.logs.entries == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("fields", "message"),
    [
        ({"eventType": "EVENT_UPDATED", "payload": "{}", "success": True}, "webhookId is required"),
        ({"webhookId": "x", "payload": "{}", "success": True}, "eventType is required"),
        ({"webhookId": "x", "eventType": "EVENT_UPDATED", "success": True}, "payload is required"),
        ({"webhookId": "x", "eventType": "EVENT_UPDATED", "payload": "{}"}, "success is required"),
        ({"webhookId": "x", "eventType": "NOPE", "payload": "{}", "success": True}, "eventType"),
    ],
)
async def test_delivery_log_validation(gateway, fields, message):
    with pytest.raises(InboundValidationError, match=message):
        await gateway.accept_delivery_log(_body(**fields), None)


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["payload", "response"])
async def test_delivery_log_text_is_capped_before_signature(store, gateway, field):
    subscription = store.subscriptions.add()
    fields = {
        "webhookId": str(subscription.id),
        "eventType": "EVENT_UPDATED",
        "payload": "{}",
        "success": False,
    }
    fields[field] = "r" * 4001
    body = _body(**fields)

    with pytest.raises(InboundValidationError, match="4000"):
        await gateway.accept_delivery_log(body, sign(body, subscription.secret))
    assert store.logs.entries == {}


@pytest.mark.asyncio
async def test_delivery_log_text_at_the_cap_is_accepted(store, gateway):
    subscription = store.subscriptions.add()
    body = _body(
        webhookId=str(subscription.id),
        eventType="EVENT_UPDATED",
        payload="p" * 4000,
        response="r" * 4000,
        success=False,
    )

    entry = await gateway.accept_delivery_log(body, sign(body, subscription.secret))

    assert len(entry.response) == 4000


@pytest.mark.asyncio
async def test_delivery_log_retry_count_is_bounded_by_max_retries(store, gateway):
    subscription = store.subscriptions.add(max_retries=1)
    fields = {
        "webhookId": str(subscription.id),
        "eventType": "EVENT_UPDATED",
        "payload": "{}",
        "success": False,
    }
    too_many = _body(**fields, retryCount=9)

    with pytest.raises(InboundValidationError, match="maxRetries"):
        await gateway.accept_delivery_log(too_many, sign(too_many, subscription.secret))
    assert store.logs.entries == {}

    at_limit = _body(**fields, retryCount=1)
    entry = await gateway.accept_delivery_log(at_limit, sign(at_limit, subscription.secret))
    assert entry.retry_count == 1


@pytest.mark.asyncio
async def test_notification_context_fields_are_accepted(store, gateway):
    subscription = store.subscriptions.add()
    body = _body(
        webhookId=str(subscription.id),
        userId="u-1",
        message="Booking confirmed",
        eventId="evt-9",
        eventType="EVENT_CREATED",
        resourceId="12",
        metadata={"source": "partner"},
    )

    notification = await gateway.accept_notification(body, sign(body, subscription.secret))

    assert notification.message == "Booking confirmed"
    assert len(store.notifications.items) == 1
