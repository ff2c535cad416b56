"""Pydantic DTOs for API, repository and service layers."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Callable
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StringConstraints, field_validator

from webhook_service.domain.enums import NotificationType, WebhookEventType
from webhook_service.domain.webhooks import Resource


def _require_http_url(value: str) -> str:
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError("url must be an http(s) URL")
    return value


class SubscriptionCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    url: str = Field(min_length=1, max_length=255)
    event_type: WebhookEventType = WebhookEventType.ALL
    enabled: bool = True
    site_id: str = Field(min_length=1)
    resource_id: int | None = None
    resource_type_id: int | None = None
    include_sub_resources: bool = False
    max_retries: int = Field(default=3, ge=0)
    retry_delay_seconds: int = Field(default=60, gt=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        return _require_http_url(value)

    @field_validator("name", "site_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()


class SubscriptionUpdateDTO(BaseModel):
    """Partial update. Scope fields are accepted only to reject changes to them."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=100)
    url: str | None = Field(default=None, min_length=1, max_length=255)
    event_type: WebhookEventType | None = None
    enabled: bool | None = None
    max_retries: int | None = Field(default=None, ge=0)
    retry_delay_seconds: int | None = Field(default=None, gt=0)

    site_id: str | None = None
    resource_id: int | None = None
    resource_type_id: int | None = None
    include_sub_resources: bool | None = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str | None) -> str | None:
        return None if value is None else _require_http_url(value)


class DeliveryLogCreateDTO(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscription_id: UUID
    event_type: WebhookEventType
    payload: str
    resource_id: int | None = None
    status_code: int | None = None
    response: str | None = None
    success: bool
    retry_count: int = 0
    next_retry_at: datetime | None = None


class ResourceEventDTO(BaseModel):
    """Domain event reported by a producer (resource or booking service)."""

    model_config = ConfigDict(extra="forbid")

    event_type: WebhookEventType
    resource_id: int
    # Snapshot for resources that may no longer be stored (e.g. RESOURCE_DELETED)
    resource: Resource | None = None
    data: dict[str, Any] | None = None

    @field_validator("event_type")
    @classmethod
    def _concrete_event(cls, value: WebhookEventType) -> WebhookEventType:
        if value is WebhookEventType.ALL:
            raise ValueError("ALL is a subscription filter, not an event")
        return value


def _required(label: str) -> Callable[[Any], Any]:
    def check(value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError(f"{label} is required")
        return value

    return check


def _notification_type(value: str | None) -> str:
    if value is None or not value.strip():
        return NotificationType.INFO.value
    if len(value) > 50:
        raise ValueError("type cannot exceed 50 characters")
    try:
        return NotificationType(value.strip().upper()).value
    except ValueError as exc:
        raise ValueError(f"unknown notification type: {value}") from exc


# matches the width of webhook_delivery_logs.response
_LogText = Annotated[str, StringConstraints(max_length=4000)]


def _message(value: str) -> str:
    if len(value) > 500:
        raise ValueError("message cannot exceed 500 characters")
    return value


class InboundNotificationDTO(BaseModel):
    """Body of a partner-pushed notification addressed to one user."""

    # defaults are validated too, so a missing field reports "<field> is required"
    model_config = ConfigDict(populate_by_name=True, validate_default=True)

    webhook_id: Annotated[str | None, AfterValidator(_required("webhookId"))] = Field(
        default=None, alias="webhookId"
    )
    user_id: Annotated[str | None, AfterValidator(_required("userId"))] = Field(
        default=None, alias="userId"
    )
    message: Annotated[str | None, AfterValidator(_required("message")), AfterValidator(_message)] = None
    type: Annotated[str | None, AfterValidator(_notification_type)] = None
    event_id: str | None = Field(default=None, alias="eventId")
    resource_id: str | None = Field(default=None, alias="resourceId")
    event_type: str | None = Field(default=None, alias="eventType")

    @property
    def notification_type(self) -> NotificationType:
        return NotificationType(self.type or NotificationType.INFO.value)


class InboundDeliveryLogDTO(BaseModel):
    """Body of a partner-reported delivery outcome."""

    model_config = ConfigDict(populate_by_name=True, validate_default=True)

    webhook_id: Annotated[str | None, AfterValidator(_required("webhookId"))] = Field(
        default=None, alias="webhookId"
    )
    event_type: Annotated[WebhookEventType | None, AfterValidator(_required("eventType"))] = Field(
        default=None, alias="eventType"
    )
    payload: Annotated[_LogText | None, AfterValidator(_required("payload"))] = None
    success: Annotated[bool | None, AfterValidator(_required("success"))] = None
    resource_id: int | None = Field(default=None, alias="resourceId")
    status_code: int | None = Field(default=None, alias="statusCode")
    response: _LogText | None = None
    retry_count: int | None = Field(default=None, alias="retryCount", ge=0)
