"""Webhook domain primitives."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from webhook_service.domain.enums import NotificationType, ResourceStatus, WebhookEventType


class WebhookSubscription(BaseModel):
    id: UUID
    name: str
    url: str
    event_type: WebhookEventType = WebhookEventType.ALL
    enabled: bool = True
    site_id: str
    resource_id: int | None = None
    resource_type_id: int | None = None
    include_sub_resources: bool = False
    secret: str | None = None
    max_retries: int = 3
    retry_delay_seconds: int = 60
    created_at: datetime
    updated_at: datetime

    @property
    def is_site_wide(self) -> bool:
        return self.resource_id is None and self.resource_type_id is None


class WebhookDeliveryLog(BaseModel):
    id: UUID
    subscription_id: UUID
    event_type: WebhookEventType
    payload: str
    resource_id: int | None = None
    status_code: int | None = None
    response: str | None = None
    success: bool
    retry_count: int = 0
    next_retry_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class Resource(BaseModel):
    """Read-only view of a bookable resource owned by the platform."""

    id: int
    name: str
    status: ResourceStatus = ResourceStatus.ACTIVE
    type_id: int | None = None
    parent_id: int | None = None
    site_id: str


class ResourceType(BaseModel):
    id: int
    name: str
    site_id: str


class Notification(BaseModel):
    id: int
    user_id: str
    message: str
    type: NotificationType
    read: bool = False
    created_at: datetime


class WebhookEnvelope(BaseModel):
    """Body of every outbound webhook call."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: WebhookEventType = Field(alias="eventType")
    timestamp: datetime
    webhook_id: str = Field(alias="webhookId")
    data: Any = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ResourceEventData(BaseModel):
    kind: Literal["resource"] = "resource"
    id: int
    name: str
    status: ResourceStatus
    type_id: int | None = None
    parent_id: int | None = None
    site_id: str

    @classmethod
    def from_resource(cls, resource: Resource) -> "ResourceEventData":
        return cls(
            id=resource.id,
            name=resource.name,
            status=resource.status,
            type_id=resource.type_id,
            parent_id=resource.parent_id,
            site_id=resource.site_id,
        )


class BookingEventData(BaseModel):
    kind: Literal["booking"] = "booking"
    id: int
    resource_id: int
    user_id: str
    title: str | None = None
    start: datetime
    end: datetime


class TestEventData(BaseModel):
    __test__ = False  # keep pytest from collecting this class

    kind: Literal["test"] = "test"
    message: str
    timestamp: datetime
    webhook_id: str


class DeliveryOutcome(BaseModel):
    """Result of one delivery attempt as recorded in the log."""

    log_id: UUID | None = None
    subscription_id: UUID
    success: bool
    status_code: int | None = None
    response: str | None = None
    retry_count: int = 0
    next_retry_at: datetime | None = None
