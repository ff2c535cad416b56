"""Domain enums."""
from __future__ import annotations

from enum import Enum


class WebhookEventType(str, Enum):
    EVENT_CREATED = "EVENT_CREATED"
    EVENT_UPDATED = "EVENT_UPDATED"
    EVENT_DELETED = "EVENT_DELETED"
    EVENT_START = "EVENT_START"
    EVENT_END = "EVENT_END"
    RESOURCE_CREATED = "RESOURCE_CREATED"
    RESOURCE_UPDATED = "RESOURCE_UPDATED"
    RESOURCE_STATUS_CHANGED = "RESOURCE_STATUS_CHANGED"
    RESOURCE_DELETED = "RESOURCE_DELETED"
    ALL = "ALL"


class ResourceStatus(str, Enum):
    ACTIVE = "ACTIVE"
    MAINTENANCE = "MAINTENANCE"
    UNAVAILABLE = "UNAVAILABLE"


class NotificationType(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
