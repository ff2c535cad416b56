"""Repositories for data access."""
from webhook_service.repositories.notifications import NotificationRepository
from webhook_service.repositories.resources import ResourceRepository
from webhook_service.repositories.webhooks import (
    WebhookDeliveryLogRepository,
    WebhookSubscriptionRepository,
)

__all__ = [
    "NotificationRepository",
    "ResourceRepository",
    "WebhookDeliveryLogRepository",
    "WebhookSubscriptionRepository",
]
