"""Service layer."""
from webhook_service.services.dispatcher import WebhookDispatcher
from webhook_service.services.inbound import InboundVerificationGateway
from webhook_service.services.matcher import SubscriptionMatcher
from webhook_service.services.retries import RetryScheduler
from webhook_service.services.webhooks import WebhookService

__all__ = [
    "InboundVerificationGateway",
    "RetryScheduler",
    "SubscriptionMatcher",
    "WebhookDispatcher",
    "WebhookService",
]
