"""Common exceptions for domain and repository layers."""
from __future__ import annotations


class WebhookServiceError(Exception):
    """Base error for service layer."""


class RepositoryError(WebhookServiceError):
    """Raised when repository operations fail."""


class NotFoundError(RepositoryError):
    """Raised when requested entity is missing."""


class SubscriptionConfigError(WebhookServiceError):
    """Raised when a subscription definition is invalid (never persisted)."""


class AccessDeniedError(WebhookServiceError):
    """Raised when the caller may not manage the subscription or its site."""


class InboundValidationError(WebhookServiceError):
    """Raised when an inbound callback body is malformed or incomplete."""


class SignatureVerificationError(WebhookServiceError):
    """Raised when an inbound callback fails signature authentication."""
