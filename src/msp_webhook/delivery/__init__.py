"""Webhook delivery."""

from .result import DeliveryError, DeliveryResult
from .client import WebhookClient

__all__ = [
    "DeliveryError",
    "DeliveryResult",
    "WebhookClient",
]
