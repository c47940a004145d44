"""Payment gateway adapters."""

from .base import (
    GatewayError,
    GatewayEvent,
    GatewayPayment,
    GatewaySession,
    PaymentGateway,
    PaymentOutcome,
    WebhookVerificationError,
)
from .registry import GatewayRegistry

__all__ = [
    "GatewayError",
    "GatewayEvent",
    "GatewayPayment",
    "GatewayRegistry",
    "GatewaySession",
    "PaymentGateway",
    "PaymentOutcome",
    "WebhookVerificationError",
]
