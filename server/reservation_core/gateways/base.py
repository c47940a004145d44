"""Payment gateway interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class GatewayError(Exception):
    """The gateway could not be reached or refused the call."""

    def __init__(self, provider: str, message: str, retryable: bool = True):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.retryable = retryable


class WebhookVerificationError(Exception):
    """A webhook payload failed signature verification or could not be parsed."""


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


@dataclass(frozen=True)
class GatewaySession:
    """A checkout session the client completes with the provider."""
    provider: str
    reference: str
    client_handle: Optional[str] = None
    checkout: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayPayment:
    """The provider's authoritative view of a payment."""
    reference: str
    status: PaymentOutcome
    amount: int
    currency: str
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook event."""
    event_id: str
    event_type: str
    reference: Optional[str]
    booking_id: Optional[str] = None
    payment: Optional[GatewayPayment] = None


class PaymentGateway(ABC):
    """External payment provider."""

    name: str

    @abstractmethod
    async def create_session(
        self,
        booking_id: str,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> GatewaySession:
        """Open a checkout session for ``amount`` minor units."""

    @abstractmethod
    async def verify(self, reference: str) -> GatewayPayment:
        """Fetch the current state of a payment from the provider."""

    @abstractmethod
    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        """Verify and decode a webhook delivery.

        Raises:
            WebhookVerificationError: Signature missing or invalid
        """

    @property
    def verify_is_authoritative(self) -> bool:
        """Whether ``verify`` can be used to re-query payment state."""
        return True
