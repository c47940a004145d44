"""Payment-related Pydantic schemas."""

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import Money


class OpenPaymentSessionRequest(BaseModel):
    """Request schema for opening a checkout session."""

    booking_id: UUID = Field(..., description="Booking to pay for")
    provider: Optional[Literal["stub", "stripe", "payhere"]] = Field(
        None, description="Payment provider; the configured default when omitted"
    )


class PaymentSession(BaseModel):
    """Checkout session response schema."""

    booking_id: str
    provider: str
    reference: str = Field(..., description="Gateway reference to confirm against")
    client_handle: Optional[str] = Field(None, description="Client secret or checkout URL")
    checkout: dict = Field(default_factory=dict, description="Provider-specific checkout fields")
    price: Money


class ConfirmPaymentRequest(BaseModel):
    """Request schema for confirming a payment."""

    booking_id: UUID = Field(..., description="Booking the payment belongs to")
    reference: str = Field(..., min_length=1, max_length=255, description="Gateway payment reference")


class WebhookAck(BaseModel):
    """Webhook acknowledgement."""

    received: bool = True
    outcome: str
    booking_id: Optional[str] = None
