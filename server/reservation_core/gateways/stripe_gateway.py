"""Stripe PaymentIntent gateway."""

import asyncio
import logging
from typing import Any, Mapping, Optional

import stripe

from .base import (
    GatewayError,
    GatewayEvent,
    GatewayPayment,
    GatewaySession,
    PaymentGateway,
    PaymentOutcome,
    WebhookVerificationError,
)
from .circuit_breaker import CircuitBreakerError, build_breaker

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = frozenset({
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "payment_intent.canceled",
})


def intent_to_payment(intent: Any) -> GatewayPayment:
    """Normalise a PaymentIntent into the gateway-neutral payment view."""
    status = intent.status
    last_error = getattr(intent, "last_payment_error", None)

    if status == "succeeded":
        outcome = PaymentOutcome.SUCCEEDED
    elif status == "canceled" or (status == "requires_payment_method" and last_error):
        outcome = PaymentOutcome.FAILED
    else:
        outcome = PaymentOutcome.PENDING

    failure_reason = None
    if outcome == PaymentOutcome.FAILED:
        failure_reason = getattr(last_error, "message", None) or status

    return GatewayPayment(
        reference=intent.id,
        status=outcome,
        amount=int(intent.amount),
        currency=str(intent.currency).upper(),
        failure_reason=failure_reason,
    )


class StripeGateway(PaymentGateway):
    """
    Stripe card payments through PaymentIntents.

    The Stripe SDK is synchronous, so calls run in a worker thread behind a
    circuit breaker.
    """

    name = "stripe"

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str] = None,
        publishable_key: Optional[str] = None,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key
        self.breaker = build_breaker(
            self.name, exclude=(stripe.CardError, stripe.InvalidRequestError)
        )

    async def _call(self, func, **kwargs):
        if not self.api_key:
            raise GatewayError(self.name, "Stripe is not configured", retryable=False)
        try:
            return await asyncio.to_thread(self.breaker.call, func, api_key=self.api_key, **kwargs)
        except CircuitBreakerError as e:
            logger.error("Stripe circuit breaker is open", extra={"circuit_state": str(e)})
            raise GatewayError(self.name, "circuit open") from e
        except stripe.StripeError as e:
            logger.error(
                "Stripe API error",
                extra={"error": str(e), "http_status": getattr(e, "http_status", None)}
            )
            raise GatewayError(self.name, str(e)) from e

    async def create_session(
        self,
        booking_id: str,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> GatewaySession:
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            metadata={"booking_id": booking_id, **metadata},
            automatic_payment_methods={"enabled": True},
            idempotency_key=idempotency_key,
        )
        logger.info(
            "Stripe payment intent created",
            extra={"booking_id": booking_id, "payment_intent_id": intent.id, "amount": amount}
        )
        checkout = {"publishable_key": self.publishable_key} if self.publishable_key else {}
        return GatewaySession(
            provider=self.name,
            reference=intent.id,
            client_handle=intent.client_secret,
            checkout=checkout,
        )

    async def verify(self, reference: str) -> GatewayPayment:
        intent = await self._call(stripe.PaymentIntent.retrieve, id=reference)
        return intent_to_payment(intent)

    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        if not self.webhook_secret:
            raise WebhookVerificationError("Stripe webhook secret is not configured")

        signature = headers.get("stripe-signature")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                payload=payload.decode("utf-8"),
                sig_header=signature,
                secret=self.webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError("Invalid Stripe signature") from e
        except ValueError as e:
            raise WebhookVerificationError("Invalid Stripe webhook payload") from e

        if event.type not in PAYMENT_EVENTS:
            return GatewayEvent(event_id=event.id, event_type=event.type, reference=None)

        intent = event.data.object
        metadata = getattr(intent, "metadata", None)
        return GatewayEvent(
            event_id=event.id,
            event_type=event.type,
            reference=intent.id,
            booking_id=getattr(metadata, "booking_id", None) if metadata is not None else None,
            payment=intent_to_payment(intent),
        )
