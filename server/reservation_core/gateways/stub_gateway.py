"""In-memory payment gateway for development and tests."""

import hashlib
import hmac
import json
import logging
from dataclasses import replace
from typing import Any, Mapping, Optional
from uuid import uuid4

from .base import (
    GatewayError,
    GatewayEvent,
    GatewayPayment,
    GatewaySession,
    PaymentGateway,
    PaymentOutcome,
    WebhookVerificationError,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-stub-signature"


class StubGateway(PaymentGateway):
    """
    Gateway that keeps payments in memory.

    Payments start pending; ``mark_succeeded`` and ``mark_failed`` play the
    part of the customer completing or abandoning checkout.
    """

    name = "stub"

    def __init__(self, webhook_secret: str = "stub-webhook-secret"):
        self.webhook_secret = webhook_secret
        self.payments: dict[str, GatewayPayment] = {}
        self.booking_refs: dict[str, str] = {}
        self._sessions_by_key: dict[str, GatewaySession] = {}
        self.create_calls = 0
        self.verify_calls = 0
        self.unavailable = False

    def _check_available(self) -> None:
        if self.unavailable:
            raise GatewayError(self.name, "gateway unavailable")

    async def create_session(
        self,
        booking_id: str,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> GatewaySession:
        self._check_available()
        self.create_calls += 1

        existing = self._sessions_by_key.get(idempotency_key)
        if existing is not None:
            return existing

        reference = f"stub_pi_{uuid4().hex[:16]}"
        self.payments[reference] = GatewayPayment(
            reference=reference, status=PaymentOutcome.PENDING, amount=amount, currency=currency.upper()
        )
        self.booking_refs[reference] = booking_id
        session = GatewaySession(
            provider=self.name,
            reference=reference,
            client_handle=f"{reference}_secret",
        )
        self._sessions_by_key[idempotency_key] = session
        return session

    async def verify(self, reference: str) -> GatewayPayment:
        self._check_available()
        self.verify_calls += 1
        payment = self.payments.get(reference)
        if payment is None:
            raise GatewayError(self.name, f"unknown payment {reference}", retryable=False)
        return payment

    def mark_succeeded(self, reference: str, amount: Optional[int] = None, currency: Optional[str] = None) -> None:
        """Settle a payment, optionally with an amount or currency that differs from the session."""
        payment = self.payments[reference]
        self.payments[reference] = replace(
            payment,
            status=PaymentOutcome.SUCCEEDED,
            amount=payment.amount if amount is None else amount,
            currency=payment.currency if currency is None else currency.upper(),
        )

    def mark_failed(self, reference: str, reason: str = "card_declined") -> None:
        payment = self.payments[reference]
        self.payments[reference] = replace(payment, status=PaymentOutcome.FAILED, failure_reason=reason)

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def build_webhook(self, reference: str) -> tuple[bytes, dict[str, str]]:
        """Signed webhook delivery describing the current state of a payment."""
        payment = self.payments[reference]
        body: dict[str, Any] = {
            "id": f"evt_{uuid4().hex[:16]}",
            "type": f"payment.{payment.status.value}",
            "data": {
                "reference": reference,
                "booking_id": self.booking_refs.get(reference),
                "status": payment.status.value,
                "amount": payment.amount,
                "currency": payment.currency,
            },
        }
        payload = json.dumps(body, separators=(",", ":")).encode("utf-8")
        return payload, {SIGNATURE_HEADER: self.sign(payload)}

    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        signature = headers.get(SIGNATURE_HEADER)
        if not signature or not hmac.compare_digest(signature, self.sign(payload)):
            raise WebhookVerificationError("Invalid stub webhook signature")

        try:
            body = json.loads(payload.decode("utf-8"))
            data = body["data"]
            payment = GatewayPayment(
                reference=data["reference"],
                status=PaymentOutcome(data["status"]),
                amount=int(data["amount"]),
                currency=str(data["currency"]).upper(),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise WebhookVerificationError("Malformed stub webhook payload") from e

        return GatewayEvent(
            event_id=body.get("id", ""),
            event_type=body.get("type", ""),
            reference=payment.reference,
            booking_id=data.get("booking_id"),
            payment=payment,
        )
