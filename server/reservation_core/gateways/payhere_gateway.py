"""PayHere checkout gateway.

PayHere has no server-side payment lookup for ordinary merchants: the client
posts the checkout form to PayHere and PayHere posts a signed notification to
``notify_url``. The signed notification is therefore the authoritative
payment record.
"""

import hashlib
import hmac
import logging
from typing import Mapping, Optional
from urllib.parse import parse_qs

from ..services.pricing import major_to_minor, minor_to_major
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

SANDBOX_CHECKOUT_URL = "https://sandbox.payhere.lk/pay/checkout"
LIVE_CHECKOUT_URL = "https://www.payhere.lk/pay/checkout"

# PayHere status_code values
STATUS_SUCCESS = "2"
STATUS_PENDING = "0"


def _md5_upper(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest().upper()


def checkout_hash(merchant_id: str, order_id: str, amount: str, currency: str, merchant_secret: str) -> str:
    """Hash PayHere expects on the checkout form."""
    return _md5_upper(merchant_id + order_id + amount + currency + _md5_upper(merchant_secret))


def notify_signature(
    merchant_id: str, order_id: str, amount: str, currency: str, status_code: str, merchant_secret: str
) -> str:
    """``md5sig`` PayHere attaches to payment notifications."""
    return _md5_upper(merchant_id + order_id + amount + currency + status_code + _md5_upper(merchant_secret))


class PayHereGateway(PaymentGateway):
    """PayHere hosted checkout."""

    name = "payhere"

    def __init__(
        self,
        merchant_id: Optional[str],
        merchant_secret: Optional[str],
        sandbox: bool = True,
        notify_url: Optional[str] = None,
    ):
        self.merchant_id = merchant_id
        self.merchant_secret = merchant_secret
        self.checkout_url = SANDBOX_CHECKOUT_URL if sandbox else LIVE_CHECKOUT_URL
        self.notify_url = notify_url

    def _require_config(self) -> None:
        if not self.merchant_id or not self.merchant_secret:
            raise GatewayError(self.name, "PayHere is not configured", retryable=False)

    @property
    def verify_is_authoritative(self) -> bool:
        return False

    async def create_session(
        self,
        booking_id: str,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        idempotency_key: str,
    ) -> GatewaySession:
        self._require_config()

        # One order per payment attempt; reopening the same attempt reuses it
        attempt = hashlib.sha256(idempotency_key.encode("utf-8")).hexdigest()[:10].upper()
        order_id = f"ORD-{booking_id.replace('-', '')[:12].upper()}-{attempt}"
        formatted_amount = f"{minor_to_major(amount, currency):.2f}"

        checkout = {
            "action": self.checkout_url,
            "merchant_id": self.merchant_id,
            "order_id": order_id,
            "items": metadata.get("description", f"Booking {booking_id}"),
            "currency": currency,
            "amount": formatted_amount,
            "custom_1": booking_id,
            "hash": checkout_hash(self.merchant_id, order_id, formatted_amount, currency, self.merchant_secret),
        }
        if self.notify_url:
            checkout["notify_url"] = self.notify_url

        logger.info(
            "PayHere checkout prepared",
            extra={"booking_id": booking_id, "order_id": order_id, "amount": formatted_amount}
        )
        return GatewaySession(provider=self.name, reference=order_id, client_handle=self.checkout_url, checkout=checkout)

    async def verify(self, reference: str) -> GatewayPayment:
        # Status arrives through the notify callback only
        return GatewayPayment(reference=reference, status=PaymentOutcome.PENDING, amount=0, currency="")

    async def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> GatewayEvent:
        self._require_config()

        try:
            fields = parse_qs(payload.decode("utf-8"), keep_blank_values=True)
        except UnicodeDecodeError as e:
            raise WebhookVerificationError("Malformed PayHere notification") from e
        form = {k: v[0] for k, v in fields.items()}
        required = ("merchant_id", "order_id", "payhere_amount", "payhere_currency", "status_code", "md5sig")
        missing = [k for k in required if k not in form]
        if missing:
            raise WebhookVerificationError(f"PayHere notification missing fields: {', '.join(missing)}")

        expected = notify_signature(
            form["merchant_id"],
            form["order_id"],
            form["payhere_amount"],
            form["payhere_currency"],
            form["status_code"],
            self.merchant_secret,
        )
        if form["merchant_id"] != self.merchant_id or not hmac.compare_digest(expected, form["md5sig"].upper()):
            raise WebhookVerificationError("Invalid PayHere signature")

        status_code = form["status_code"]
        if status_code == STATUS_SUCCESS:
            outcome = PaymentOutcome.SUCCEEDED
        elif status_code == STATUS_PENDING:
            outcome = PaymentOutcome.PENDING
        else:
            outcome = PaymentOutcome.FAILED

        currency = form["payhere_currency"].upper()
        payment = GatewayPayment(
            reference=form["order_id"],
            status=outcome,
            amount=major_to_minor(form["payhere_amount"], currency),
            currency=currency,
            failure_reason=form.get("status_message") if outcome == PaymentOutcome.FAILED else None,
        )
        return GatewayEvent(
            event_id=form.get("payment_id") or f"{form['order_id']}:{status_code}",
            event_type=f"payhere.status.{status_code}",
            reference=form["order_id"],
            booking_id=form.get("custom_1") or None,
            payment=payment,
        )
