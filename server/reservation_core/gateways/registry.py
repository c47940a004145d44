"""Gateway lookup by provider name."""

import logging
from typing import Optional

from ..core.config import Settings
from .base import PaymentGateway
from .payhere_gateway import PayHereGateway
from .stripe_gateway import StripeGateway
from .stub_gateway import StubGateway

logger = logging.getLogger(__name__)


class GatewayRegistry:
    """Configured payment gateways keyed by provider name."""

    def __init__(self, gateways: dict[str, PaymentGateway], default: str):
        if default not in gateways:
            raise ValueError(f"Default payment provider '{default}' is not configured")
        self.gateways = gateways
        self.default = default

    def get(self, provider: Optional[str] = None) -> Optional[PaymentGateway]:
        return self.gateways.get(provider or self.default)

    @property
    def providers(self) -> list[str]:
        return sorted(self.gateways)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayRegistry":
        gateways: dict[str, PaymentGateway] = {}

        if not settings.is_production:
            gateways["stub"] = StubGateway(webhook_secret=settings.stub_webhook_secret)

        if settings.stripe_secret_key:
            gateways["stripe"] = StripeGateway(
                api_key=settings.stripe_secret_key,
                webhook_secret=settings.stripe_webhook_secret,
                publishable_key=settings.stripe_publishable_key,
            )

        if settings.payhere_merchant_id and settings.payhere_merchant_secret:
            gateways["payhere"] = PayHereGateway(
                merchant_id=settings.payhere_merchant_id,
                merchant_secret=settings.payhere_merchant_secret,
                sandbox=settings.payhere_sandbox,
                notify_url=settings.payhere_notify_url,
            )

        logger.info(
            "Payment gateways configured",
            extra={"providers": sorted(gateways), "default": settings.payment_provider}
        )
        return cls(gateways, default=settings.payment_provider)
