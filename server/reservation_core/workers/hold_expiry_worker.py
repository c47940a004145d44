"""Background worker for expiring lapsed reservation tokens."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import settings
from ..core.database import async_session_factory
from ..core.dependencies import get_gateway_registry
from ..gateways import GatewayRegistry
from ..services.reconciliation_service import ReconciliationService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class HoldExpiryWorker(BaseWorker):
    """
    Expire reservation tokens past their TTL.

    Capacity goes back to the ledger and the bookings they backed are marked
    as failed payments so the requester can retry.
    """

    def __init__(
        self,
        interval_seconds: int = 60,
        gateways: Optional[GatewayRegistry] = None,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
        batch_size: Optional[int] = None,
    ):
        super().__init__(name="HoldExpiry", interval_seconds=interval_seconds)
        self.gateways = gateways
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.hold_sweep_batch_size

    def _registry(self) -> GatewayRegistry:
        if self.gateways is None:
            self.gateways = get_gateway_registry()
        return self.gateways

    async def process(self) -> int:
        """Expire one batch of lapsed tokens and return how many were expired."""
        async with self.session_factory() as db:
            try:
                reconciliation = ReconciliationService(db, self._registry())
                expired_count = await reconciliation.expire_lapsed_holds(batch_size=self.batch_size)
            except Exception:
                await db.rollback()
                raise

        if expired_count > 0:
            logger.info(
                "Expired reservation tokens",
                extra={"expired_count": expired_count, "worker": self.name}
            )
        return expired_count
