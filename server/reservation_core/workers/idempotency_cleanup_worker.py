"""Background worker for purging expired idempotency records."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import async_session_factory
from ..services.idempotency_service import IdempotencyService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class IdempotencyCleanupWorker(BaseWorker):
    def __init__(
        self,
        interval_seconds: int = 3600,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        super().__init__(name="IdempotencyCleanup", interval_seconds=interval_seconds)
        self.session_factory = session_factory

    async def process(self) -> int:
        async with self.session_factory() as db:
            return await IdempotencyService(db).cleanup_expired_records()
