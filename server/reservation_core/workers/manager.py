"""Worker manager for coordinating background tasks."""

import asyncio
import logging

from ..core.config import settings
from .base import BaseWorker
from .hold_expiry_worker import HoldExpiryWorker
from .idempotency_cleanup_worker import IdempotencyCleanupWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """Starts, stops and reports on the application's background workers."""

    def __init__(self):
        self.workers: dict[str, BaseWorker] = {}
        self._setup_workers()

    def _setup_workers(self) -> None:
        self.workers["hold_expiry"] = HoldExpiryWorker(
            interval_seconds=settings.hold_sweep_interval_seconds
        )
        self.workers["idempotency_cleanup"] = IdempotencyCleanupWorker(
            interval_seconds=settings.idempotency_cleanup_interval_seconds
        )
        logger.info("Initialized workers", extra={"workers": sorted(self.workers)})

    async def start_all(self) -> None:
        for worker in self.workers.values():
            await worker.start()
        logger.info("Started all workers", extra={"count": len(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers; a worker that fails to stop does not block the others."""
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True,
        )
        for name, result in zip(self.workers, results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": str(result)})
        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        return self.workers[name]

    def get_worker_status(self) -> dict[str, bool]:
        return {name: worker.running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
