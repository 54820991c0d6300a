"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .base import BaseWorker
from .occupancy_audit_worker import OccupancyAuditWorker
from .offer_expiry_worker import OfferExpiryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """Starts, stops and reports on the application's background workers."""

    def __init__(self):
        self.workers: Dict[str, BaseWorker] = {}
        self._setup_workers()

    def _setup_workers(self) -> None:
        self.workers["offer_expiry"] = OfferExpiryWorker(
            interval_seconds=settings.offer_sweep_interval_seconds
        )
        self.workers["occupancy_audit"] = OccupancyAuditWorker(
            interval_seconds=settings.occupancy_audit_interval_seconds
        )

    async def start_all(self) -> None:
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error(
                    "Failed to start worker",
                    exc_info=True,
                    extra={"worker": name, "error": str(e)}
                )

        logger.info("Background workers started", extra={"workers": list(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True
        )

        for name, result in zip(self.workers.keys(), results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": str(result)})

        logger.info("Background workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map of worker name to whether it is running."""
        return {name: worker.is_running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
