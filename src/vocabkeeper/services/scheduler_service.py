"""Service for running automatic backups on a schedule."""
import asyncio
import logging
from typing import Dict, Optional

from vocabkeeper.services.storage_service import StorageService

logger = logging.getLogger(__name__)

RETRY_DELAY = 60  # seconds before retrying a failed task


class BackupScheduler:
    """Periodic tasks around a storage service."""

    def __init__(self, storage: StorageService, interval_hours: Optional[float] = None):
        """Initialize the scheduler with a storage service and a backup interval."""
        self.storage = storage
        if interval_hours is None:
            interval_hours = storage.settings.backup.auto_backup_interval_hours
        self.interval = interval_hours * 3600
        self.tasks: Dict[str, asyncio.Task] = {}
        self.running = False

    async def start(self) -> None:
        """Start the scheduler."""
        if self.running:
            return

        self.running = True
        logger.info("Starting backup scheduler (every %.1f hours)...", self.interval / 3600)

        self.tasks["automatic_backups"] = asyncio.create_task(
            self._run_automatic_backups()
        )

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping backup scheduler...")

        for task in self.tasks.values():
            task.cancel()

        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

    async def _run_automatic_backups(self) -> None:
        """Run the automatic backup task."""
        while self.running:
            try:
                await asyncio.sleep(self.interval)

                backup = await self.storage.run_automatic_backup()
                if backup is not None:
                    logger.info("Scheduled backup %d created", backup.id)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Error in automatic backup task: %s", str(e))
                await asyncio.sleep(RETRY_DELAY)
