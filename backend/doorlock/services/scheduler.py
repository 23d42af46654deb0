"""Scheduler service - periodic maintenance of device presence.

A device record's ``online`` flag is cleared when its session closes. If the
process dies with sessions open, those flags are left set. The presence sweep
runs at startup and then periodically, clearing ``online`` on every record
that has no live session in this process.

Assumes a single server process owns all device connections.
"""
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from .device_store import device_store
from .session_registry import session_registry

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service for scheduling presence sweeps."""

    def __init__(self, store=device_store, registry=session_registry):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._store = store
        self._registry = registry

    def start(self, sweep_seconds: Optional[int] = None):
        """Start the scheduler."""
        if self._running:
            return

        sweep_seconds = settings.presence_sweep_seconds if sweep_seconds is None else sweep_seconds
        if sweep_seconds <= 0:
            logger.info("Presence sweep disabled")
            return

        self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self.sweep_presence,
            trigger=IntervalTrigger(seconds=sweep_seconds),
            id="sweep_presence",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=sweep_seconds,
        )

        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started (presence sweep every {sweep_seconds}s)")

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def sweep_presence(self) -> int:
        """Mark offline every record flagged online without a live session here.

        Returns:
            Number of records corrected
        """
        try:
            tokens = await self._store.list_online_tokens()
            stale = [t for t in tokens if not self._registry.is_online(t)]
            for token in stale:
                await self._store.update(token, online=False)
            if stale:
                logger.info(f"Presence sweep marked {len(stale)} device(s) offline")
            return len(stale)
        except Exception as e:
            logger.error(f"Error sweeping device presence: {e}")
            return 0


# Global instance
scheduler_service = SchedulerService()
