"""Periodic background refresh of the matrix from the spreadsheet."""

from __future__ import annotations

import asyncio
import logging

from matrix_sync.services.matrix_state import MatrixStateStore

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Calls store.sync_from_remote() every `interval_seconds` while connected.

    The loop awaits each tick before sleeping again, so ticks never overlap.
    A failed tick is logged and the loop keeps going.
    """

    def __init__(self, store: MatrixStateStore):
        self.store = store
        self.interval_seconds: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        """Run a single tick; returns whether local state was refreshed."""
        if not self.store.is_connected:
            return False
        try:
            return await self.store.sync_from_remote()
        except Exception as exc:
            logger.warning("Auto-sync failed: %s", exc, exc_info=exc)
            return False

    async def _loop(self, interval_seconds: float, previous: asyncio.Task[None] | None = None) -> None:
        if previous is not None:
            # A restarted loop waits out the cancelled one's last tick
            await asyncio.wait({previous})
        logger.info("Auto-sync starting (interval: %ss)", interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            if not self.store.is_connected:
                continue
            await self.run_once()

    def start(self, interval_seconds: float = 60.0) -> None:
        """Start the refresh loop on the running event loop (restarts if already running)."""
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        previous = self._task if self.is_running else None
        if previous is not None:
            previous.cancel()
        self.interval_seconds = interval_seconds
        self._task = asyncio.get_running_loop().create_task(self._loop(interval_seconds, previous))

    async def stop(self) -> None:
        """Cancel the refresh loop and wait for it to finish."""
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Auto-sync stopped")
