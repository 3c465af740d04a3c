"""Periodic driver for full sync cycles."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sheetmirror.services.sync_service import CycleReport, SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncStatus:
    """Summary counters exposed by the admin API."""

    is_running: bool = False
    last_sync: datetime | None = None
    next_sync: datetime | None = None
    total_syncs: int = 0
    errors: int = 0


class SyncScheduler:
    """Owns a cancellable task that runs a full cycle every ``interval_seconds``.

    ``start``/``stop``/``set_interval`` are the only ways the ticking task is
    created or cancelled. ``run_once`` is shared by the ticker and the manual
    trigger endpoint, and is what updates ``status``.
    """

    def __init__(self, engine: SyncEngine, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            msg = f"interval_seconds must be > 0, got {interval_seconds}"
            raise ValueError(msg)
        self._engine = engine
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self.status = SyncStatus()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _schedule_next(self) -> None:
        self.status.next_sync = datetime.now(UTC) + timedelta(seconds=self._interval)

    async def run_once(self) -> CycleReport:
        """Run one full cycle and update the counters.

        Exceptions are counted and re-raised; partial failures inside a cycle
        are counted but the cycle still completes.
        """
        try:
            report = await self._engine.run_cycle()
        except Exception:
            self.status.errors += 1
            raise
        if not report.skipped:
            self.status.last_sync = datetime.now(UTC)
            self.status.total_syncs += 1
        if not report.ok:
            self.status.errors += 1
        return report

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception as exc:
                logger.error("Scheduled sync failed: %s", exc, exc_info=exc)
            if self.is_running:
                self._schedule_next()

    def _launch(self) -> None:
        self._task = asyncio.create_task(self._tick(), name="sheetmirror-sync-ticker")
        self.status.is_running = True
        self._schedule_next()

    async def _cancel(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def start(self, *, run_immediately: bool = True) -> CycleReport | None:
        """Start ticking. Raises ``RuntimeError`` if already running.

        With ``run_immediately`` one cycle runs before this returns; its
        failure is logged and counted but does not prevent the ticker from
        starting.
        """
        if self.is_running:
            msg = "Sync is already running"
            raise RuntimeError(msg)
        # A loaded store may hold push clears that are not on disk yet.
        if not self._engine.store.loaded:
            self._engine.store.load()
        self._launch()
        logger.info("Sync scheduler started (interval=%.0fs)", self._interval)
        if not run_immediately:
            return None
        try:
            return await self.run_once()
        except Exception as exc:
            logger.error("Initial sync failed: %s", exc, exc_info=exc)
            return None

    async def stop(self) -> None:
        """Cancel the ticker and checkpoint the checksum store. Raises if not running."""
        if not self.is_running:
            msg = "Sync is not running"
            raise RuntimeError(msg)
        await self.shutdown()
        logger.info("Sync scheduler stopped")

    async def shutdown(self) -> None:
        """Idempotent variant of ``stop`` used at process exit."""
        await self._cancel()
        self.status.is_running = False
        self.status.next_sync = None
        self._engine.store.persist()

    async def set_interval(self, interval_seconds: float) -> bool:
        """Change the period. Returns True when a running ticker was restarted."""
        if interval_seconds <= 0:
            msg = f"interval_seconds must be > 0, got {interval_seconds}"
            raise ValueError(msg)
        changed = interval_seconds != self._interval
        self._interval = interval_seconds
        if not (changed and self.is_running):
            return False
        await self._cancel()
        self._launch()
        logger.info("Sync interval changed to %.0fs, ticker restarted", interval_seconds)
        return True
