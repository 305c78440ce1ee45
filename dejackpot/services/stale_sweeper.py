"""StaleSessionSweeper - closes runs orphaned by a crashed helper.

Turn timers live only in the memory of the owning process. If that process
dies, its active_by_helper rows would never finish. Live runs refresh
updated_at on every roll, so a row untouched for much longer than a turn
timeout has no owner left and is force-finalized here.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from dejackpot.errors import StoreError
from dejackpot.utils.datetime import utcnow

if TYPE_CHECKING:
    from dejackpot.config import SweeperConfig
    from dejackpot.runtime import SessionRuntime
    from dejackpot.store import SessionStore

logger = structlog.get_logger()


class StaleSessionSweeper:
    """Periodic server-side sweep of orphaned active sessions."""

    def __init__(
        self,
        config: "SweeperConfig",
        store: "SessionStore",
        runtime: "SessionRuntime",
    ) -> None:
        self._config = config
        self._store = store
        self._runtime = runtime
        self._log = logger.bind(service="stale_sweeper")

        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._background_loop(), name="jackpot-stale-sweeper")
        self._log.info(
            "sweeper.started",
            interval_seconds=self._config.interval_seconds,
            stale_after_seconds=self._config.stale_after_seconds,
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._log.info("sweeper.stopped")

    async def run_once(self) -> list[str]:
        """Sweep once; sessions this worker is managing are never swept."""
        stale_before = utcnow() - timedelta(seconds=self._config.stale_after_seconds)
        swept = await self._store.sweep_stale(stale_before, exclude=self._runtime.session_ids)
        if swept:
            self._log.warning("sweeper.swept", count=len(swept), session_ids=swept)
        return swept

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._config.interval_seconds)
            except asyncio.CancelledError:
                break

            try:
                await self.run_once()
            except StoreError as exc:
                self._log.warning("sweeper.cycle_failed", error=str(exc))
            except Exception as exc:
                self._log.exception("sweeper.cycle_error", error=str(exc))
