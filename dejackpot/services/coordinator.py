"""ClaimCoordinator - periodic claim of pending jackpot sessions.

Responsibilities:
1. Every poll interval, compute free capacity (budget - live sessions)
2. Claim one session per store transaction, up to capacity
3. Hand each claimed session to the SessionRuntime
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from dejackpot.errors import StoreError

if TYPE_CHECKING:
    from dejackpot.config import WorkerConfig
    from dejackpot.runtime import SessionRuntime
    from dejackpot.store import SessionStore

logger = structlog.get_logger()


class ClaimCoordinator:
    """Claims pending sessions on a fixed timer.

    One session per transaction, so a conflict or error on one candidate
    never aborts a whole batch, and no transaction stays open while the
    opening prompt is sent.
    """

    def __init__(
        self,
        config: "WorkerConfig",
        store: "SessionStore",
        runtime: "SessionRuntime",
    ) -> None:
        self._config = config
        self._store = store
        self._runtime = runtime
        self._log = logger.bind(service="claim_coordinator")

        self._running = False
        self._shutting_down = False
        self._task: asyncio.Task | None = None
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start background claim loop."""
        if self._running:
            self._log.warning("coordinator.already_running")
            return

        self._running = True
        self._shutting_down = False
        self._task = asyncio.create_task(
            self._background_loop(),
            name="jackpot-claim-coordinator",
        )
        self._log.info(
            "coordinator.started",
            interval_seconds=self._config.poll_interval_seconds,
            max_concurrent_sessions=self._config.max_concurrent_sessions,
        )

    async def stop(self) -> None:
        """Stop claim loop; a tick in progress finishes its current claim."""
        self._shutting_down = True
        if not self._running:
            return

        self._log.info("coordinator.stopping")
        self._running = False

        # Only the idle loop is cancelled; a committed claim always reaches the runtime
        async with self._run_lock:
            if self._task is not None:
                self._task.cancel()

        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._log.info("coordinator.stopped")

    async def run_once(self) -> list[str]:
        """Execute one claim cycle.

        Returns:
            IDs of sessions claimed and handed to the runtime
        """
        async with self._run_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> list[str]:
        if self._shutting_down:
            return []

        capacity = self._config.max_concurrent_sessions - self._runtime.active_count
        if capacity <= 0:
            return []

        claimed_ids: list[str] = []
        for attempt in range(capacity):
            if self._shutting_down:
                self._log.info("coordinator.shutdown_during_cycle")
                break

            try:
                claimed = await self._store.claim_next(1)
            except StoreError as exc:
                self._log.error(
                    "coordinator.claim_failed",
                    attempt=attempt + 1,
                    capacity=capacity,
                    error=str(exc),
                )
                break

            if not claimed:
                break

            for session in claimed:
                self._runtime.start_session(session)
                claimed_ids.append(session.session_id)

            if attempt < capacity - 1:
                await asyncio.sleep(self._config.claim_spacing_seconds)

        if claimed_ids:
            self._log.info(
                "coordinator.cycle.complete",
                claimed=len(claimed_ids),
                active=self._runtime.active_count,
            )
        return claimed_ids

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._config.poll_interval_seconds)
            except asyncio.CancelledError:
                break

            try:
                await self.run_once()
            except Exception as exc:
                self._log.exception(
                    "coordinator.cycle_error",
                    error=str(exc),
                )
