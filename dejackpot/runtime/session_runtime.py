"""SessionRuntime - live table of claimed runs, turn timers and event routing.

All mutation happens on the event loop thread. A session leaves the live
table synchronously (before any await) on every terminal transition, so a
late roll or a stale timer finds nothing to act on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any

import structlog

from dejackpot.clients.messenger.base import DeliveryResult
from dejackpot.errors import StoreError
from dejackpot.models.session import SessionStatus
from dejackpot.presentation import pool_display, render_prompt
from dejackpot.runtime.turns import LiveSession, apply_roll

if TYPE_CHECKING:
    from dejackpot.clients.messenger import Messenger
    from dejackpot.clients.price import PriceFeed
    from dejackpot.services.finalizer import SessionFinalizer
    from dejackpot.store import ClaimedSession, SessionStore

logger = structlog.get_logger()

TIMEOUT_NOTES = "Turn timed out during jackpot run."


class SessionRuntime:
    """Owns every run this worker is actively managing."""

    def __init__(
        self,
        store: "SessionStore",
        messenger: "Messenger",
        finalizer: "SessionFinalizer",
        *,
        turn_timeout: float = 45.0,
        helper_username: str = "HelperDEJackpotBot",
        price_feed: "PriceFeed | None" = None,
        price_display_timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._messenger = messenger
        self._finalizer = finalizer
        self._turn_timeout = turn_timeout
        self._price_feed = price_feed
        self._price_display_timeout = price_display_timeout
        self.helper_username = helper_username
        self._log = logger.bind(service="session_runtime")

        self._sessions: dict[str, LiveSession] = {}
        # (player_id, chat_id) -> session ids in claim order; first one receives rolls
        self._routes: dict[tuple[str, str], list[str]] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    @property
    def session_ids(self) -> frozenset[str]:
        return frozenset(self._sessions)

    @property
    def pending_timer_count(self) -> int:
        return sum(
            1
            for live in self._sessions.values()
            if live.timer is not None and not live.timer.cancelled()
        )

    def get(self, session_id: str) -> LiveSession | None:
        return self._sessions.get(session_id)

    # ==================== Registration ====================

    def start_session(self, claimed: "ClaimedSession") -> LiveSession:
        """Register a freshly claimed session and send its opening prompt."""
        existing = self._sessions.get(claimed.session_id)
        if existing is not None:
            self._log.warning("runtime.already_registered", session_id=claimed.session_id)
            return existing

        live = LiveSession(claimed=claimed)
        self._sessions[live.session_id] = live
        self._routes.setdefault(live.route_key, []).append(live.session_id)

        self._log.info(
            "runtime.session_started",
            session_id=live.session_id,
            player_id=claimed.player_id,
            initial_score=claimed.initial_score,
            target_score=claimed.target_score,
            bust_value=claimed.bust_value,
        )
        self._spawn(self._open(live), name=f"jackpot-open-{live.session_id}")
        return live

    def _detach(self, session_id: str) -> LiveSession | None:
        live = self._sessions.pop(session_id, None)
        if live is None:
            return None
        self._disarm_timer(live)
        queue = self._routes.get(live.route_key)
        if queue is not None:
            if session_id in queue:
                queue.remove(session_id)
            if not queue:
                del self._routes[live.route_key]
        return live

    def _is_live(self, live: LiveSession) -> bool:
        return self._sessions.get(live.session_id) is live

    # ==================== Timers ====================

    def _disarm_timer(self, live: LiveSession) -> None:
        if live.timer is not None:
            live.timer.cancel()
            live.timer = None

    def _arm_timer(self, live: LiveSession) -> None:
        self._disarm_timer(live)
        if self._closing or not self._is_live(live):
            return
        loop = asyncio.get_running_loop()
        live.timer = loop.call_later(self._turn_timeout, self._on_turn_timeout, live)

    def _on_turn_timeout(self, live: LiveSession) -> None:
        if not self._is_live(live):
            return
        live.timer = None
        self._log.info(
            "runtime.turn_timeout",
            session_id=live.session_id,
            player_id=live.claimed.player_id,
        )
        self.terminate(live.session_id, SessionStatus.COMPLETED_TIMEOUT_FORFEIT, TIMEOUT_NOTES)

    # ==================== Events ====================

    def handle_roll(self, player_id: str, chat_id: str, value: int) -> bool:
        """Apply a dice roll to the player's active run in this chat.

        Returns:
            False if no live session matches (the event is ignored).
        """
        if self._closing:
            return False
        queue = self._routes.get((str(player_id), str(chat_id)))
        if not queue:
            return False
        live = self._sessions[queue[0]]

        self._disarm_timer(live)
        result = apply_roll(live, value)
        self._log.info(
            "runtime.roll",
            session_id=live.session_id,
            roll=value,
            outcome=result.outcome.value,
            total_score=result.total_score,
        )

        status = result.outcome.terminal_status
        if status is not None:
            self.terminate(live.session_id, status, result.notes or "")
            return True

        # Stays armed while the heartbeat runs; the prompt re-arms it
        self._arm_timer(live)
        self._spawn(self._continue(live, value), name=f"jackpot-turn-{live.session_id}")
        return True

    def terminate(self, session_id: str, status: SessionStatus, notes: str) -> bool:
        """Detach a session now and finalize it in the background.

        Returns:
            False if the session was not live (already terminated).
        """
        live = self._detach(session_id)
        if live is None:
            return False
        self._spawn(
            self._finalizer.finalize(live, status, notes),
            name=f"jackpot-finalize-{session_id}",
        )
        return True

    # ==================== Prompts ====================

    async def _prompt(self, live: LiveSession, last_roll: int | None = None) -> DeliveryResult | None:
        """Render and send the turn prompt, arming a fresh turn timer.

        Returns:
            None if the session ended while the prompt was being prepared.
        """
        pool_text = await pool_display(
            live.claimed.pool_value,
            self._price_feed,
            timeout=self._price_display_timeout,
        )
        if not self._is_live(live):
            return None

        text = render_prompt(
            helper_username=self.helper_username,
            initial_score=live.claimed.initial_score,
            run_rolls=list(live.run_rolls),
            total_score=live.current_total_score,
            target_score=live.claimed.target_score,
            bust_value=live.claimed.bust_value,
            pool_text=pool_text,
            turn_timeout_seconds=self._turn_timeout,
            last_roll=last_roll,
        )
        self._arm_timer(live)
        return await self._messenger.send_message(live.claimed.chat_id, text)

    async def _open(self, live: LiveSession) -> None:
        try:
            delivery = await self._prompt(live)
        except Exception as exc:
            self._log.exception("runtime.open_prompt_error", session_id=live.session_id)
            delivery = DeliveryResult.failed(str(exc), unreachable=True)

        if delivery is None or delivery.ok:
            return
        self._log.warning(
            "runtime.open_prompt_failed",
            session_id=live.session_id,
            error=delivery.error,
        )
        self.terminate(
            live.session_id,
            SessionStatus.ERROR_HELPER_INIT_PROMPT,
            f"Failed initial prompt: {(delivery.error or 'unknown error')[:100]}",
        )

    async def _continue(self, live: LiveSession, last_roll: int) -> None:
        if not await self._heartbeat(live):
            return

        delivery = await self._prompt(live, last_roll=last_roll)
        if delivery is None or delivery.ok:
            return
        if delivery.unreachable:
            self._log.warning(
                "runtime.player_unreachable",
                session_id=live.session_id,
                error=delivery.error,
            )
            self.terminate(
                live.session_id,
                SessionStatus.ERROR_SENDING_MESSAGE,
                f"Helper failed to send update to chat: {(delivery.error or '')[:100]}",
            )
        else:
            self._log.warning(
                "runtime.prompt_delivery_failed",
                session_id=live.session_id,
                error=delivery.error,
            )

    async def _heartbeat(self, live: LiveSession) -> bool:
        """Refresh updated_at; stop managing the run if ownership is gone."""
        try:
            owned = await self._store.touch(live.session_id, owner_id=live.claimed.owner_id)
        except StoreError as exc:
            self._log.warning("runtime.heartbeat_failed", session_id=live.session_id, error=str(exc))
            return True
        except Exception as exc:
            self._log.exception(
                "runtime.heartbeat_error",
                session_id=live.session_id,
                error=str(exc) or type(exc).__name__,
            )
            return True

        if not owned and self._is_live(live):
            self._log.warning("runtime.ownership_lost", session_id=live.session_id)
            self._detach(live.session_id)
            return False
        return True

    # ==================== Tasks ====================

    def _spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._log.error(
                "runtime.task_failed",
                task=task.get_name(),
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait until no background work (prompts, finalizes) is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float = 10.0) -> None:
        """Stop managing runs without finalizing them.

        Timers are cancelled and the rows stay active_by_helper. In-flight
        finalize writes get ``grace_seconds`` to complete before being
        cancelled.
        """
        self._closing = True
        for live in self._sessions.values():
            self._disarm_timer(live)

        # Tasks may spawn more work (a failed prompt starts a finalize), so
        # keep waiting until the set is empty or the grace period runs out
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_seconds
        while self._tasks:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.wait(list(self._tasks), timeout=remaining)

        still_running = list(self._tasks)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
        abandoned_tasks = len(still_running)

        self._log.info(
            "runtime.shutdown",
            left_active=len(self._sessions),
            abandoned_tasks=abandoned_tasks,
        )
