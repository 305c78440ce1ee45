"""SessionFinalizer - writes a run's terminal outcome exactly once.

The caller detaches the session from the live table before calling
finalize(), so a duplicate event can never reach a second finalize.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from dejackpot.errors import StoreError
from dejackpot.models.session import SessionStatus
from dejackpot.presentation import render_outcome

if TYPE_CHECKING:
    from dejackpot.clients.messenger import Messenger
    from dejackpot.runtime.turns import LiveSession
    from dejackpot.store import SessionStore

logger = structlog.get_logger()


class SessionFinalizer:
    """Ownership-checked terminal write plus a single outcome notification."""

    def __init__(
        self,
        store: "SessionStore",
        messenger: "Messenger",
        *,
        main_bot_username: str = "MainCasinoBot",
    ) -> None:
        self._store = store
        self._messenger = messenger
        self._main_bot_username = main_bot_username
        self._log = logger.bind(service="finalizer")

    async def finalize(self, live: "LiveSession", status: SessionStatus, notes: str) -> bool:
        """Persist the outcome and notify the player.

        Returns:
            True if the durable write took effect. False when this worker is
            no longer the owner, or the store failed; nothing further is done
            in either case.
        """
        session_id = live.session_id
        final_score = live.current_total_score
        final_rolls = live.combined_rolls

        self._log.info(
            "finalize.start",
            session_id=session_id,
            status=status.value,
            final_score=final_score,
            notes=notes,
        )

        try:
            committed = await self._store.finalize(
                session_id,
                status,
                final_score,
                final_rolls,
                notes,
                owner_id=live.claimed.owner_id,
            )
        except StoreError as exc:
            self._log.error(
                "finalize.store_error",
                session_id=session_id,
                status=status.value,
                error=str(exc),
            )
            return False

        if not committed:
            self._log.warning(
                "finalize.ownership_lost",
                session_id=session_id,
                status=status.value,
            )
            return False

        self._log.info("finalize.committed", session_id=session_id, status=status.value)

        text = render_outcome(
            session_id=session_id,
            status=status,
            final_score=final_score,
            notes=notes,
            main_bot_username=self._main_bot_username,
        )
        result = await self._messenger.send_message(live.claimed.chat_id, text)
        if not result.ok:
            self._log.warning(
                "finalize.notify_failed",
                session_id=session_id,
                error=result.error,
            )
        return True
