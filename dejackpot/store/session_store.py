"""SessionStore - queue store adapter for jackpot sessions.

Every cross-instance guarantee lives here, expressed as short transactions:

- claim: skip-locked candidate read + conditional update (pending -> active)
- finalize: ownership-checked conditional update (active -> terminal)
- touch: ownership-checked heartbeat of updated_at
- sweep: force-finalize active rows whose heartbeat went stale

On SQLite the dialect omits FOR UPDATE SKIP LOCKED, so exclusivity rests on
the conditional update alone (same as the PostgreSQL fallback path).
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from dejackpot.errors import StoreError
from dejackpot.models.session import JackpotSession, SessionStatus, dump_rolls, parse_rolls
from dejackpot.utils.datetime import utcnow

logger = structlog.get_logger()

STALE_SWEEP_NOTES = "Helper instance stopped responding; run closed by stale sweep."


@dataclass(frozen=True, slots=True)
class ClaimedSession:
    """Immutable snapshot of a session row taken at claim time."""

    session_id: str
    owner_id: str
    player_id: str
    chat_id: str
    initial_score: int
    initial_rolls: tuple[int, ...]
    target_score: int
    bust_value: int
    pool_value: int

    @classmethod
    def from_row(cls, row: JackpotSession) -> ClaimedSession:
        return cls(
            session_id=row.session_id,
            owner_id=row.owner_id or "",
            player_id=str(row.player_id),
            chat_id=str(row.chat_id),
            initial_score=int(row.initial_score),
            initial_rolls=tuple(row.initial_rolls),
            target_score=int(row.target_score),
            bust_value=int(row.bust_value),
            pool_value=int(row.pool_value),
        )


class SessionStore:
    """Transactional access to the shared jackpot session queue."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        owner_id: str,
        query_timeout: float = 10.0,
    ) -> None:
        self._session_factory = session_factory
        self._owner_id = owner_id
        self._query_timeout = query_timeout
        self._log = logger.bind(service="session_store", owner_id=owner_id)

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Run one bounded transaction.

        Commits when the block exits normally, rolls back on any exception,
        and always closes the session so its connection returns to the pool.
        The timeout ends at commit, so a committed write is never reported
        as failed.
        """
        try:
            async with self._session_factory() as db:
                async with asyncio.timeout(self._query_timeout):
                    try:
                        yield db
                        await db.commit()
                    except BaseException:
                        await db.rollback()
                        raise
        except (SQLAlchemyError, TimeoutError) as exc:
            self._log.error(
                "store.transaction_failed",
                operation=operation,
                error=str(exc) or type(exc).__name__,
            )
            raise StoreError(f"Store {operation} failed: {exc or type(exc).__name__}") from exc

    async def health_check(self) -> None:
        """Round-trip a trivial query.

        Raises:
            StoreError: If the store cannot be reached
        """
        async with self._transaction("health_check") as db:
            await db.execute(text("SELECT 1"))

    async def _select_candidates(self, db: AsyncSession, limit: int) -> list[str]:
        result = await db.execute(
            select(JackpotSession.session_id)
            .where(JackpotSession.status == SessionStatus.PENDING_PICKUP.value)
            .order_by(JackpotSession.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def claim_next(self, limit: int = 1) -> list[ClaimedSession]:
        """Atomically claim up to ``limit`` pending sessions for this owner.

        Returns:
            Only sessions whose conditional update affected exactly one row.
            Empty when nothing is pending.

        Raises:
            StoreError: On connection/query failure or timeout
        """
        if limit <= 0:
            return []

        async with self._transaction("claim") as db:
            candidate_ids = await self._select_candidates(db, limit)
            if not candidate_ids:
                return []

            now = utcnow()
            claimed_ids: list[str] = []
            for session_id in candidate_ids:
                result = await db.execute(
                    update(JackpotSession)
                    .where(
                        JackpotSession.session_id == session_id,
                        JackpotSession.status == SessionStatus.PENDING_PICKUP.value,
                    )
                    .values(
                        status=SessionStatus.ACTIVE_BY_HELPER.value,
                        owner_id=self._owner_id,
                        updated_at=now,
                    )
                )
                if result.rowcount == 1:
                    claimed_ids.append(session_id)
                else:
                    # Lost the race to another instance
                    self._log.debug("store.claim.conflict", session_id=session_id)

            if not claimed_ids:
                return []

            rows = await db.execute(
                select(JackpotSession)
                .where(JackpotSession.session_id.in_(claimed_ids))
                .order_by(JackpotSession.created_at.asc())
                .execution_options(populate_existing=True)
            )
            claimed = [ClaimedSession.from_row(row) for row in rows.scalars().all()]

        for session in claimed:
            self._log.info(
                "store.claim.success",
                session_id=session.session_id,
                player_id=session.player_id,
            )
        return claimed

    async def finalize(
        self,
        session_id: str,
        terminal_status: SessionStatus,
        final_score: int,
        final_rolls: list[int],
        notes: str,
        owner_id: str | None = None,
    ) -> bool:
        """Write a terminal outcome if this worker still owns the session.

        The row must still be active_by_helper and owned by ``owner_id``
        (defaults to this store's owner). A terminal row is never rewritten.

        Returns:
            True if the write took effect, False if ownership was lost or the
            session was already finalized.

        Raises:
            ValueError: If ``terminal_status`` is not terminal
            StoreError: On connection/query failure or timeout
        """
        if not terminal_status.is_terminal:
            raise ValueError(f"Not a terminal status: {terminal_status.value}")

        owner = owner_id or self._owner_id
        async with self._transaction("finalize") as db:
            result = await db.execute(
                update(JackpotSession)
                .where(
                    JackpotSession.session_id == session_id,
                    JackpotSession.status == SessionStatus.ACTIVE_BY_HELPER.value,
                    JackpotSession.owner_id == owner,
                )
                .values(
                    status=terminal_status.value,
                    final_score=final_score,
                    final_rolls_json=dump_rolls(final_rolls),
                    outcome_notes=notes,
                    updated_at=utcnow(),
                )
            )
            committed = result.rowcount == 1

        return committed

    async def touch(self, session_id: str, owner_id: str | None = None) -> bool:
        """Advance updated_at for an owned active session.

        Returns:
            False if the session is no longer owned and active.
        """
        owner = owner_id or self._owner_id
        async with self._transaction("touch") as db:
            result = await db.execute(
                update(JackpotSession)
                .where(
                    JackpotSession.session_id == session_id,
                    JackpotSession.status == SessionStatus.ACTIVE_BY_HELPER.value,
                    JackpotSession.owner_id == owner,
                )
                .values(updated_at=utcnow())
            )
            return result.rowcount == 1

    async def sweep_stale(
        self,
        stale_before: datetime,
        exclude: Collection[str] = (),
    ) -> list[str]:
        """Force-finalize active sessions not touched since ``stale_before``.

        The run rolls of an orphaned session were never persisted, so the
        outcome records the initial score and rolls only.

        Returns:
            IDs of sessions this call finalized.
        """
        swept: list[str] = []
        async with self._transaction("sweep") as db:
            result = await db.execute(
                select(
                    JackpotSession.session_id,
                    JackpotSession.initial_score,
                    JackpotSession.initial_rolls_json,
                )
                .where(
                    JackpotSession.status == SessionStatus.ACTIVE_BY_HELPER.value,
                    JackpotSession.updated_at < stale_before,
                )
                .order_by(JackpotSession.updated_at.asc())
                .with_for_update(skip_locked=True)
            )
            now = utcnow()
            for session_id, initial_score, initial_rolls_json in result.all():
                if session_id in exclude:
                    continue
                update_result = await db.execute(
                    update(JackpotSession)
                    .where(
                        JackpotSession.session_id == session_id,
                        JackpotSession.status == SessionStatus.ACTIVE_BY_HELPER.value,
                        JackpotSession.updated_at < stale_before,
                    )
                    .values(
                        status=SessionStatus.ERROR_STALE_ORPHANED.value,
                        final_score=initial_score,
                        final_rolls_json=dump_rolls(
                            parse_rolls(initial_rolls_json, session_id=session_id)
                        ),
                        outcome_notes=STALE_SWEEP_NOTES,
                        updated_at=now,
                    )
                )
                if update_result.rowcount == 1:
                    swept.append(session_id)

        return swept
