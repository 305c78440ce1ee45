"""Jackpot session data model.

A JackpotSession row is the unit of work shared by every helper instance.
- Created by the main bot as pending_pickup
- Claimed by exactly one helper (active_by_helper)
- Finalized exactly once into a terminal status, then read back by the main bot
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import BigInteger, Column, DateTime
from sqlmodel import Field, SQLModel

from dejackpot.utils.datetime import utcnow

logger = structlog.get_logger()


class SessionStatus(str, Enum):
    """Jackpot session lifecycle status."""

    PENDING_PICKUP = "pending_pickup"  # Enqueued by the main bot
    ACTIVE_BY_HELPER = "active_by_helper"  # Claimed, run in progress
    COMPLETED_BUST = "completed_bust"
    COMPLETED_TARGET_REACHED = "completed_target_reached"
    COMPLETED_TIMEOUT_FORFEIT = "completed_timeout_forfeit"
    ERROR_SENDING_MESSAGE = "error_sending_message"
    ERROR_HELPER_INIT_PROMPT = "error_helper_init_prompt"
    ERROR_STALE_ORPHANED = "error_stale_orphaned"

    @property
    def is_terminal(self) -> bool:
        return self not in (SessionStatus.PENDING_PICKUP, SessionStatus.ACTIVE_BY_HELPER)

    @property
    def is_error(self) -> bool:
        return self.value.startswith("error_")


def parse_rolls(raw: str | None, *, session_id: str | None = None) -> list[int]:
    """Parse a serialized roll list; malformed input yields an empty list."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        value = None
    if not isinstance(value, list) or not all(
        isinstance(v, int) and not isinstance(v, bool) for v in value
    ):
        logger.warning("session.rolls.malformed", session_id=session_id, raw=raw[:100])
        return []
    return value


def dump_rolls(rolls: list[int]) -> str:
    return json.dumps(list(rolls))


class JackpotSession(SQLModel, table=True):
    """Jackpot run session row."""

    __tablename__ = "de_jackpot_sessions"

    session_id: str = Field(primary_key=True)
    status: str = Field(default=SessionStatus.PENDING_PICKUP.value, index=True)
    owner_id: str | None = Field(default=None)

    # Who to prompt and where
    player_id: str
    chat_id: str

    # Game parameters, immutable once claimed
    initial_score: int = Field(default=0)
    initial_rolls_json: str = Field(default="[]")
    target_score: int
    bust_value: int
    pool_value: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))

    # Outcome, written once at finalize
    final_score: int | None = Field(default=None)
    final_rolls_json: str | None = Field(default=None)
    outcome_notes: str | None = Field(default=None)

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    @property
    def initial_rolls(self) -> list[int]:
        return parse_rolls(self.initial_rolls_json, session_id=self.session_id)

    @property
    def final_rolls(self) -> list[int]:
        return parse_rolls(self.final_rolls_json, session_id=self.session_id)
