"""Turn state machine for a single jackpot run.

Pure functions over LiveSession; no I/O, no timers. The runtime owns those.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from dejackpot.models.session import SessionStatus
from dejackpot.store.session_store import ClaimedSession


class TurnOutcome(str, Enum):
    """Result of applying one roll."""

    CONTINUE = "continue"
    BUST = "bust"
    TARGET_REACHED = "target_reached"

    @property
    def terminal_status(self) -> SessionStatus | None:
        return _OUTCOME_STATUS.get(self)


_OUTCOME_STATUS = {
    TurnOutcome.BUST: SessionStatus.COMPLETED_BUST,
    TurnOutcome.TARGET_REACHED: SessionStatus.COMPLETED_TARGET_REACHED,
}


@dataclass
class LiveSession:
    """In-memory authoritative view of a claimed session's run."""

    claimed: ClaimedSession
    run_rolls: list[int] = field(default_factory=list)
    timer: asyncio.TimerHandle | None = None

    @property
    def session_id(self) -> str:
        return self.claimed.session_id

    @property
    def route_key(self) -> tuple[str, str]:
        return (self.claimed.player_id, self.claimed.chat_id)

    @property
    def run_score(self) -> int:
        return sum(self.run_rolls)

    @property
    def current_total_score(self) -> int:
        return self.claimed.initial_score + self.run_score

    @property
    def combined_rolls(self) -> list[int]:
        """Persisted roll history: initial rolls followed by this run's rolls."""
        return [*self.claimed.initial_rolls, *self.run_rolls]


@dataclass(frozen=True, slots=True)
class TurnResult:
    outcome: TurnOutcome
    roll: int
    total_score: int
    notes: str | None = None


def apply_roll(live: LiveSession, value: int) -> TurnResult:
    """Append a roll and evaluate bust/target.

    Bust is checked before target, so a bust roll that would also reach the
    target still busts.
    """
    live.run_rolls.append(value)
    total = live.current_total_score
    claimed = live.claimed

    if value == claimed.bust_value:
        return TurnResult(
            outcome=TurnOutcome.BUST,
            roll=value,
            total_score=total,
            notes=f"Busted on a {value} during jackpot run!",
        )
    if total >= claimed.target_score:
        return TurnResult(
            outcome=TurnOutcome.TARGET_REACHED,
            roll=value,
            total_score=total,
            notes=f"Target {claimed.target_score}+ reached with score {total}!",
        )
    return TurnResult(outcome=TurnOutcome.CONTINUE, roll=value, total_score=total)
