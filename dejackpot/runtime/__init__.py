"""Per-session turn state machine and live session table."""

from dejackpot.runtime.session_runtime import SessionRuntime
from dejackpot.runtime.turns import LiveSession, TurnOutcome, TurnResult, apply_roll

__all__ = [
    "LiveSession",
    "SessionRuntime",
    "TurnOutcome",
    "TurnResult",
    "apply_roll",
]
