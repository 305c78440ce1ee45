"""SQLModel data models."""

from dejackpot.models.session import JackpotSession, SessionStatus

__all__ = [
    "JackpotSession",
    "SessionStatus",
]
