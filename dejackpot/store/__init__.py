"""Queue store adapter."""

from dejackpot.store.session_store import ClaimedSession, SessionStore

__all__ = ["ClaimedSession", "SessionStore"]
