"""Datetime helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC now; stored datetime columns reject naive values."""
    return datetime.now(timezone.utc)
