"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update
from sqlmodel import SQLModel

from dejackpot.config import Settings
from dejackpot.db import create_engine, make_session_factory
from dejackpot.models import JackpotSession
from dejackpot.store import SessionStore
from dejackpot.utils.datetime import utcnow


@pytest.fixture
def test_settings() -> Settings:
    """Get test settings with in-memory SQLite."""
    return Settings(
        database={"url": "sqlite+aiosqlite:///:memory:"},
        worker={
            "owner_id": "helper-a",
            "poll_interval_seconds": 60.0,
            "claim_spacing_seconds": 0.0,
            "shutdown_grace_seconds": 1.0,
        },
        sweeper={"enabled": False},
        telegram={"bot_token": "123:test-token", "main_bot_username": "MainTestBot"},
    )


@pytest.fixture
async def session_factory(test_settings: Settings):
    """Session factory over a fresh in-memory database with the schema created."""
    engine = create_engine(test_settings.database)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield make_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SessionStore:
    return SessionStore(session_factory, owner_id="helper-a", query_timeout=5.0)


@pytest.fixture
def add_session(session_factory):
    """Insert a pending session the way the main bot would."""

    async def _add(
        session_id: str,
        *,
        created_at: datetime | None = None,
        **overrides,
    ) -> JackpotSession:
        values = {
            "player_id": "1001",
            "chat_id": "2002",
            "initial_score": 7,
            "initial_rolls_json": "[3, 4]",
            "target_score": 30,
            "bust_value": 1,
            "pool_value": 1_500_000_000,
        }
        values.update(overrides)
        row = JackpotSession(session_id=session_id, **values)
        if created_at is not None:
            row.created_at = created_at
        async with session_factory() as db:
            db.add(row)
            await db.commit()
        return row

    return _add


@pytest.fixture
def load_session(session_factory):
    async def _load(session_id: str) -> JackpotSession | None:
        async with session_factory() as db:
            return await db.get(JackpotSession, session_id)

    return _load


@pytest.fixture
def age_session(session_factory):
    """Push a session's updated_at into the past."""

    async def _age(session_id: str, seconds: float) -> None:
        async with session_factory() as db:
            await db.execute(
                update(JackpotSession)
                .where(JackpotSession.session_id == session_id)
                .values(updated_at=utcnow() - timedelta(seconds=seconds))
            )
            await db.commit()

    return _age
