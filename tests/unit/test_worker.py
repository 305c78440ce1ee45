"""Unit tests for worker startup, shutdown ordering and the entry point."""

from __future__ import annotations

import asyncio

import pytest

from dejackpot import main as main_module
from dejackpot.clients.messenger import InboundMessage
from dejackpot.config import DatabaseConfig, Settings
from dejackpot.db import create_engine, make_session_factory
from dejackpot.errors import ConfigError, StartupError
from dejackpot.models import SessionStatus
from dejackpot.worker import Worker
from tests.fakes import FakeMessenger, StaticPriceFeed


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def price_feed():
    return StaticPriceFeed(150.0)


@pytest.fixture
def worker(test_settings, session_factory, messenger, price_feed) -> Worker:
    return Worker(
        test_settings,
        messenger=messenger,
        price_feed=price_feed,
        session_factory=session_factory,
    )


async def test_start_claims_and_shutdown_leaves_run_active(
    worker, messenger, price_feed, add_session, load_session
):
    await add_session("s1")

    await worker.start()
    try:
        assert worker.owner_id == "helper-a"
        assert worker.listener.is_running
        assert worker.coordinator.is_running
        assert worker.sweeper is None

        assert await worker.coordinator.run_once() == ["s1"]
        await worker.runtime.drain()
        assert "$225.00" in messenger.texts[0]
    finally:
        await worker.shutdown()

    assert not worker.coordinator.is_running
    assert not worker.listener.is_running
    assert messenger.closed
    assert price_feed.closed
    row = await load_session("s1")
    assert row.status == SessionStatus.ACTIVE_BY_HELPER.value
    assert row.owner_id == "helper-a"


async def test_rolls_flow_from_transport_to_store(worker, messenger, add_session, load_session):
    await add_session("s1", target_score=10)
    await worker.start()
    try:
        await worker.coordinator.run_once()
        await worker.runtime.drain()

        messenger.push(
            InboundMessage(player_id="1001", chat_id="2002", message_id=9, dice_value=5)
        )
        await asyncio.sleep(0.05)
        await worker.runtime.drain()
    finally:
        await worker.shutdown()

    row = await load_session("s1")
    assert row.status == SessionStatus.COMPLETED_TARGET_REACHED.value
    assert row.final_rolls == [3, 4, 5]
    assert messenger.deleted == [("2002", 9)]


async def test_unreachable_store_fails_startup(test_settings, messenger, price_feed, tmp_path):
    engine = create_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path}/no/such/dir.db"))
    worker = Worker(
        test_settings,
        messenger=messenger,
        price_feed=price_feed,
        session_factory=make_session_factory(engine),
    )
    try:
        with pytest.raises(StartupError):
            await worker.start()
        assert worker.coordinator is None
    finally:
        await worker.shutdown()
        await engine.dispose()


async def test_missing_bot_token_is_config_error(session_factory):
    worker = Worker(Settings(worker={"owner_id": "helper-a"}), session_factory=session_factory)

    with pytest.raises(ConfigError):
        await worker.start()
    await worker.shutdown()


async def test_run_stops_on_request(worker, messenger):
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, worker.request_stop, "test")

    await worker.run()

    assert messenger.closed
    assert worker.stopped_on_error is False


async def test_unhandled_loop_exception_stops_with_error(worker):
    loop = asyncio.get_running_loop()
    loop.call_later(
        0.05,
        lambda: loop.call_exception_handler(
            {"message": "Task exception was never retrieved", "exception": RuntimeError("boom")}
        ),
    )

    await worker.run()

    assert worker.stopped_on_error is True


async def test_entry_point_exits_nonzero_on_config_error(monkeypatch):
    monkeypatch.setattr(main_module, "get_settings", lambda: Settings())

    assert await main_module._run() == 1


def test_entry_point_reports_invalid_config(monkeypatch):
    def broken_settings():
        raise ConfigError("config.yaml: expected a mapping at the top level")

    monkeypatch.setattr(main_module, "get_settings", broken_settings)

    assert main_module.main() == 1
