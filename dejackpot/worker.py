"""Worker lifecycle.

Wires store, transport, runtime and background services together and owns
the startup / shutdown ordering of one helper process.
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dejackpot.clients.messenger import Messenger, TelegramMessenger
from dejackpot.clients.price import PriceFeed
from dejackpot.config import Settings
from dejackpot.db import close_db, get_session_factory, init_db
from dejackpot.errors import ConfigError, PriceUnavailableError, StartupError
from dejackpot.runtime import SessionRuntime
from dejackpot.services import ClaimCoordinator, RollListener, SessionFinalizer, StaleSessionSweeper
from dejackpot.store import SessionStore

logger = structlog.get_logger()


class Worker:
    """One helper instance draining the shared jackpot queue."""

    def __init__(
        self,
        settings: Settings,
        *,
        messenger: Messenger | None = None,
        price_feed: PriceFeed | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._messenger = messenger
        self._price_feed = price_feed
        self.owner_id = settings.worker.resolve_owner_id()
        self._log = logger.bind(service="worker", owner_id=self.owner_id)

        self._stop_event = asyncio.Event()
        self._stop_reason: str | None = None
        self._started = False
        self._shut_down = False

        self.store: SessionStore | None = None
        self.runtime: SessionRuntime | None = None
        self.coordinator: ClaimCoordinator | None = None
        self.sweeper: StaleSessionSweeper | None = None
        self.listener: RollListener | None = None

    def _build_messenger(self) -> Messenger:
        telegram = self._settings.telegram
        if not telegram.bot_token:
            raise ConfigError("DEJ_TELEGRAM__BOT_TOKEN is required")
        return TelegramMessenger(
            telegram.bot_token,
            api_base=telegram.api_base,
            timeout=telegram.request_timeout_seconds,
            poll_timeout=telegram.poll_timeout_seconds,
        )

    async def start(self) -> None:
        """Bring the worker up.

        Raises:
            ConfigError: If the transport is not configured
            StartupError: If the store is unreachable; nothing is started
        """
        settings = self._settings
        self._log.info(
            "worker.starting",
            poll_interval_seconds=settings.worker.poll_interval_seconds,
            max_concurrent_sessions=settings.worker.max_concurrent_sessions,
            turn_timeout_seconds=settings.worker.turn_timeout_seconds,
        )

        if self._messenger is None:
            self._messenger = self._build_messenger()
        if self._price_feed is None:
            self._price_feed = PriceFeed(settings.price)

        self.store = SessionStore(
            self._session_factory or get_session_factory(),
            owner_id=self.owner_id,
            query_timeout=settings.database.query_timeout_seconds,
        )
        try:
            if settings.database.create_tables:
                await init_db()
            await self.store.health_check()
        except Exception as exc:
            raise StartupError(f"Cannot reach the session store: {exc}") from exc
        self._log.info("worker.store_ready")

        try:
            price = await self._price_feed.get_sol_usd_price()
            self._log.info("worker.initial_price", sol_usd=price)
        except PriceUnavailableError as exc:
            self._log.warning("worker.initial_price_unavailable", error=str(exc))

        username = await self._messenger.get_username()
        finalizer = SessionFinalizer(
            self.store,
            self._messenger,
            main_bot_username=settings.telegram.main_bot_username,
        )
        self.runtime = SessionRuntime(
            self.store,
            self._messenger,
            finalizer,
            turn_timeout=settings.worker.turn_timeout_seconds,
            helper_username=username,
            price_feed=self._price_feed,
            price_display_timeout=settings.price.display_timeout_seconds,
        )
        self.listener = RollListener(
            self._messenger,
            self.runtime,
            main_bot_username=settings.telegram.main_bot_username,
        )
        self.coordinator = ClaimCoordinator(settings.worker, self.store, self.runtime)

        await self.listener.start()
        await self.coordinator.start()
        if settings.sweeper.enabled:
            self.sweeper = StaleSessionSweeper(settings.sweeper, self.store, self.runtime)
            await self.sweeper.start()

        self._started = True
        self._log.info("worker.operational", username=username)

    @property
    def stopped_on_error(self) -> bool:
        return self._stop_reason == "unhandled_exception"

    def request_stop(self, reason: str) -> None:
        if self._stop_event.is_set():
            self._log.info("worker.stop_already_requested", reason=reason)
            return
        self._stop_reason = reason
        self._log.info("worker.stop_requested", reason=reason)
        self._stop_event.set()

    def _install_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, sig.name)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform / not the main thread
                pass

        def _on_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
            exc = context.get("exception")
            self._log.error(
                "worker.unhandled_exception",
                message=context.get("message"),
                error=str(exc) if exc else None,
                exc_info=exc,
            )
            self.request_stop("unhandled_exception")

        loop.set_exception_handler(_on_loop_exception)

    async def run(self) -> None:
        """Start, serve until a stop is requested, then shut down."""
        self._install_handlers()
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop claiming, abandon live runs without finalizing, release resources."""
        if self._shut_down:
            return
        self._shut_down = True
        self._log.info("worker.shutting_down", reason=self._stop_reason)

        if self.coordinator is not None:
            await self.coordinator.stop()
        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.listener is not None:
            await self.listener.stop()
        if self.runtime is not None:
            await self.runtime.shutdown(self._settings.worker.shutdown_grace_seconds)

        for name, resource in (("messenger", self._messenger), ("price_feed", self._price_feed)):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as exc:
                self._log.warning("worker.close_failed", resource=name, error=str(exc))

        try:
            await close_db()
        except Exception as exc:
            self._log.warning("worker.close_failed", resource="db", error=str(exc))

        self._log.info("worker.shutdown_complete", was_started=self._started)
