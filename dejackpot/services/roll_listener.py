"""RollListener - pumps inbound transport messages into the runtime.

The transport stream is externally driven and restartable: on a transport
error the listener waits and resubscribes; it never polls the store.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING

import structlog

from dejackpot.errors import DeliveryError
from dejackpot.presentation import render_help

if TYPE_CHECKING:
    from dejackpot.clients.messenger import InboundMessage, Messenger
    from dejackpot.runtime import SessionRuntime

logger = structlog.get_logger()

HELP_COMMAND = re.compile(r"^/(start|help)(@\w+)?(\s|$)", re.IGNORECASE)


class RollListener:
    """Routes dice messages to live runs and answers /start and /help."""

    def __init__(
        self,
        messenger: "Messenger",
        runtime: "SessionRuntime",
        *,
        main_bot_username: str = "MainCasinoBot",
        retry_delay: float = 5.0,
    ) -> None:
        self._messenger = messenger
        self._runtime = runtime
        self._main_bot_username = main_bot_username
        self._retry_delay = retry_delay
        self._log = logger.bind(service="roll_listener")

        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._background_loop(), name="jackpot-roll-listener")
        self._log.info("listener.started")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._log.info("listener.stopped")

    async def dispatch(self, message: "InboundMessage") -> None:
        if message.from_bot:
            return

        if message.dice_value is not None:
            handled = self._runtime.handle_roll(
                message.player_id,
                message.chat_id,
                message.dice_value,
            )
            # Keep the chat readable: the prompt already echoes the roll
            if handled and message.message_id is not None:
                await self._messenger.delete_message(message.chat_id, message.message_id)
            return

        if message.text and HELP_COMMAND.match(message.text):
            await self._messenger.send_message(
                message.chat_id,
                render_help(
                    helper_username=self._runtime.helper_username,
                    main_bot_username=self._main_bot_username,
                ),
            )

    async def _background_loop(self) -> None:
        while self._running:
            try:
                async for message in self._messenger.updates():
                    try:
                        await self.dispatch(message)
                    except Exception as exc:
                        self._log.exception(
                            "listener.dispatch_error",
                            chat_id=message.chat_id,
                            error=str(exc),
                        )
            except DeliveryError as exc:
                self._log.warning("listener.stream_error", error=str(exc))
            except Exception as exc:
                self._log.exception(
                    "listener.stream_crashed",
                    error=str(exc) or type(exc).__name__,
                )
            else:
                if not self._running:
                    break
                self._log.info("listener.stream_ended")

            try:
                await asyncio.sleep(self._retry_delay)
            except asyncio.CancelledError:
                break
