"""Telegram Bot API messenger.

Pure HTTP client over the Bot API (sendMessage, deleteMessage, getMe,
getUpdates long polling).
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from dejackpot.clients.messenger.base import DeliveryResult, InboundMessage, Messenger
from dejackpot.errors import DeliveryError

logger = structlog.get_logger()

# Blocked by the user / chat gone (403) or request rejected as malformed (400)
UNREACHABLE_ERROR_CODES = frozenset({400, 403})

DEFAULT_USERNAME = "HelperDEJackpotBot"


def _parse_message(message: dict[str, Any] | None) -> InboundMessage | None:
    if not message:
        return None
    sender = message.get("from") or {}
    chat = message.get("chat") or {}
    if "id" not in sender or "id" not in chat:
        return None
    dice = message.get("dice") or {}
    dice_value = dice.get("value")
    return InboundMessage(
        player_id=str(sender["id"]),
        chat_id=str(chat["id"]),
        message_id=message.get("message_id"),
        dice_value=dice_value if isinstance(dice_value, int) else None,
        text=message.get("text"),
        from_bot=bool(sender.get("is_bot", False)),
    )


class TelegramMessenger(Messenger):
    """HTTP client for the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout: float = 15.0,
        poll_timeout: int = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"{api_base.rstrip('/')}/bot{bot_token}"
        self._timeout = timeout
        self._poll_timeout = poll_timeout
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._offset: int | None = None
        self._username: str | None = None
        self._closed = False
        # Never bind the base URL: it embeds the bot token
        self._log = logger.bind(client="telegram")

    async def _call(
        self,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Invoke a Bot API method and return its ``result``.

        Raises:
            DeliveryError: On network failure, timeout, or an API error
        """
        url = f"{self._base_url}/{method}"
        request_timeout = timeout or self._timeout

        try:
            response = await self._client.post(url, json=payload or {}, timeout=request_timeout)
        except httpx.TimeoutException as e:
            self._log.warning("telegram.timeout", method=method, timeout=request_timeout)
            raise DeliveryError(f"Telegram {method} timed out") from e
        except httpx.RequestError as e:
            self._log.warning("telegram.request_error", method=method, error=str(e))
            raise DeliveryError(f"Telegram {method} request error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get("ok", False):
            code = body.get("error_code") or response.status_code
            description = body.get("description") or response.text[:200]
            self._log.warning(
                "telegram.request_failed",
                method=method,
                status=code,
                description=description,
            )
            raise DeliveryError(
                f"Telegram {method} failed ({code}): {description}",
                unreachable=code in UNREACHABLE_ERROR_CODES,
                status_code=code,
            )

        return body.get("result")

    async def get_username(self) -> str:
        if self._username is None:
            try:
                me = await self._call("getMe")
                self._username = (me or {}).get("username") or DEFAULT_USERNAME
                self._log.info("telegram.online", username=self._username)
            except DeliveryError as exc:
                self._log.warning(
                    "telegram.get_me_failed",
                    error=str(exc),
                    fallback=DEFAULT_USERNAME,
                )
                return DEFAULT_USERNAME
        return self._username

    async def send_message(self, chat_id: str, text: str) -> DeliveryResult:
        try:
            result = await self._call(
                "sendMessage",
                {"chat_id": chat_id, "text": text, "parse_mode": "HTML"},
            )
        except DeliveryError as exc:
            return DeliveryResult.failed(str(exc), unreachable=exc.unreachable)
        return DeliveryResult.delivered((result or {}).get("message_id"))

    async def delete_message(self, chat_id: str, message_id: int) -> bool:
        try:
            await self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})
        except DeliveryError as exc:
            self._log.debug("telegram.delete_failed", chat_id=chat_id, error=str(exc))
            return False
        return True

    async def updates(self) -> AsyncIterator[InboundMessage]:
        """Long-poll getUpdates.

        The offset survives on the instance, so a caller can restart the
        stream after an error without replaying acknowledged updates.
        """
        while not self._closed:
            payload: dict[str, Any] = {
                "timeout": self._poll_timeout,
                "allowed_updates": ["message"],
            }
            if self._offset is not None:
                payload["offset"] = self._offset

            results = await self._call(
                "getUpdates",
                payload,
                timeout=self._poll_timeout + self._timeout,
            )
            for update in results or []:
                self._offset = int(update["update_id"]) + 1
                message = _parse_message(update.get("message"))
                if message is not None:
                    yield message

    async def close(self) -> None:
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
