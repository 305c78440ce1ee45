"""Unit tests for TelegramMessenger.

Uses httpx MockTransport to verify Bot API paths, payloads and the
unreachable / transient classification of failures.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from dejackpot.clients.messenger import TelegramMessenger
from dejackpot.clients.messenger.telegram import DEFAULT_USERNAME
from dejackpot.errors import DeliveryError

TOKEN = "123:secret"


def mock_response(data: dict[str, Any], status_code: int = 200) -> httpx.Response:
    """Create a mock httpx Response."""
    return httpx.Response(
        status_code=status_code,
        content=json.dumps(data).encode(),
        headers={"content-type": "application/json"},
    )


def api_error(code: int, description: str) -> httpx.Response:
    return mock_response({"ok": False, "error_code": code, "description": description}, code)


def make_messenger(handler) -> TelegramMessenger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramMessenger(TOKEN, api_base="https://tg.test", client=client, poll_timeout=1)


class TestSendMessage:
    async def test_request_path_and_payload(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return mock_response({"ok": True, "result": {"message_id": 42}})

        messenger = make_messenger(handler)
        result = await messenger.send_message("2002", "<b>hi</b>")

        assert result.ok is True
        assert result.message_id == 42
        assert captured[0].url.path == f"/bot{TOKEN}/sendMessage"
        assert json.loads(captured[0].content) == {
            "chat_id": "2002",
            "text": "<b>hi</b>",
            "parse_mode": "HTML",
        }

    @pytest.mark.parametrize(
        "code, description",
        [
            (403, "Forbidden: bot was blocked by the user"),
            (400, "Bad Request: chat not found"),
        ],
    )
    async def test_client_errors_are_unreachable(self, code, description):
        messenger = make_messenger(lambda request: api_error(code, description))

        result = await messenger.send_message("2002", "hi")

        assert result.ok is False
        assert result.unreachable is True
        assert description in result.error

    @pytest.mark.parametrize("code", [429, 500, 502])
    async def test_server_errors_are_transient(self, code):
        messenger = make_messenger(lambda request: api_error(code, "try later"))

        result = await messenger.send_message("2002", "hi")

        assert result.ok is False
        assert result.unreachable is False

    async def test_network_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        messenger = make_messenger(handler)
        result = await messenger.send_message("2002", "hi")

        assert result.ok is False
        assert result.unreachable is False
        assert TOKEN not in result.error


class TestOtherMethods:
    async def test_get_username(self):
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            assert request.url.path.endswith("/getMe")
            return mock_response({"ok": True, "result": {"username": "HelperProdBot"}})

        messenger = make_messenger(handler)

        assert await messenger.get_username() == "HelperProdBot"
        assert await messenger.get_username() == "HelperProdBot"
        assert calls == 1

    async def test_get_username_falls_back_on_failure(self):
        messenger = make_messenger(lambda request: api_error(401, "Unauthorized"))

        assert await messenger.get_username() == DEFAULT_USERNAME

    async def test_delete_message(self):
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return mock_response({"ok": True, "result": True})

        messenger = make_messenger(handler)

        assert await messenger.delete_message("2002", 55) is True
        assert captured[0].url.path.endswith("/deleteMessage")
        assert json.loads(captured[0].content) == {"chat_id": "2002", "message_id": 55}

    async def test_delete_failure_returns_false(self):
        messenger = make_messenger(lambda request: api_error(400, "message can't be deleted"))

        assert await messenger.delete_message("2002", 55) is False


class TestUpdates:
    async def test_long_poll_parses_and_advances_offset(self):
        payloads: list[dict] = []
        batches = [
            [
                {
                    "update_id": 10,
                    "message": {
                        "message_id": 1,
                        "from": {"id": 1001, "is_bot": False},
                        "chat": {"id": 2002},
                        "dice": {"emoji": "🎲", "value": 4},
                    },
                },
                {"update_id": 11, "edited_message": {"message_id": 2}},
            ],
            [
                {
                    "update_id": 12,
                    "message": {
                        "message_id": 3,
                        "from": {"id": 1001, "is_bot": False},
                        "chat": {"id": 2002},
                        "text": "/help",
                    },
                },
            ],
        ]

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return mock_response({"ok": True, "result": batches.pop(0) if batches else []})

        messenger = make_messenger(handler)
        stream = messenger.updates()
        try:
            first = await stream.__anext__()
            second = await stream.__anext__()
        finally:
            await stream.aclose()

        assert first.player_id == "1001"
        assert first.chat_id == "2002"
        assert first.dice_value == 4
        assert first.message_id == 1
        assert first.from_bot is False
        assert second.text == "/help"
        assert second.dice_value is None

        assert "offset" not in payloads[0]
        assert payloads[0]["allowed_updates"] == ["message"]
        assert payloads[1]["offset"] == 12

    async def test_transport_error_surfaces_from_stream(self):
        messenger = make_messenger(lambda request: api_error(502, "Bad Gateway"))

        with pytest.raises(DeliveryError):
            await messenger.updates().__anext__()
