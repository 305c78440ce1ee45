"""Messenger base class.

Messenger is the transport boundary between the helper and the player:
- outbound: prompts and outcome notifications
- inbound: an unbounded stream of player messages (dice rolls, commands)

Delivery failures are returned, not raised, so the caller decides whether a
failure ends the run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    """Outcome of a send.

    unreachable=True means the recipient can never be reached for this run
    (blocked bot, malformed request); anything else failing is transient.
    """

    ok: bool
    unreachable: bool = False
    error: str | None = None
    message_id: int | None = None

    @classmethod
    def delivered(cls, message_id: int | None = None) -> DeliveryResult:
        return cls(ok=True, message_id=message_id)

    @classmethod
    def failed(cls, error: str, *, unreachable: bool) -> DeliveryResult:
        return cls(ok=False, unreachable=unreachable, error=error)


@dataclass(frozen=True, slots=True)
class InboundMessage:
    """A player message received from the transport."""

    player_id: str
    chat_id: str
    message_id: int | None = None
    dice_value: int | None = None
    text: str | None = None
    from_bot: bool = False


class Messenger(ABC):
    """Abstract messaging transport."""

    @abstractmethod
    async def get_username(self) -> str:
        """Username this helper is reachable as."""
        ...

    @abstractmethod
    async def send_message(self, chat_id: str, text: str) -> DeliveryResult:
        """Send an HTML-formatted message."""
        ...

    @abstractmethod
    async def delete_message(self, chat_id: str, message_id: int) -> bool:
        """Best-effort delete; never raises for delivery failures."""
        ...

    @abstractmethod
    def updates(self) -> AsyncIterator[InboundMessage]:
        """Stream inbound messages until closed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release transport resources."""
        ...
