"""Messaging transport clients."""

from dejackpot.clients.messenger.base import DeliveryResult, InboundMessage, Messenger
from dejackpot.clients.messenger.telegram import TelegramMessenger

__all__ = ["DeliveryResult", "InboundMessage", "Messenger", "TelegramMessenger"]
