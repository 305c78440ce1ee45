"""Helper error hierarchy.

All errors carry a stable ``code`` so log events can be filtered without
parsing messages.
"""

from __future__ import annotations


class HelperError(Exception):
    """Base error for the jackpot helper."""

    code: str = "helper_error"

    def __init__(self, message: str = "", **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message or self.code


class ConfigError(HelperError):
    """Required configuration is missing or invalid."""

    code = "config_error"


class StoreError(HelperError):
    """Queue store operation failed (connection, query, or timeout)."""

    code = "store_error"


class StartupError(HelperError):
    """Worker cannot start (store unreachable at boot)."""

    code = "startup_error"


class DeliveryError(HelperError):
    """Messaging transport rejected or failed a request."""

    code = "delivery_error"

    def __init__(
        self,
        message: str = "",
        *,
        unreachable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, unreachable=unreachable, status_code=status_code)
        self.unreachable = unreachable
        self.status_code = status_code


class PriceUnavailableError(HelperError):
    """SOL/USD price could not be fetched and no cached value exists."""

    code = "price_unavailable"
