"""SOL/USD price feed.

TTL-cached price lookup with exponential backoff, Retry-After support and a
stale-price fallback. Only used to display the jackpot pool.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from dejackpot.config import PriceConfig
from dejackpot.errors import PriceUnavailableError

logger = structlog.get_logger()


class InvalidPriceResponse(ValueError):
    """Price API answered with an unexpected payload."""


def _status_code(exc: BaseException | None) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def _is_retryable(exc: BaseException) -> bool:
    status = _status_code(exc)
    if status is None:
        # Network errors and malformed payloads
        return isinstance(exc, (httpx.RequestError, InvalidPriceResponse))
    return status == 429 or 500 <= status <= 599


def _retry_after_seconds(exc: BaseException | None) -> float | None:
    if not isinstance(exc, httpx.HTTPStatusError) or exc.response.status_code != 429:
        return None
    raw = exc.response.headers.get("retry-after")
    try:
        return float(int(raw))
    except (TypeError, ValueError):
        return None


class PriceFeed:
    """Cached SOL/USD price lookup."""

    def __init__(
        self,
        config: PriceConfig,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._clock = clock
        self._sleep = sleep
        self._log = logger.bind(service="price_feed")

        self._price: float | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._price is not None
            and self._clock() - self._fetched_at < self._config.cache_ttl_seconds
        )

    async def get_sol_usd_price(self) -> float:
        """Get SOL/USD, served from cache while fresh.

        Raises:
            PriceUnavailableError: If fetching failed and nothing is cached
        """
        if self._is_fresh():
            return self._price  # type: ignore[return-value]

        # Another caller is already fetching: serve stale rather than queue up
        if self._lock.locked() and self._price is not None:
            return self._price

        async with self._lock:
            if self._is_fresh():
                return self._price  # type: ignore[return-value]

            started = self._clock()
            try:
                price = await self._fetch_with_retries()
            except PriceUnavailableError:
                if self._price is not None:
                    self._log.warning("price.using_stale", price=self._price)
                    return self._price
                raise

            self._price = price
            self._fetched_at = started
            return price

    def _backoff(self, retry_state: RetryCallState) -> float:
        delay = self._config.initial_delay_seconds * 2 ** (retry_state.attempt_number - 1)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = _retry_after_seconds(exc)
        if retry_after is not None:
            delay = retry_after + 1
        return min(delay, self._config.max_delay_seconds)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self._log.warning(
            "price.fetch_retry",
            attempt=retry_state.attempt_number,
            max_attempts=self._config.retries + 1,
            status=_status_code(exc),
            error=str(exc),
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def _fetch_with_retries(self) -> float:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._config.retries + 1),
                wait=self._backoff,
                retry=retry_if_exception(_is_retryable),
                before_sleep=self._log_retry,
                sleep=self._sleep,
                reraise=True,
            ):
                with attempt:
                    return await self._fetch_once()
        except (httpx.HTTPError, InvalidPriceResponse) as exc:
            self._log.error(
                "price.fetch_failed",
                status=_status_code(exc),
                error=str(exc),
            )
            raise PriceUnavailableError(f"Failed to fetch SOL/USD price: {exc}") from exc
        raise PriceUnavailableError("Failed to fetch SOL/USD price")

    async def _fetch_once(self) -> float:
        response = await self._client.get(
            self._config.api_url,
            timeout=self._config.request_timeout_seconds,
        )
        response.raise_for_status()
        try:
            price = response.json()["solana"]["usd"]
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidPriceResponse("SOL price missing from API response") from exc
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price <= 0:
            raise InvalidPriceResponse(f"Invalid SOL price: {price!r}")
        return float(price)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
