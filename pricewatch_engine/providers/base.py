"""Shared provider plumbing: live price feeds and HTTP access.

Live updates are delivered by one polling task per subscribed symbol.
Registrations are reference counted: the first subscription for a symbol
starts its feed, the last unsubscribe cancels it.
"""

import asyncio
import logging
from abc import abstractmethod
from typing import Any

import httpx

from pricewatch_engine.errors import ProviderError
from pricewatch_engine.models import PriceData

from .provider import PriceCallback, PriceDataProvider

logger = logging.getLogger(__name__)

# Candle interval lengths in seconds.
INTERVAL_SECONDS: dict[str, int] = {
    "1m": 60,
    "3m": 180,
    "5m": 300,
    "15m": 900,
    "30m": 1800,
    "1h": 3600,
    "2h": 7200,
    "4h": 14400,
    "6h": 21600,
    "8h": 28800,
    "12h": 43200,
    "1d": 86400,
    "3d": 259200,
    "1w": 604800,
}


class PollingPriceDataProvider(PriceDataProvider):
    """Provider base implementing reference-counted live subscriptions.

    Attributes:
        live_poll_interval_seconds: Delay between polls of a live feed.
        max_reconnect_attempts: Consecutive feed errors tolerated before the feed stops.
        reconnect_delay_seconds: Initial backoff after a feed error (doubles per retry).
    """

    PROVIDER_NAME: str = ""
    DEFAULT_PRIORITY: int = 100

    def __init__(
        self,
        *,
        priority: int | None = None,
        live_poll_interval_seconds: float = 2.0,
        max_reconnect_attempts: int = 5,
        reconnect_delay_seconds: float = 3.0,
    ) -> None:
        self._priority = self.DEFAULT_PRIORITY if priority is None else priority
        self.live_poll_interval_seconds = live_poll_interval_seconds
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self._subscribers: dict[str, list[PriceCallback]] = {}
        self._feeds: dict[str, asyncio.Task[None]] = {}

    @property
    def name(self) -> str:
        return self.PROVIDER_NAME

    @property
    def priority(self) -> int:
        return self._priority

    # -- Live subscriptions ----------------------------------------------------

    def subscribe_to_real_time(self, symbol: str, callback: PriceCallback) -> None:
        """Register ``callback`` for live updates; starts the feed on first use.

        Must be called from within a running event loop.
        """
        self.validate_symbol(symbol)
        callbacks = self._subscribers.setdefault(symbol, [])
        callbacks.append(callback)
        if symbol not in self._feeds:
            loop = asyncio.get_running_loop()
            self._feeds[symbol] = loop.create_task(
                self._run_live_feed(symbol), name=f"{self.name}-live-{symbol}"
            )
        logger.info(
            "%s: subscribed to live updates for %s (%d subscriber(s))",
            self.name,
            symbol,
            len(callbacks),
        )

    def unsubscribe_from_real_time(
        self, symbol: str, callback: PriceCallback | None = None
    ) -> None:
        """Drop one registration for ``symbol``.

        Removes ``callback`` if given, otherwise the most recent registration.
        The feed is cancelled once no registrations remain.
        """
        callbacks = self._subscribers.get(symbol)
        if not callbacks:
            return

        if callback is None:
            callbacks.pop()
        else:
            try:
                callbacks.remove(callback)
            except ValueError:
                return

        if callbacks:
            return

        del self._subscribers[symbol]
        feed = self._feeds.pop(symbol, None)
        if feed is not None:
            feed.cancel()
        logger.info("%s: unsubscribed from live updates for %s", self.name, symbol)

    def get_subscribed_symbols(self) -> list[str]:
        return list(self._subscribers)

    def get_active_subscriptions(self) -> int:
        return sum(len(callbacks) for callbacks in self._subscribers.values())

    def is_feed_running(self, symbol: str) -> bool:
        """Whether a live feed task is running for ``symbol``."""
        feed = self._feeds.get(symbol)
        return feed is not None and not feed.done()

    async def _run_live_feed(self, symbol: str) -> None:
        """Poll the current price and fan it out until cancelled or retries run out."""
        consecutive_errors = 0
        while True:
            try:
                data = await self.get_current_price(symbol)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                consecutive_errors += 1
                if consecutive_errors > self.max_reconnect_attempts:
                    logger.error(
                        "%s: live feed for %s stopped after %d failed attempts: %s",
                        self.name,
                        symbol,
                        self.max_reconnect_attempts,
                        exc,
                    )
                    self._feeds.pop(symbol, None)
                    return
                delay = self.reconnect_delay_seconds * (2 ** (consecutive_errors - 1))
                logger.warning(
                    "%s: live feed error for %s (attempt %d/%d): %s, retrying in %.1fs",
                    self.name,
                    symbol,
                    consecutive_errors,
                    self.max_reconnect_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            consecutive_errors = 0
            self._notify_subscribers(symbol, data)
            await asyncio.sleep(self.live_poll_interval_seconds)

    def _notify_subscribers(self, symbol: str, data: PriceData) -> None:
        for callback in list(self._subscribers.get(symbol, [])):
            try:
                callback(data)
            except Exception:
                logger.exception("%s: error in subscriber callback for %s", self.name, symbol)

    async def destroy(self) -> None:
        """Cancel live feeds and drop all subscriptions."""
        feeds = list(self._feeds.values())
        self._feeds.clear()
        self._subscribers.clear()
        for feed in feeds:
            feed.cancel()
        if feeds:
            await asyncio.gather(*feeds, return_exceptions=True)
        logger.info("%s: provider destroyed", self.name)

    # -- Validation ------------------------------------------------------------

    @staticmethod
    def validate_symbol(symbol: str) -> None:
        if not isinstance(symbol, str) or not symbol.strip():
            raise ValueError("Invalid symbol provided")

    @staticmethod
    def validate_interval(interval: str) -> None:
        if not isinstance(interval, str) or not interval:
            raise ValueError("Invalid interval provided")

    def _error(self, message: str, original: BaseException | None = None) -> ProviderError:
        return ProviderError(message, self.name, original)


class HttpPriceDataProvider(PollingPriceDataProvider):
    """Provider base for REST upstreams accessed with ``httpx``.

    A client may be injected (tests use ``httpx.MockTransport``); otherwise
    one is created lazily and closed by ``destroy()``.
    """

    BASE_URL: str = ""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        request_timeout_seconds: float = 10.0,
        priority: int | None = None,
        live_poll_interval_seconds: float = 2.0,
        max_reconnect_attempts: int = 5,
        reconnect_delay_seconds: float = 3.0,
    ) -> None:
        super().__init__(
            priority=priority,
            live_poll_interval_seconds=live_poll_interval_seconds,
            max_reconnect_attempts=max_reconnect_attempts,
            reconnect_delay_seconds=reconnect_delay_seconds,
        )
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.request_timeout_seconds = request_timeout_seconds
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.request_timeout_seconds)
            self._owns_client = True
        return self._client

    async def _request_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode JSON.

        Raises:
            ProviderError: On timeout, transport error, non-2xx status or bad JSON
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self._get_client().get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise self._error(f"Request timeout for {path}", exc) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise self._error(f"HTTP {status} for {path}", exc) from exc
        except httpx.HTTPError as exc:
            raise self._error(f"Request failed for {path}: {exc}", exc) from exc
        except ValueError as exc:
            raise self._error(f"Invalid JSON from {path}", exc) from exc

    async def health_check(self) -> bool:
        try:
            await self._request_json(self._health_path())
            return True
        except Exception as exc:
            logger.warning("%s: health check failed: %s", self.name, exc)
            return False

    @abstractmethod
    def _health_path(self) -> str:
        """Path of the lightweight endpoint used by ``health_check``."""
        ...

    async def destroy(self) -> None:
        await super().destroy()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
