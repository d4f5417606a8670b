"""Binance Spot price data provider.

Uses the public REST API (``/ticker/24hr``, ``/klines``, ``/ping``). This is
the primary provider and the only bundled one that produces extended,
multi-window statistics.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from pricewatch_engine.errors import ProviderError
from pricewatch_engine.models import (
    Candle,
    ExtendedPriceData,
    HistoricalData,
    PriceData,
    WindowStats,
)

from .base import HttpPriceDataProvider

logger = logging.getLogger(__name__)

# (window name, kline interval, kline count) used for extended data.
_WINDOW_KLINES: tuple[tuple[str, str, int], ...] = (
    ("10m", "1m", 10),
    ("1h", "1m", 60),
    ("4h", "1h", 4),
    ("1d", "1h", 24),
    ("1w", "1d", 7),
)

# Index of the quote asset volume in a raw kline row.
_QUOTE_VOLUME_INDEX = 7


class BinanceProvider(HttpPriceDataProvider):
    """Binance market data via REST.

    Example:
        >>> async with httpx.AsyncClient() as client:
        ...     provider = BinanceProvider(client=client)
        ...     price = await provider.get_current_price("BTCUSDT")
    """

    PROVIDER_NAME = "binance"
    DEFAULT_PRIORITY = 1
    BASE_URL = "https://api.binance.com/api/v3"

    supports_extended_data = True

    async def get_current_price(self, symbol: str) -> PriceData:
        """Fetch the 24h ticker for ``symbol``.

        Raises:
            ProviderError: If the request fails or the payload is malformed.
        """
        self.validate_symbol(symbol)
        data = await self._request_json("/ticker/24hr", {"symbol": symbol})
        try:
            return self._parse_ticker(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise self._error(f"Malformed ticker for {symbol}", exc) from exc

    async def get_historical_data(
        self, symbol: str, interval: str, limit: int = 100
    ) -> HistoricalData:
        """Fetch ``limit`` klines, oldest first.

        Raises:
            ProviderError: If the request fails or the payload is malformed.
        """
        self.validate_symbol(symbol)
        self.validate_interval(interval)
        raw = await self._fetch_klines(symbol, interval, limit)
        try:
            candles = self._convert_klines(raw)
            return HistoricalData(symbol=symbol, interval=interval, candles=candles)
        except (IndexError, TypeError, ValueError) as exc:
            raise self._error(f"Malformed klines for {symbol}/{interval}", exc) from exc

    async def get_extended_data(
        self, symbol: str, options: dict[str, Any] | None = None
    ) -> ExtendedPriceData:
        """Fetch the ticker plus 10m/1h/4h/1d/1w window statistics.

        Args:
            symbol: Trading pair (e.g. ``"BTCUSDT"``)
            options: Accepted for interface compatibility; no options are
                     interpreted by this provider

        Raises:
            ProviderError: If any request fails or a payload is malformed.
        """
        self.validate_symbol(symbol)
        ticker_raw, *window_raws = await asyncio.gather(
            self._request_json("/ticker/24hr", {"symbol": symbol}),
            *(
                self._fetch_klines(symbol, interval, count)
                for _, interval, count in _WINDOW_KLINES
            ),
        )

        try:
            ticker = self._parse_ticker(ticker_raw)
            windows: dict[str, WindowStats] = {}
            recent_prices: list[float] = []
            for (name, _, _), raw in zip(_WINDOW_KLINES, window_raws):
                candles = self._convert_klines(raw)
                volumes = [float(row[_QUOTE_VOLUME_INDEX]) for row in raw]
                windows[name] = WindowStats.from_candles(candles, volumes)
                if name == "10m":
                    recent_prices = [c.close for c in candles]
        except (IndexError, KeyError, TypeError, ValueError) as exc:
            raise self._error(f"Malformed extended data for {symbol}", exc) from exc

        logger.debug("Binance: extended data for %s at %.2f", symbol, ticker.price)
        return ExtendedPriceData(
            symbol=ticker.symbol,
            price=ticker.price,
            timestamp=ticker.timestamp,
            volume_24h=ticker.volume_24h,
            price_change_24h=ticker.price_change_24h,
            price_change_percent_24h=ticker.price_change_percent_24h,
            volume_per_hour=ticker.volume_24h / 24,
            windows=windows,
            recent_prices=recent_prices,
        )

    def _health_path(self) -> str:
        return "/ping"

    # -- Internal helpers ------------------------------------------------------

    async def _fetch_klines(self, symbol: str, interval: str, limit: int) -> list[list[Any]]:
        raw = await self._request_json(
            "/klines", {"symbol": symbol, "interval": interval, "limit": limit}
        )
        if not isinstance(raw, list):
            raise ProviderError(f"Unexpected klines payload for {symbol}", self.name)
        return raw

    @staticmethod
    def _parse_ticker(data: dict[str, Any]) -> PriceData:
        close_time = data.get("closeTime")
        timestamp = (
            datetime.fromtimestamp(close_time / 1000.0, tz=timezone.utc)
            if close_time
            else datetime.now(timezone.utc)
        )
        return PriceData(
            symbol=data["symbol"],
            price=float(data["lastPrice"]),
            timestamp=timestamp,
            volume_24h=float(data["quoteVolume"]),
            price_change_24h=float(data["priceChange"]),
            price_change_percent_24h=float(data["priceChangePercent"]),
        )

    @staticmethod
    def _convert_klines(raw: list[list[Any]]) -> list[Candle]:
        """Convert raw ``[open_time_ms, open, high, low, close, volume, ...]`` rows."""
        return [
            Candle(
                time=int(row[0]) // 1000,
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            )
            for row in raw
        ]
