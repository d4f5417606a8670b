"""Coinbase Exchange price data provider (fallback source).

Symbols are accepted in Binance format (``BTCUSDT``) and converted to
Coinbase product ids (``BTC-USD``).
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from pricewatch_engine.models import Candle, HistoricalData, PriceData

from .base import HttpPriceDataProvider

logger = logging.getLogger(__name__)

_TO_COINBASE: dict[str, str] = {
    "BTCUSDT": "BTC-USD",
    "ETHUSDT": "ETH-USD",
    "ADAUSDT": "ADA-USD",
    "SOLUSDT": "SOL-USD",
    "XRPUSDT": "XRP-USD",
    "DOTUSDT": "DOT-USD",
    "LINKUSDT": "LINK-USD",
    "LTCUSDT": "LTC-USD",
    "BCHUSDT": "BCH-USD",
    "XLMUSDT": "XLM-USD",
}
_FROM_COINBASE: dict[str, str] = {v: k for k, v in _TO_COINBASE.items()}

# Candle granularities accepted by the Coinbase candles endpoint (seconds).
_GRANULARITIES: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
    "6h": 21600,
    "1d": 86400,
}
_DEFAULT_GRANULARITY = 3600


def to_coinbase_symbol(symbol: str) -> str:
    """Convert ``BTCUSDT`` style symbols to ``BTC-USD`` product ids."""
    if symbol in _TO_COINBASE:
        return _TO_COINBASE[symbol]
    if symbol.endswith("USDT"):
        return f"{symbol[:-4]}-USD"
    logger.warning("Coinbase: no conversion mapping for symbol %s", symbol)
    return symbol


def from_coinbase_symbol(product_id: str) -> str:
    """Convert ``BTC-USD`` product ids back to ``BTCUSDT`` style symbols."""
    if product_id in _FROM_COINBASE:
        return _FROM_COINBASE[product_id]
    if product_id.endswith("-USD"):
        return f"{product_id[:-4]}USDT"
    return product_id


def to_coinbase_granularity(interval: str) -> int:
    """Granularity in seconds for ``interval``; unsupported intervals fall back to 1h."""
    granularity = _GRANULARITIES.get(interval)
    if granularity is None:
        logger.warning("Coinbase: unsupported interval %s, defaulting to 1h", interval)
        return _DEFAULT_GRANULARITY
    return granularity


class CoinbaseProvider(HttpPriceDataProvider):
    """Coinbase Exchange market data via REST."""

    PROVIDER_NAME = "coinbase"
    DEFAULT_PRIORITY = 2
    BASE_URL = "https://api.exchange.coinbase.com"

    async def get_current_price(self, symbol: str) -> PriceData:
        """Combine ``/ticker`` and ``/stats`` into a price snapshot.

        Raises:
            ProviderError: If either request fails or a payload is malformed.
        """
        self.validate_symbol(symbol)
        product_id = to_coinbase_symbol(symbol)
        ticker, stats = await asyncio.gather(
            self._request_json(f"/products/{product_id}/ticker"),
            self._request_json(f"/products/{product_id}/stats"),
        )
        try:
            return self._transform(symbol, ticker, stats)
        except (KeyError, TypeError, ValueError) as exc:
            raise self._error(f"Malformed ticker for {symbol}", exc) from exc

    async def get_historical_data(
        self, symbol: str, interval: str, limit: int = 100
    ) -> HistoricalData:
        """Fetch candles covering the last ``limit`` intervals, oldest first."""
        self.validate_symbol(symbol)
        self.validate_interval(interval)
        if limit <= 0:
            return HistoricalData(symbol=symbol, interval=interval)
        product_id = to_coinbase_symbol(symbol)
        granularity = to_coinbase_granularity(interval)

        end = datetime.now(timezone.utc)
        start = end - timedelta(seconds=limit * granularity)
        raw = await self._request_json(
            f"/products/{product_id}/candles",
            {
                "start": start.isoformat(),
                "end": end.isoformat(),
                "granularity": granularity,
            },
        )

        try:
            # Rows are [time, low, high, open, close, volume], newest first
            candles = [
                Candle(
                    time=int(row[0]),
                    open=float(row[3]),
                    high=float(row[2]),
                    low=float(row[1]),
                    close=float(row[4]),
                    volume=float(row[5]),
                )
                for row in reversed(raw)
            ]
            return HistoricalData(symbol=symbol, interval=interval, candles=candles[-limit:])
        except (IndexError, TypeError, ValueError) as exc:
            raise self._error(f"Malformed candles for {symbol}/{interval}", exc) from exc

    def _health_path(self) -> str:
        return "/time"

    @staticmethod
    def _transform(symbol: str, ticker: dict[str, Any], stats: dict[str, Any]) -> PriceData:
        price = float(ticker["price"])
        open_price = float(stats.get("open") or 0.0)
        raw_time = ticker.get("time")
        timestamp = (
            datetime.fromisoformat(raw_time.replace("Z", "+00:00"))
            if raw_time
            else datetime.now(timezone.utc)
        )
        return PriceData(
            symbol=symbol,
            price=price,
            timestamp=timestamp,
            volume_24h=float(stats.get("volume") or 0.0),
            price_change_24h=price - open_price if open_price else 0.0,
            price_change_percent_24h=(price - open_price) / open_price * 100 if open_price else 0.0,
        )
