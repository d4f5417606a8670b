"""Stub price data provider for testing and demos with deterministic data."""

import asyncio
from datetime import datetime, timezone
from typing import Any

from pricewatch_engine.errors import ProviderError
from pricewatch_engine.models import Candle, ExtendedPriceData, HistoricalData, PriceData

from .base import INTERVAL_SECONDS, PollingPriceDataProvider


class StubPriceDataProvider(PollingPriceDataProvider):
    """Stub provider returning fixed market data, with failure injection.

    Flip ``healthy``/``fail`` at runtime to simulate an upstream outage and
    ``latency_seconds`` to simulate a slow one. ``calls`` records every
    operation invoked, in order.
    """

    DEFAULT_PRIORITY = 99

    def __init__(
        self,
        name: str = "stub",
        priority: int | None = None,
        base_price: float = 50000.0,
        volume: float = 100.0,
        *,
        healthy: bool = True,
        fail: bool = False,
        latency_seconds: float = 0.0,
        health_latency_seconds: float = 0.0,
        supports_extended_data: bool = False,
        live_poll_interval_seconds: float = 0.01,
        max_reconnect_attempts: int = 5,
        reconnect_delay_seconds: float = 0.01,
    ):
        """
        Initialize stub provider with configurable parameters.

        Args:
            name: Provider identifier
            priority: Chain priority (lower is preferred)
            base_price: Price returned for every symbol
            volume: Volume for candles
            healthy: Result of ``health_check``
            fail: Raise ProviderError from every data operation
            latency_seconds: Delay before each data operation completes
            health_latency_seconds: Delay before ``health_check`` completes
            supports_extended_data: Serve ``get_extended_data``
        """
        super().__init__(
            priority=priority,
            live_poll_interval_seconds=live_poll_interval_seconds,
            max_reconnect_attempts=max_reconnect_attempts,
            reconnect_delay_seconds=reconnect_delay_seconds,
        )
        self._name = name
        self.base_price = base_price
        self.volume = volume
        self.healthy = healthy
        self.fail = fail
        self.latency_seconds = latency_seconds
        self.health_latency_seconds = health_latency_seconds
        self.supports_extended_data = supports_extended_data
        self.calls: list[str] = []
        self.destroyed = False

    @property
    def name(self) -> str:
        return self._name

    async def _simulate(self, operation: str) -> None:
        self.calls.append(operation)
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self.fail:
            raise ProviderError(f"{operation} failed (stub)", self.name)

    async def get_current_price(self, symbol: str) -> PriceData:
        """Return a deterministic price snapshot."""
        self.validate_symbol(symbol)
        await self._simulate("get_current_price")
        return PriceData(
            symbol=symbol,
            price=self.base_price,
            timestamp=datetime.now(timezone.utc),
            volume_24h=self.volume * 24,
            price_change_24h=self.base_price * 0.01,
            price_change_percent_24h=1.0,
        )

    async def get_historical_data(
        self, symbol: str, interval: str, limit: int = 100
    ) -> HistoricalData:
        """Return deterministic candle data ending now."""
        self.validate_symbol(symbol)
        self.validate_interval(interval)
        await self._simulate("get_historical_data")

        step = INTERVAL_SECONDS.get(interval, 3600)
        now = int(datetime.now(timezone.utc).timestamp())
        start = now - now % step - (limit - 1) * step

        candles = [
            Candle(
                time=start + i * step,
                open=self.base_price,
                high=self.base_price * 1.001,  # +0.1%
                low=self.base_price * 0.999,  # -0.1%
                close=self.base_price * 1.0005,  # +0.05%
                volume=self.volume,
            )
            for i in range(limit)
        ]
        return HistoricalData(symbol=symbol, interval=interval, candles=candles)

    async def get_extended_data(
        self, symbol: str, options: dict[str, Any] | None = None
    ) -> ExtendedPriceData:
        """Return flat extended data when the capability is enabled."""
        if not self.supports_extended_data:
            raise NotImplementedError(f"{self.name} does not provide extended data")
        price = await self.get_current_price(symbol)
        self.calls.append("get_extended_data")
        return ExtendedPriceData.from_price_data(price)

    async def health_check(self) -> bool:
        self.calls.append("health_check")
        if self.health_latency_seconds:
            await asyncio.sleep(self.health_latency_seconds)
        return self.healthy

    async def destroy(self) -> None:
        await super().destroy()
        self.destroyed = True
