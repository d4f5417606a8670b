"""Abstract price data provider interface."""

from abc import ABC, abstractmethod
from typing import Any, Callable

from pricewatch_engine.models import ExtendedPriceData, HistoricalData, PriceData

PriceCallback = Callable[[PriceData], None]


class PriceDataProvider(ABC):
    """Abstract interface for upstream price data providers."""

    #: Whether ``get_extended_data`` is implemented. Callers check this flag
    #: instead of probing for the method.
    supports_extended_data: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Stable provider identifier (e.g. ``"binance"``)."""
        ...

    @property
    @abstractmethod
    def priority(self) -> int:
        """Chain priority; lower values are tried first."""
        ...

    @abstractmethod
    async def get_current_price(self, symbol: str) -> PriceData:
        """
        Fetch the current price for a symbol.

        Args:
            symbol: Trading pair in exchange format (e.g., "BTCUSDT")

        Returns:
            Current price snapshot

        Raises:
            ProviderError: If the upstream request fails
        """
        ...

    @abstractmethod
    async def get_historical_data(
        self, symbol: str, interval: str, limit: int = 100
    ) -> HistoricalData:
        """
        Fetch OHLCV candles for a symbol.

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            interval: Candle interval (e.g., "1m", "1h", "1d")
            limit: Number of candles to fetch

        Returns:
            Candle series, oldest first

        Raises:
            ProviderError: If the upstream request fails
        """
        ...

    async def get_extended_data(
        self, symbol: str, options: dict[str, Any] | None = None
    ) -> ExtendedPriceData:
        """Fetch multi-window statistics; only when ``supports_extended_data``."""
        raise NotImplementedError(f"{self.name} does not provide extended data")

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability check. Must not raise."""
        ...

    @abstractmethod
    def subscribe_to_real_time(self, symbol: str, callback: PriceCallback) -> None:
        """Register ``callback`` for live price updates on ``symbol``."""
        ...

    @abstractmethod
    def unsubscribe_from_real_time(
        self, symbol: str, callback: PriceCallback | None = None
    ) -> None:
        """Drop one live registration for ``symbol``."""
        ...

    def get_subscribed_symbols(self) -> list[str]:
        """Symbols with at least one live subscriber."""
        return []

    def get_active_subscriptions(self) -> int:
        """Total live registrations across all symbols."""
        return 0

    async def destroy(self) -> None:
        """Release connections and subscriptions."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"
