"""Price snapshot models returned by providers and the data service."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .candle import Candle

# Rolling windows reported in extended data, shortest first.
EXTENDED_WINDOWS: tuple[str, ...] = ("10m", "1h", "4h", "1d", "1w")


@dataclass(frozen=True)
class PriceData:
    """Current price and 24h ticker figures for a symbol."""

    symbol: str
    price: float
    timestamp: datetime
    volume_24h: float
    price_change_24h: float
    price_change_percent_24h: float

    def __post_init__(self) -> None:
        """Validate price data."""
        if self.price < 0:
            raise ValueError("Price must be non-negative")
        if self.volume_24h < 0:
            raise ValueError("Volume must be non-negative")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp.isoformat(),
            "volume_24h": self.volume_24h,
            "price_change_24h": self.price_change_24h,
            "price_change_percent_24h": self.price_change_percent_24h,
        }


@dataclass(frozen=True)
class WindowStats:
    """High/low range, volume and percent move over a rolling window."""

    high: float
    low: float
    amplitude: float
    volume: float
    percent_change: float

    @classmethod
    def from_candles(cls, candles: list[Candle], volumes: list[float] | None = None) -> "WindowStats":
        """
        Aggregate a window from its candles.

        Args:
            candles: Candles covering the window, oldest first
            volumes: Optional per-candle quote volumes; candle volume is used
                     when omitted

        Returns:
            Aggregated window statistics
        """
        if not candles:
            raise ValueError("Cannot aggregate an empty window")

        high = max(c.high for c in candles)
        low = min(c.low for c in candles)
        volume = sum(volumes) if volumes is not None else sum(c.volume for c in candles)
        first_open = candles[0].open
        last_close = candles[-1].close
        percent_change = (
            (last_close - first_open) / first_open * 100 if first_open else 0.0
        )
        return cls(
            high=high,
            low=low,
            amplitude=high - low,
            volume=volume,
            percent_change=percent_change,
        )

    @classmethod
    def flat(cls, price: float) -> "WindowStats":
        """Window with no movement at ``price``."""
        return cls(high=price, low=price, amplitude=0.0, volume=0.0, percent_change=0.0)

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary."""
        return {
            "high": self.high,
            "low": self.low,
            "amplitude": self.amplitude,
            "volume": self.volume,
            "percent_change": self.percent_change,
        }


@dataclass(frozen=True)
class ExtendedPriceData(PriceData):
    """Price snapshot enriched with multi-window range statistics."""

    volume_per_hour: float = 0.0
    windows: dict[str, WindowStats] = field(default_factory=dict)
    recent_prices: list[float] = field(default_factory=list)

    @classmethod
    def from_price_data(cls, data: PriceData) -> "ExtendedPriceData":
        """
        Synthesize extended data from a basic price snapshot.

        Used when the serving provider cannot produce window statistics:
        every window is flat at the current price.
        """
        return cls(
            symbol=data.symbol,
            price=data.price,
            timestamp=data.timestamp,
            volume_24h=data.volume_24h,
            price_change_24h=data.price_change_24h,
            price_change_percent_24h=data.price_change_percent_24h,
            volume_per_hour=data.volume_24h / 24,
            windows={name: WindowStats.flat(data.price) for name in EXTENDED_WINDOWS},
            recent_prices=[data.price],
        )

    def window(self, name: str) -> WindowStats | None:
        """Statistics for a named window (e.g. ``"1h"``)."""
        return self.windows.get(name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update(
            {
                "volume_per_hour": self.volume_per_hour,
                "windows": {name: stats.to_dict() for name, stats in self.windows.items()},
                "recent_prices": list(self.recent_prices),
            }
        )
        return data
