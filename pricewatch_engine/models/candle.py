"""Candlestick models for historical price series."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Candle:
    """OHLCV candle keyed by its open time (Unix seconds)."""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self) -> None:
        """Validate candle data integrity."""
        if self.high < max(self.open, self.close, self.low):
            raise ValueError("High must be >= open, close, and low")
        if self.low > min(self.open, self.close, self.high):
            raise ValueError("Low must be <= open, close, and high")
        if self.volume < 0:
            raise ValueError("Volume must be non-negative")

    def to_dict(self) -> dict[str, float | int]:
        return {
            "time": self.time,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class HistoricalData:
    """Candle series for one symbol and interval, oldest candle first."""

    symbol: str
    interval: str
    candles: list[Candle] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate candle ordering."""
        times = [c.time for c in self.candles]
        if times != sorted(times):
            raise ValueError("Candles must be in ascending time order")

    @property
    def latest(self) -> Candle | None:
        """Most recent candle, if any."""
        return self.candles[-1] if self.candles else None

    def closes(self) -> list[float]:
        """Close prices in series order."""
        return [c.close for c in self.candles]
