"""Data models for prices, candles and extended market data."""

from .candle import Candle, HistoricalData
from .price import EXTENDED_WINDOWS, ExtendedPriceData, PriceData, WindowStats

__all__ = [
    "Candle",
    "EXTENDED_WINDOWS",
    "ExtendedPriceData",
    "HistoricalData",
    "PriceData",
    "WindowStats",
]
