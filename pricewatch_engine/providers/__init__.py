"""Upstream price data providers."""

from .base import INTERVAL_SECONDS, HttpPriceDataProvider, PollingPriceDataProvider
from .binance_provider import BinanceProvider
from .coinbase_provider import CoinbaseProvider
from .factory import ProviderFactory
from .provider import PriceCallback, PriceDataProvider
from .stub_provider import StubPriceDataProvider

__all__ = [
    "BinanceProvider",
    "CoinbaseProvider",
    "HttpPriceDataProvider",
    "INTERVAL_SECONDS",
    "PollingPriceDataProvider",
    "PriceCallback",
    "PriceDataProvider",
    "ProviderFactory",
    "StubPriceDataProvider",
]
