"""Pricewatch engine: resilient multi-provider crypto price data."""

__version__ = "0.1.0"
