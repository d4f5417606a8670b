"""Monitoring services for the price data layer.

Provides observability capabilities:
- MetricsService: Prometheus metrics for breakers, chains and providers
"""

from pricewatch_engine.config.models import MetricsConfig
from pricewatch_engine.monitoring.metrics import MetricsService

__all__ = [
    "MetricsConfig",
    "MetricsService",
]
