"""Configuration package for the price data service."""

from .loader import load_config
from .models import (
    AppConfig,
    CircuitBreakerConfig,
    DataServiceConfig,
    MetricsConfig,
    ProviderSettings,
    ProviderType,
)

__all__ = [
    "AppConfig",
    "CircuitBreakerConfig",
    "DataServiceConfig",
    "MetricsConfig",
    "ProviderSettings",
    "ProviderType",
    "load_config",
]
