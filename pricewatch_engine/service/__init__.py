"""Resilient price data service."""

from .data_service import ResilientDataService, build_data_service
from .status import ProviderStatus, StatusListener

__all__ = [
    "ProviderStatus",
    "ResilientDataService",
    "StatusListener",
    "build_data_service",
]
