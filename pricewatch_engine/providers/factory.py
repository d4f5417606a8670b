"""Provider construction from configuration."""

import logging
from typing import Callable

from pricewatch_engine.config.models import ProviderSettings

from .binance_provider import BinanceProvider
from .coinbase_provider import CoinbaseProvider
from .provider import PriceDataProvider
from .stub_provider import StubPriceDataProvider

logger = logging.getLogger(__name__)

ProviderConstructor = Callable[[ProviderSettings], PriceDataProvider]


def _binance(settings: ProviderSettings) -> PriceDataProvider:
    return BinanceProvider(
        base_url=settings.base_url,
        priority=settings.priority,
        request_timeout_seconds=settings.request_timeout_seconds,
        live_poll_interval_seconds=settings.live_poll_interval_seconds,
    )


def _coinbase(settings: ProviderSettings) -> PriceDataProvider:
    return CoinbaseProvider(
        base_url=settings.base_url,
        priority=settings.priority,
        request_timeout_seconds=settings.request_timeout_seconds,
        live_poll_interval_seconds=settings.live_poll_interval_seconds,
    )


def _stub(settings: ProviderSettings) -> PriceDataProvider:
    return StubPriceDataProvider(
        priority=settings.priority,
        live_poll_interval_seconds=settings.live_poll_interval_seconds,
    )


class ProviderFactory:
    """Registry of provider constructors keyed by provider type.

    Example:
        >>> factory = ProviderFactory()
        >>> providers = factory.create_from_config(config.enabled_providers)
    """

    def __init__(self) -> None:
        self._constructors: dict[str, ProviderConstructor] = {
            "binance": _binance,
            "coinbase": _coinbase,
            "stub": _stub,
        }

    def register(self, provider_type: str, constructor: ProviderConstructor) -> None:
        """Register (or replace) the constructor for ``provider_type``."""
        self._constructors[provider_type] = constructor

    def is_supported(self, provider_type: str) -> bool:
        return provider_type in self._constructors

    def get_available_providers(self) -> list[str]:
        return list(self._constructors)

    def create(
        self, provider_type: str, settings: ProviderSettings | None = None
    ) -> PriceDataProvider:
        """
        Create one provider.

        Args:
            provider_type: Registered provider type
            settings: Provider settings (defaults when omitted)

        Raises:
            ValueError: If the provider type is unknown
        """
        constructor = self._constructors.get(provider_type)
        if constructor is None:
            raise ValueError(f"Unknown provider type: {provider_type}")
        if settings is None:
            # Registered custom types are not part of the ProviderType literal
            settings = ProviderSettings.model_construct(type=provider_type)
        return constructor(settings)

    def create_from_config(self, settings: list[ProviderSettings]) -> list[PriceDataProvider]:
        """Create every enabled provider, sorted by priority."""
        providers = [self.create(s.type, s) for s in settings if s.enabled]
        providers.sort(key=lambda p: p.priority)
        logger.info(
            "ProviderFactory: created %d providers: %s",
            len(providers),
            ", ".join(p.name for p in providers),
        )
        return providers

    def create_all(self) -> list[PriceDataProvider]:
        """Create the real upstream providers with default settings, sorted by priority."""
        return self.create_from_config(
            [ProviderSettings(type="binance"), ProviderSettings(type="coinbase")]
        )
