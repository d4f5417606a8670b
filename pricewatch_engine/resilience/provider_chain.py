"""Chain of responsibility for provider failover.

Providers are tried strictly in chain order until one succeeds. Each attempt
is bounded by a timeout; a timed-out call is cancelled and its result can no
longer influence the chain. Independent calls may run their own chain
executions concurrently.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from pricewatch_engine.errors import ChainExhaustedError
from pricewatch_engine.models import ExtendedPriceData, HistoricalData, PriceData
from pricewatch_engine.monitoring.metrics import MetricsService
from pricewatch_engine.providers.provider import PriceDataProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class ChainExecutionResult(Generic[T]):
    """Result of a chain execution with attempt provenance."""

    result: T
    provider_id: str
    attempts: int
    failed_providers: tuple[str, ...]
    execution_time_seconds: float
    response_time_seconds: float  # Winning attempt only


@dataclass(frozen=True)
class ChainNodeStatus:
    """Health snapshot of one chain position."""

    provider_id: str
    priority: int
    is_healthy: bool
    response_time_seconds: float | None
    position: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "provider_id": self.provider_id,
            "priority": self.priority,
            "is_healthy": self.is_healthy,
            "response_time_seconds": self.response_time_seconds,
            "position": self.position,
        }


class ProviderChain:
    """Ordered provider list tried in sequence until one succeeds.

    Example:
        >>> chain = ProviderChain()
        >>> chain.add_provider(binance)
        >>> chain.add_provider(coinbase)
        >>> outcome = await chain.get_current_price("BTCUSDT", skip_unhealthy_providers=True)
        >>> outcome.provider_id, outcome.failed_providers
        ('coinbase', ('binance',))
    """

    def __init__(
        self,
        *,
        default_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        health_check_timeout_seconds: float = DEFAULT_HEALTH_CHECK_TIMEOUT_SECONDS,
        metrics: MetricsService | None = None,
    ) -> None:
        """Initialize an empty chain.

        Args:
            default_timeout_seconds: Per-attempt timeout when a call gives none
            health_check_timeout_seconds: Health check bound when a call gives no timeout
            metrics: Optional metrics sink
        """
        self.default_timeout_seconds = default_timeout_seconds
        self.health_check_timeout_seconds = health_check_timeout_seconds
        self._metrics = metrics
        self._providers: list[PriceDataProvider] = []

    # -- Chain management ------------------------------------------------------

    def add_provider(self, provider: PriceDataProvider) -> None:
        """Append a provider to the tail of the chain.

        Raises:
            ValueError: If a provider with the same name is already chained
        """
        if self.get_provider(provider.name) is not None:
            raise ValueError(f"Provider {provider.name} is already in the chain")
        self._providers.append(provider)
        logger.debug("ProviderChain: added provider %s", provider.name)

    def remove_provider(self, provider_id: str) -> bool:
        """Remove a provider by name. Returns False if it was not chained."""
        for index, provider in enumerate(self._providers):
            if provider.name == provider_id:
                del self._providers[index]
                logger.debug("ProviderChain: removed provider %s", provider_id)
                return True
        return False

    def get_providers(self) -> list[PriceDataProvider]:
        """Providers in chain order."""
        return list(self._providers)

    def get_provider(self, provider_id: str) -> PriceDataProvider | None:
        for provider in self._providers:
            if provider.name == provider_id:
                return provider
        return None

    def __len__(self) -> int:
        return len(self._providers)

    def is_empty(self) -> bool:
        return not self._providers

    def clear(self) -> None:
        """Remove all providers from the chain."""
        self._providers.clear()

    def reorder_by_priority(self) -> None:
        """Stable-sort the chain by ascending provider priority."""
        self._providers.sort(key=lambda p: p.priority)
        logger.info(
            "ProviderChain: reordered %d providers by priority: %s",
            len(self._providers),
            ", ".join(p.name for p in self._providers),
        )

    # -- Execution -------------------------------------------------------------

    async def execute(
        self,
        operation_name: str,
        operation_fn: Callable[[PriceDataProvider], Awaitable[T]],
        *,
        max_attempts: int | None = None,
        skip_unhealthy_providers: bool = False,
        timeout_seconds: float | None = None,
    ) -> ChainExecutionResult[T]:
        """Run ``operation_fn`` against providers in order until one succeeds.

        Args:
            operation_name: Label for logs, metrics and errors
            operation_fn: Called with a provider, returns an awaitable result
            max_attempts: Maximum providers actually attempted (defaults to chain length);
                          skipped providers do not count
            skip_unhealthy_providers: Health-check each provider first and skip failures
            timeout_seconds: Per-attempt (and per health check) timeout

        Returns:
            The first successful result with attempt provenance

        Raises:
            ChainExhaustedError: If no provider produced a result
        """
        start = time.perf_counter()
        providers = list(self._providers)
        limit = len(providers) if max_attempts is None else max_attempts
        timeout = self.default_timeout_seconds if timeout_seconds is None else timeout_seconds
        health_timeout = (
            self.health_check_timeout_seconds if timeout_seconds is None else timeout_seconds
        )

        failed: list[str] = []
        errors: dict[str, BaseException] = {}
        attempts = 0

        for provider in providers:
            if attempts >= limit:
                break
            provider_id = provider.name

            if skip_unhealthy_providers and not await self._check_health(provider, health_timeout):
                logger.info("ProviderChain: skipping unhealthy provider %s", provider_id)
                failed.append(provider_id)
                self._record_attempt(provider_id, operation_name, "skipped")
                continue

            attempts += 1
            logger.debug(
                "ProviderChain: attempting %s with %s (attempt %d)",
                operation_name,
                provider_id,
                attempts,
            )
            attempt_start = time.perf_counter()

            try:
                result = await asyncio.wait_for(operation_fn(provider), timeout=timeout)
            except asyncio.TimeoutError as exc:
                logger.warning(
                    "ProviderChain: %s timed out with %s after %.1fs",
                    operation_name,
                    provider_id,
                    timeout,
                )
                failed.append(provider_id)
                errors[provider_id] = exc
                self._record_attempt(provider_id, operation_name, "timeout")
                continue
            except Exception as exc:
                logger.warning("ProviderChain: %s failed with %s: %s", operation_name, provider_id, exc)
                failed.append(provider_id)
                errors[provider_id] = exc
                self._record_attempt(provider_id, operation_name, "failure")
                continue

            attempt_time = time.perf_counter() - attempt_start
            elapsed = time.perf_counter() - start
            self._record_attempt(provider_id, operation_name, "success")
            if self._metrics is not None:
                self._metrics.observe_provider_latency(provider_id, operation_name, attempt_time)
            logger.info(
                "ProviderChain: %s succeeded with %s in %.0fms",
                operation_name,
                provider_id,
                elapsed * 1000,
            )
            return ChainExecutionResult(
                result=result,
                provider_id=provider_id,
                attempts=attempts,
                failed_providers=tuple(failed),
                execution_time_seconds=elapsed,
                response_time_seconds=attempt_time,
            )

        elapsed = time.perf_counter() - start
        if self._metrics is not None:
            self._metrics.record_chain_exhausted(operation_name)
        error = ChainExhaustedError(operation_name, attempts, failed, elapsed, errors)
        logger.error("ProviderChain: %s", error)
        raise error

    async def get_current_price(
        self, symbol: str, **options: Any
    ) -> ChainExecutionResult[PriceData]:
        """Fetch the current price through the chain."""
        return await self.execute(
            "get_current_price",
            lambda provider: provider.get_current_price(symbol),
            **options,
        )

    async def get_historical_data(
        self, symbol: str, interval: str, limit: int = 100, **options: Any
    ) -> ChainExecutionResult[HistoricalData]:
        """Fetch historical candles through the chain."""
        return await self.execute(
            "get_historical_data",
            lambda provider: provider.get_historical_data(symbol, interval, limit),
            **options,
        )

    async def get_extended_data(
        self, symbol: str, data_options: dict[str, Any] | None = None, **options: Any
    ) -> ChainExecutionResult[ExtendedPriceData]:
        """Fetch extended data through the chain.

        Providers without the extended-data capability fail their attempt.
        """
        return await self.execute(
            "get_extended_data",
            lambda provider: provider.get_extended_data(symbol, data_options),
            **options,
        )

    # -- Health ----------------------------------------------------------------

    async def _check_health(self, provider: PriceDataProvider, timeout: float) -> bool:
        try:
            return bool(await asyncio.wait_for(provider.health_check(), timeout=timeout))
        except asyncio.TimeoutError:
            logger.warning("ProviderChain: health check timed out for %s", provider.name)
            return False
        except Exception as exc:
            logger.warning("ProviderChain: health check failed for %s: %s", provider.name, exc)
            return False

    async def get_chain_status(self, timeout_seconds: float | None = None) -> list[ChainNodeStatus]:
        """Health-check every chained provider concurrently.

        Args:
            timeout_seconds: Bound for each health check

        Returns:
            One status per provider, in chain order
        """
        timeout = self.health_check_timeout_seconds if timeout_seconds is None else timeout_seconds
        providers = list(self._providers)

        async def check(position: int, provider: PriceDataProvider) -> ChainNodeStatus:
            started = time.perf_counter()
            healthy = await self._check_health(provider, timeout)
            return ChainNodeStatus(
                provider_id=provider.name,
                priority=provider.priority,
                is_healthy=healthy,
                response_time_seconds=time.perf_counter() - started if healthy else None,
                position=position,
            )

        return list(
            await asyncio.gather(*(check(i + 1, p) for i, p in enumerate(providers)))
        )

    def _record_attempt(self, provider_id: str, operation_name: str, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_chain_attempt(provider_id, operation_name, outcome)
