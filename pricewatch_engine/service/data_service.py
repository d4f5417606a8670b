"""Resilient price data service.

Façade between the dashboard and the upstream providers. Combines a
priority-ordered provider chain for failover, one circuit breaker per
provider for the single-provider fast path, live status records, a
recurring health sweep and status-change notifications.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Literal, TypeVar

from pricewatch_engine.config.models import AppConfig, DataServiceConfig
from pricewatch_engine.errors import ChainExhaustedError, CircuitOpenError, NoProviderAvailableError
from pricewatch_engine.models import ExtendedPriceData, HistoricalData, PriceData
from pricewatch_engine.monitoring.metrics import MetricsService
from pricewatch_engine.providers.factory import ProviderFactory
from pricewatch_engine.providers.provider import PriceCallback, PriceDataProvider
from pricewatch_engine.resilience.circuit_breaker import CircuitBreaker
from pricewatch_engine.resilience.provider_chain import ChainNodeStatus, ProviderChain

from .status import ProviderStatus, StatusListener

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProviderOperation = Callable[[PriceDataProvider], Awaitable[T]]


class ResilientDataService:
    """Multi-provider price data service with failover and health monitoring.

    In chain-failover mode every call walks the provider chain and the
    provider that succeeds becomes the active one. Otherwise calls go to the
    active provider only, guarded by its circuit breaker.

    Example:
        >>> service = ResilientDataService([BinanceProvider(), CoinbaseProvider()])
        >>> async with service:
        ...     price = await service.get_current_price("BTCUSDT")
        ...     statuses = service.get_provider_statuses()
    """

    def __init__(
        self,
        providers: Iterable[PriceDataProvider],
        config: DataServiceConfig | None = None,
        *,
        metrics: MetricsService | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the service.

        Args:
            providers: Upstream providers; ordered by priority internally
            config: Failover and health settings
            metrics: Optional metrics sink shared with breakers and chain
            clock: Monotonic clock for the circuit breakers
        """
        self.config = config or DataServiceConfig()
        self._metrics = metrics
        self._providers: list[PriceDataProvider] = sorted(providers, key=lambda p: p.priority)
        self._chain = ProviderChain(
            default_timeout_seconds=self.config.operation_timeout_seconds,
            health_check_timeout_seconds=self.config.health_check_timeout_seconds,
            metrics=metrics,
        )
        self._breakers: dict[str, CircuitBreaker] = {}
        self._statuses: dict[str, ProviderStatus] = {}
        self._listeners: list[StatusListener] = []
        self._live: dict[str, list[tuple[PriceDataProvider, PriceCallback]]] = {}
        self._active: PriceDataProvider | None = None
        self._health_task: asyncio.Task[None] | None = None

        now = datetime.now(timezone.utc)
        for provider in self._providers:
            self._chain.add_provider(provider)
            if self.config.enable_circuit_breaker:
                self._breakers[provider.name] = CircuitBreaker(
                    provider.name,
                    self.config.circuit_breaker,
                    clock=clock,
                    metrics=metrics,
                )
            self._statuses[provider.name] = ProviderStatus(
                provider_id=provider.name,
                priority=provider.priority,
                is_healthy=True,
                is_active=False,
                last_check=now,
            )
            self._refresh_circuit_status(provider.name)

        if self._providers:
            self._set_active(self._providers[0], notify=False)
        else:
            logger.warning("ResilientDataService: no providers configured")

        logger.info(
            "ResilientDataService: initialized with %d providers (chain failover %s, circuit breaker %s)",
            len(self._providers),
            "on" if self.config.enable_chain_failover else "off",
            "on" if self.config.enable_circuit_breaker else "off",
        )

    # -- Lifecycle -------------------------------------------------------------

    async def __aenter__(self) -> "ResilientDataService":
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.destroy()

    async def start(self) -> None:
        """Start the background health sweep."""
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.create_task(
            self._health_loop(), name="pricewatch-health-sweep"
        )
        logger.info(
            "ResilientDataService: health monitoring started (%.1fs interval)",
            self.config.health_check_interval_seconds,
        )

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.health_check_interval_seconds)
            try:
                await self.perform_health_check()
            except Exception:
                logger.exception("ResilientDataService: health sweep failed")

    async def destroy(self) -> None:
        """Stop background work and release providers, breakers and listeners."""
        logger.info("ResilientDataService: shutting down")
        if self._health_task is not None:
            self._health_task.cancel()
            try:
                await self._health_task
            except asyncio.CancelledError:
                pass
            self._health_task = None

        for provider in self._providers:
            try:
                await provider.destroy()
            except Exception:
                logger.exception("ResilientDataService: failed to destroy provider %s", provider.name)

        self._providers = []
        self._active = None
        self._statuses.clear()
        self._breakers.clear()
        self._chain.clear()
        self._listeners.clear()
        self._live.clear()

    # -- Data access -----------------------------------------------------------

    async def get_current_price(self, symbol: str) -> PriceData:
        """Current price for ``symbol``.

        Raises:
            ChainExhaustedError: Chain mode, when every provider failed or was skipped
            CircuitOpenError: Fast-path mode, when the active provider's circuit is open
            NoProviderAvailableError: Fast-path mode, when no provider is active
        """
        return await self._execute(
            "get_current_price", lambda provider: provider.get_current_price(symbol)
        )

    async def get_historical_data(
        self, symbol: str, interval: str, limit: int = 100
    ) -> HistoricalData:
        """Candle history for ``symbol``; same failure modes as ``get_current_price``."""
        return await self._execute(
            "get_historical_data",
            lambda provider: provider.get_historical_data(symbol, interval, limit),
        )

    async def get_extended_data(
        self, symbol: str, options: dict[str, Any] | None = None
    ) -> ExtendedPriceData:
        """Extended multi-window data.

        In chain-failover mode every provider in the chain is eligible; a
        provider without the capability serves data synthesized from its
        current price. In fast-path mode the active provider serves, falling
        back to ``get_current_price`` when it lacks the capability.
        """
        if self.config.enable_chain_failover:

            async def extended(provider: PriceDataProvider) -> ExtendedPriceData:
                if provider.supports_extended_data:
                    return await provider.get_extended_data(symbol, options)
                return ExtendedPriceData.from_price_data(await provider.get_current_price(symbol))

            return await self._execute_with_chain("get_extended_data", extended)

        provider = self._active
        if provider is None:
            raise NoProviderAvailableError("get_extended_data")

        if provider.supports_extended_data:
            return await self._execute_with_provider(
                provider,
                "get_extended_data",
                lambda p: p.get_extended_data(symbol, options),
            )

        logger.debug(
            "ResilientDataService: %s lacks extended data, synthesizing from price", provider.name
        )
        basic = await self.get_current_price(symbol)
        return ExtendedPriceData.from_price_data(basic)

    async def _execute(self, operation_name: str, operation: ProviderOperation[T]) -> T:
        if self.config.enable_chain_failover:
            return await self._execute_with_chain(operation_name, operation)
        provider = self._active
        if provider is None:
            raise NoProviderAvailableError(operation_name)
        return await self._execute_with_provider(provider, operation_name, operation)

    async def _execute_with_chain(self, operation_name: str, operation: ProviderOperation[T]) -> T:
        try:
            outcome = await self._chain.execute(
                operation_name,
                operation,
                max_attempts=self.config.max_provider_attempts,
                skip_unhealthy_providers=True,
                timeout_seconds=self.config.operation_timeout_seconds,
            )
        except ChainExhaustedError as exc:
            for provider_id in exc.failed_providers:
                self._update_status(provider_id, healthy=False, notify=False)
            self._notify_status_change()
            raise

        for provider_id in outcome.failed_providers:
            self._update_status(provider_id, healthy=False, notify=False)
        self._update_status(
            outcome.provider_id,
            healthy=True,
            response_time=outcome.response_time_seconds,
            notify=False,
        )
        winner = self._chain.get_provider(outcome.provider_id)
        if winner is not None:
            self._set_active(winner, notify=False)
        self._notify_status_change()

        logger.debug(
            "ResilientDataService: %s succeeded with %s after %d attempt(s)",
            operation_name,
            outcome.provider_id,
            outcome.attempts,
        )
        return outcome.result

    async def _execute_with_provider(
        self,
        provider: PriceDataProvider,
        operation_name: str,
        operation: ProviderOperation[T],
    ) -> T:
        provider_id = provider.name
        timeout = self.config.operation_timeout_seconds
        breaker = self._breakers.get(provider_id)

        def call() -> Awaitable[T]:
            return asyncio.wait_for(operation(provider), timeout=timeout)

        started = time.perf_counter()
        try:
            if breaker is not None:
                result = await breaker.execute(call)
            else:
                result = await call()
        except CircuitOpenError as exc:
            logger.warning("ResilientDataService: %s", exc)
            self._update_status(provider_id)
            raise
        except Exception as exc:
            logger.warning(
                "ResilientDataService: %s failed with %s: %s", operation_name, provider_id, exc
            )
            self._update_status(provider_id, healthy=False)
            raise

        elapsed = time.perf_counter() - started
        if self._metrics is not None:
            self._metrics.observe_provider_latency(provider_id, operation_name, elapsed)
        self._update_status(provider_id, healthy=True, response_time=elapsed)
        return result

    # -- Provider management ---------------------------------------------------

    async def switch_provider(self, provider_id: str) -> bool:
        """Make ``provider_id`` the active provider if it passes a health check."""
        provider = self._chain.get_provider(provider_id)
        if provider is None:
            logger.error("ResilientDataService: provider %s not found", provider_id)
            return False

        started = time.perf_counter()
        healthy = await self._check_health(provider)
        if not healthy:
            logger.error("ResilientDataService: provider %s is not healthy, not switching", provider_id)
            self._update_status(provider_id, healthy=False)
            return False

        self._update_status(
            provider_id, healthy=True, response_time=time.perf_counter() - started, notify=False
        )
        self._set_active(provider, notify=False)
        self._notify_status_change()
        logger.info("ResilientDataService: switched to provider %s", provider_id)
        return True

    def force_circuit_breaker(self, provider_id: str, state: Literal["open", "closed"]) -> bool:
        """Administratively open or close a provider's circuit."""
        breaker = self._breakers.get(provider_id)
        if breaker is None:
            return False
        if state == "open":
            breaker.force_open()
        elif state == "closed":
            breaker.force_close()
        else:
            raise ValueError(f"Unknown circuit state: {state}")
        self._update_status(provider_id)
        return True

    def get_active_provider(self) -> PriceDataProvider | None:
        return self._active

    def get_available_providers(self) -> list[PriceDataProvider]:
        return list(self._providers)

    def get_circuit_breaker(self, provider_id: str) -> CircuitBreaker | None:
        return self._breakers.get(provider_id)

    # -- Health ----------------------------------------------------------------

    async def _check_health(self, provider: PriceDataProvider) -> bool:
        try:
            return bool(
                await asyncio.wait_for(
                    provider.health_check(),
                    timeout=self.config.health_check_timeout_seconds,
                )
            )
        except asyncio.TimeoutError:
            logger.warning("ResilientDataService: health check timed out for %s", provider.name)
            return False
        except Exception as exc:
            logger.warning("ResilientDataService: health check failed for %s: %s", provider.name, exc)
            return False

    async def perform_health_check(self) -> dict[str, bool]:
        """Health-check every provider concurrently and publish the results.

        Never raises; a failing or hung check counts as unhealthy.
        """
        providers = list(self._providers)

        async def check(provider: PriceDataProvider) -> tuple[str, bool, float]:
            started = time.perf_counter()
            healthy = await self._check_health(provider)
            return provider.name, healthy, time.perf_counter() - started

        outcomes = await asyncio.gather(*(check(p) for p in providers))

        results: dict[str, bool] = {}
        for provider_id, healthy, elapsed in outcomes:
            results[provider_id] = healthy
            self._update_status(
                provider_id,
                healthy=healthy,
                response_time=elapsed if healthy else 0.0,
                notify=False,
            )
            if self._metrics is not None:
                self._metrics.record_health_check(provider_id, healthy)

        if outcomes:
            self._notify_status_change()
        logger.info(
            "ResilientDataService: health check results: %s",
            ", ".join(
                f"{pid}: {'ok' if ok else 'down'} ({elapsed * 1000:.0f}ms)"
                for pid, ok, elapsed in outcomes
            ),
        )
        return results

    async def get_chain_status(self) -> list[ChainNodeStatus]:
        """Health of every chain position, in chain order."""
        return await self._chain.get_chain_status(self.config.health_check_timeout_seconds)

    # -- Status ----------------------------------------------------------------

    def get_provider_statuses(self) -> dict[str, ProviderStatus]:
        """Snapshot of every provider status, keyed by provider id."""
        return {pid: status.snapshot() for pid, status in self._statuses.items()}

    def _update_status(
        self,
        provider_id: str,
        healthy: bool | None = None,
        response_time: float = 0.0,
        notify: bool = True,
    ) -> None:
        status = self._statuses.get(provider_id)
        if status is None:
            return

        if healthy is not None:
            status.is_healthy = healthy
            status.last_check = datetime.now(timezone.utc)
            status.response_time_seconds = response_time
            if healthy:
                status.consecutive_failures = 0
            else:
                status.consecutive_failures += 1

        self._refresh_circuit_status(provider_id)
        if notify:
            self._notify_status_change()

    def _refresh_circuit_status(self, provider_id: str) -> None:
        breaker = self._breakers.get(provider_id)
        status = self._statuses.get(provider_id)
        if breaker is None or status is None:
            return
        status.circuit_stats = breaker.get_stats()
        status.circuit_state = status.circuit_stats.state

    def _set_active(self, provider: PriceDataProvider, notify: bool = True) -> None:
        previous = self._active
        self._active = provider
        for provider_id, status in self._statuses.items():
            status.is_active = provider_id == provider.name

        if previous is None or previous.name != provider.name:
            logger.info(
                "ResilientDataService: active provider changed %s -> %s",
                previous.name if previous else None,
                provider.name,
            )
            if self._metrics is not None:
                self._metrics.set_active_provider(provider.name, list(self._statuses))
        if notify:
            self._notify_status_change()

    # -- Listeners -------------------------------------------------------------

    def on_status_change(self, listener: StatusListener) -> StatusListener:
        """Register a listener; returns it as the handle for removal."""
        self._listeners.append(listener)
        return listener

    def remove_status_change_listener(self, listener: StatusListener) -> bool:
        """Unregister a listener. Returns False if it was not registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _notify_status_change(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.get_provider_statuses())
            except Exception:
                logger.exception("ResilientDataService: status change listener error")

    # -- Live updates ----------------------------------------------------------

    def subscribe_to_real_time(self, symbol: str, callback: PriceCallback) -> bool:
        """Subscribe ``callback`` to live prices through the active provider.

        Returns:
            False if there is no active provider
        """
        provider = self._active
        if provider is None:
            logger.warning("ResilientDataService: no active provider for live subscription")
            return False
        provider.subscribe_to_real_time(symbol, callback)
        self._live.setdefault(symbol, []).append((provider, callback))
        logger.info(
            "ResilientDataService: subscribed to live updates for %s via %s", symbol, provider.name
        )
        return True

    def unsubscribe_from_real_time(self, symbol: str, callback: PriceCallback | None = None) -> bool:
        """Drop one live registration for ``symbol`` on the provider that holds it.

        Removes ``callback``'s registration if given, otherwise the most recent one.
        """
        registrations = self._live.get(symbol)
        if not registrations:
            return False

        index = len(registrations) - 1
        if callback is not None:
            matches = [i for i, (_, cb) in enumerate(registrations) if cb is callback]
            if not matches:
                return False
            index = matches[-1]

        provider, registered = registrations.pop(index)
        if not registrations:
            del self._live[symbol]
        provider.unsubscribe_from_real_time(symbol, registered)
        return True


def build_data_service(
    config: AppConfig,
    *,
    factory: ProviderFactory | None = None,
    metrics: MetricsService | None = None,
) -> ResilientDataService:
    """Wire providers and metrics from configuration into a data service."""
    factory = factory or ProviderFactory()
    providers = factory.create_from_config(config.providers)
    if metrics is None:
        metrics = MetricsService(config.metrics)
    return ResilientDataService(providers, config.service, metrics=metrics)
