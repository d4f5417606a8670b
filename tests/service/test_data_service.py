"""Tests for ResilientDataService."""

import asyncio
from unittest.mock import MagicMock

import pytest

from pricewatch_engine.config.models import (
    AppConfig,
    CircuitBreakerConfig,
    DataServiceConfig,
    MetricsConfig,
)
from pricewatch_engine.errors import (
    ChainExhaustedError,
    CircuitOpenError,
    NoProviderAvailableError,
    ProviderError,
)
from pricewatch_engine.models import PriceData
from pricewatch_engine.providers.stub_provider import StubPriceDataProvider
from pricewatch_engine.resilience.circuit_breaker import CircuitState
from pricewatch_engine.service.data_service import ResilientDataService, build_data_service
from pricewatch_engine.service.status import ProviderStatus


@pytest.fixture
def primary() -> StubPriceDataProvider:
    return StubPriceDataProvider("primary", priority=1, base_price=100.0)


@pytest.fixture
def secondary() -> StubPriceDataProvider:
    return StubPriceDataProvider("secondary", priority=2, base_price=200.0)


@pytest.fixture
def chain_service(primary, secondary) -> ResilientDataService:
    """Service in chain-failover mode; providers passed out of priority order."""
    config = DataServiceConfig(operation_timeout_seconds=1.0, health_check_timeout_seconds=1.0)
    return ResilientDataService([secondary, primary], config)


@pytest.fixture
def fast_service(primary, secondary) -> ResilientDataService:
    """Service in fast-path mode with a two-failure breaker."""
    config = DataServiceConfig(
        enable_chain_failover=False,
        operation_timeout_seconds=0.05,
        health_check_timeout_seconds=0.05,
        circuit_breaker=CircuitBreakerConfig(failure_threshold=2, recovery_timeout_seconds=30.0),
    )
    return ResilientDataService([primary, secondary], config)


def _active_ids(statuses: dict[str, ProviderStatus]) -> list[str]:
    return [pid for pid, status in statuses.items() if status.is_active]


class TestServiceConstruction:
    """Test suite for initial state."""

    def test_highest_priority_provider_is_active(self, chain_service: ResilientDataService):
        """Test providers are ordered by priority and the first is active."""
        assert chain_service.get_active_provider().name == "primary"
        assert [p.name for p in chain_service.get_available_providers()] == [
            "primary",
            "secondary",
        ]

    def test_statuses_seeded(self, chain_service: ResilientDataService):
        """Test every provider starts healthy with a closed circuit."""
        statuses = chain_service.get_provider_statuses()

        assert set(statuses) == {"primary", "secondary"}
        assert all(s.is_healthy for s in statuses.values())
        assert _active_ids(statuses) == ["primary"]
        assert statuses["secondary"].circuit_state == CircuitState.CLOSED
        assert statuses["secondary"].circuit_stats.total_requests == 0

    def test_statuses_are_snapshots(self, chain_service: ResilientDataService):
        """Test mutating a returned status does not affect the service."""
        chain_service.get_provider_statuses()["primary"].is_healthy = False
        assert chain_service.get_provider_statuses()["primary"].is_healthy is True

    def test_no_breakers_when_disabled(self, primary):
        """Test breakers are only created when enabled."""
        service = ResilientDataService([primary], DataServiceConfig(enable_circuit_breaker=False))
        assert service.get_circuit_breaker("primary") is None
        assert service.get_provider_statuses()["primary"].circuit_state is None

    def test_empty_service(self):
        """Test a service without providers has no active provider."""
        service = ResilientDataService([])
        assert service.get_active_provider() is None
        assert service.get_provider_statuses() == {}

    def test_status_to_dict(self, chain_service: ResilientDataService):
        """Test status serialization."""
        data = chain_service.get_provider_statuses()["primary"].to_dict()
        assert data["provider_id"] == "primary"
        assert data["is_active"] is True
        assert data["circuit_state"] == "CLOSED"
        assert data["circuit_stats"]["uptime"] == 100.0


class TestChainFailoverMode:
    """Test suite for chain-failover data access."""

    @pytest.mark.asyncio
    async def test_primary_serves(self, chain_service: ResilientDataService):
        """Test the active provider serves when healthy."""
        price = await chain_service.get_current_price("BTCUSDT")
        assert price.price == 100.0

    @pytest.mark.asyncio
    async def test_failover_moves_active_provider(
        self, chain_service: ResilientDataService, primary
    ):
        """Test a chain success via another provider makes it active."""
        primary.fail = True

        price = await chain_service.get_current_price("BTCUSDT")

        statuses = chain_service.get_provider_statuses()
        assert price.price == 200.0
        assert chain_service.get_active_provider().name == "secondary"
        assert _active_ids(statuses) == ["secondary"]
        assert statuses["primary"].is_healthy is False
        assert statuses["primary"].consecutive_failures == 1
        assert statuses["secondary"].is_healthy is True

    @pytest.mark.asyncio
    async def test_unhealthy_provider_skipped(
        self, chain_service: ResilientDataService, primary
    ):
        """Test providers failing their health check are skipped."""
        primary.healthy = False

        history = await chain_service.get_historical_data("BTCUSDT", "1h", limit=3)

        assert len(history.candles) == 3
        assert "get_historical_data" not in primary.calls
        assert chain_service.get_active_provider().name == "secondary"

    @pytest.mark.asyncio
    async def test_exhaustion_surfaces_chain_error(
        self, chain_service: ResilientDataService, primary, secondary
    ):
        """Test exhaustion raises ChainExhaustedError and marks providers unhealthy."""
        primary.fail = True
        secondary.fail = True
        snapshots = []
        chain_service.on_status_change(snapshots.append)

        with pytest.raises(ChainExhaustedError) as exc_info:
            await chain_service.get_current_price("BTCUSDT")

        assert exc_info.value.failed_providers == ("primary", "secondary")
        assert len(snapshots) == 1
        assert not any(s.is_healthy for s in snapshots[0].values())

    @pytest.mark.asyncio
    async def test_max_provider_attempts(self, primary, secondary):
        """Test the configured attempt bound is applied."""
        primary.fail = True
        service = ResilientDataService(
            [primary, secondary], DataServiceConfig(max_provider_attempts=1)
        )

        with pytest.raises(ChainExhaustedError) as exc_info:
            await service.get_current_price("BTCUSDT")

        assert exc_info.value.attempts == 1
        assert secondary.calls.count("get_current_price") == 0

    @pytest.mark.asyncio
    async def test_empty_chain(self):
        """Test a chain service without providers is exhausted immediately."""
        with pytest.raises(ChainExhaustedError):
            await ResilientDataService([]).get_current_price("BTCUSDT")

    @pytest.mark.asyncio
    async def test_winner_latency_excludes_earlier_attempts(self, primary, secondary):
        """Test the serving provider's response time covers only its own attempt."""
        primary.latency_seconds = 5.0
        config = DataServiceConfig(
            operation_timeout_seconds=0.2, health_check_timeout_seconds=0.2
        )
        service = ResilientDataService([primary, secondary], config)

        await service.get_current_price("BTCUSDT")

        status = service.get_provider_statuses()["secondary"]
        assert status.is_active is True
        assert status.response_time_seconds < 0.1


class TestFastPathMode:
    """Test suite for single-provider access guarded by a breaker."""

    @pytest.mark.asyncio
    async def test_active_provider_serves(self, fast_service: ResilientDataService, secondary):
        """Test calls go only to the active provider."""
        price = await fast_service.get_current_price("BTCUSDT")

        assert price.price == 100.0
        assert secondary.calls == []
        status = fast_service.get_provider_statuses()["primary"]
        assert status.circuit_stats.total_successes == 1

    @pytest.mark.asyncio
    async def test_failure_propagates_and_marks_unhealthy(
        self, fast_service: ResilientDataService, primary
    ):
        """Test provider errors propagate without failover."""
        primary.fail = True

        with pytest.raises(ProviderError):
            await fast_service.get_current_price("BTCUSDT")

        status = fast_service.get_provider_statuses()["primary"]
        assert status.is_healthy is False
        assert status.is_active is True
        assert status.circuit_stats.failure_count == 1

    @pytest.mark.asyncio
    async def test_breaker_opens_and_fails_fast(
        self, fast_service: ResilientDataService, primary
    ):
        """Test repeated failures open the circuit and later calls are not attempted."""
        primary.fail = True
        for _ in range(2):
            with pytest.raises(ProviderError):
                await fast_service.get_current_price("BTCUSDT")
        calls_before = len(primary.calls)

        with pytest.raises(CircuitOpenError):
            await fast_service.get_historical_data("BTCUSDT", "1h")

        assert len(primary.calls) == calls_before
        assert fast_service.get_provider_statuses()["primary"].circuit_state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_timeout_counts_as_breaker_failure(
        self, fast_service: ResilientDataService, primary
    ):
        """Test a slow call is cancelled at the timeout and recorded as a failure."""
        primary.latency_seconds = 1.0

        with pytest.raises(asyncio.TimeoutError):
            await fast_service.get_current_price("BTCUSDT")

        stats = fast_service.get_circuit_breaker("primary").get_stats()
        assert stats.failure_count == 1

    @pytest.mark.asyncio
    async def test_without_breaker(self, primary):
        """Test fast path works with breakers disabled."""
        service = ResilientDataService(
            [primary],
            DataServiceConfig(enable_chain_failover=False, enable_circuit_breaker=False),
        )
        price = await service.get_current_price("BTCUSDT")
        assert price.price == 100.0

    @pytest.mark.asyncio
    async def test_no_active_provider(self):
        """Test fast path without providers raises NoProviderAvailableError."""
        service = ResilientDataService([], DataServiceConfig(enable_chain_failover=False))
        with pytest.raises(NoProviderAvailableError):
            await service.get_current_price("BTCUSDT")

    @pytest.mark.asyncio
    async def test_metrics_latency_recorded(self, primary):
        """Test successful fast-path calls report latency."""
        metrics = MagicMock()
        service = ResilientDataService(
            [primary], DataServiceConfig(enable_chain_failover=False), metrics=metrics
        )

        await service.get_current_price("BTCUSDT")

        provider_id, operation, seconds = metrics.observe_provider_latency.call_args.args
        assert (provider_id, operation) == ("primary", "get_current_price")
        assert seconds >= 0.0


class TestExtendedData:
    """Test suite for extended data with capability fallback."""

    @pytest.mark.asyncio
    async def test_synthesized_when_capability_missing(
        self, chain_service: ResilientDataService, primary
    ):
        """Test flat windows are synthesized from the basic price."""
        data = await chain_service.get_extended_data("BTCUSDT")

        assert data.price == 100.0
        assert all(w.amplitude == 0.0 for w in data.windows.values())
        assert data.volume_per_hour == data.volume_24h / 24
        assert "get_extended_data" not in primary.calls

    @pytest.mark.asyncio
    async def test_provider_served_when_capable(self):
        """Test a capable active provider serves extended data through its breaker."""
        capable = StubPriceDataProvider("capable", priority=1, supports_extended_data=True)
        service = ResilientDataService([capable], DataServiceConfig(enable_chain_failover=False))

        await service.get_extended_data("BTCUSDT")

        assert "get_extended_data" in capable.calls
        stats = service.get_circuit_breaker("capable").get_stats()
        assert stats.total_successes == 1

    @pytest.mark.asyncio
    async def test_chain_mode_fails_over_from_capable_provider(self, secondary):
        """Test a failing capable provider falls over to the next provider in the chain."""
        capable = StubPriceDataProvider(
            "capable", priority=1, supports_extended_data=True, fail=True
        )
        service = ResilientDataService([capable, secondary])

        data = await service.get_extended_data("BTCUSDT")

        assert data.price == 200.0
        assert set(data.windows) == {"10m", "1h", "4h", "1d", "1w"}
        assert "get_current_price" in secondary.calls
        assert service.get_active_provider().name == "secondary"
        assert service.get_provider_statuses()["capable"].is_healthy is False

    @pytest.mark.asyncio
    async def test_chain_mode_exhaustion(self, primary, secondary):
        """Test chain mode surfaces only ChainExhaustedError for extended data."""
        primary.supports_extended_data = True
        primary.fail = True
        secondary.fail = True
        service = ResilientDataService([primary, secondary])

        with pytest.raises(ChainExhaustedError) as exc_info:
            await service.get_extended_data("BTCUSDT")

        assert exc_info.value.operation_name == "get_extended_data"
        assert exc_info.value.failed_providers == ("primary", "secondary")

    @pytest.mark.asyncio
    async def test_no_active_provider(self):
        """Test fast-path extended data without providers fails cleanly."""
        service = ResilientDataService([], DataServiceConfig(enable_chain_failover=False))
        with pytest.raises(NoProviderAvailableError):
            await service.get_extended_data("BTCUSDT")


class TestProviderControl:
    """Test suite for switching providers and forcing breakers."""

    @pytest.mark.asyncio
    async def test_switch_to_healthy_provider(self, chain_service: ResilientDataService):
        """Test switching to a healthy provider."""
        assert await chain_service.switch_provider("secondary") is True
        assert chain_service.get_active_provider().name == "secondary"
        assert _active_ids(chain_service.get_provider_statuses()) == ["secondary"]

    @pytest.mark.asyncio
    async def test_switch_to_unknown_provider(self, chain_service: ResilientDataService):
        """Test unknown provider ids are refused."""
        assert await chain_service.switch_provider("kraken") is False
        assert chain_service.get_active_provider().name == "primary"

    @pytest.mark.asyncio
    async def test_switch_to_unhealthy_provider(
        self, chain_service: ResilientDataService, secondary
    ):
        """Test unhealthy targets are refused."""
        secondary.healthy = False

        assert await chain_service.switch_provider("secondary") is False
        assert chain_service.get_active_provider().name == "primary"
        assert chain_service.get_provider_statuses()["secondary"].is_healthy is False

    @pytest.mark.asyncio
    async def test_switch_with_hung_health_check(
        self, fast_service: ResilientDataService, secondary
    ):
        """Test a health check that never answers is bounded and refused."""
        secondary.health_latency_seconds = 10.0
        assert await fast_service.switch_provider("secondary") is False

    def test_force_circuit_breaker(self, chain_service: ResilientDataService):
        """Test forcing circuits open and closed."""
        assert chain_service.force_circuit_breaker("primary", "open") is True
        assert chain_service.get_provider_statuses()["primary"].circuit_state == CircuitState.OPEN

        assert chain_service.force_circuit_breaker("primary", "closed") is True
        assert (
            chain_service.get_provider_statuses()["primary"].circuit_state == CircuitState.CLOSED
        )

    def test_force_circuit_breaker_unknown(self, chain_service: ResilientDataService):
        """Test unknown providers are reported."""
        assert chain_service.force_circuit_breaker("kraken", "open") is False

    @pytest.mark.asyncio
    async def test_forced_open_blocks_fast_path(
        self, fast_service: ResilientDataService, primary
    ):
        """Test a quarantined active provider fails fast."""
        fast_service.force_circuit_breaker("primary", "open")

        with pytest.raises(CircuitOpenError):
            await fast_service.get_current_price("BTCUSDT")
        assert primary.calls == []


class TestHealthMonitoring:
    """Test suite for health sweeps and status listeners."""

    @pytest.mark.asyncio
    async def test_perform_health_check(self, chain_service: ResilientDataService, secondary):
        """Test results are returned and statuses updated."""
        secondary.healthy = False

        results = await chain_service.perform_health_check()

        assert results == {"primary": True, "secondary": False}
        statuses = chain_service.get_provider_statuses()
        assert statuses["secondary"].is_healthy is False
        assert statuses["secondary"].consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_health_check_notifies_once(self, chain_service: ResilientDataService):
        """Test one sweep produces one notification with a full snapshot."""
        snapshots = []
        chain_service.on_status_change(snapshots.append)

        await chain_service.perform_health_check()

        assert len(snapshots) == 1
        assert set(snapshots[0]) == {"primary", "secondary"}

    @pytest.mark.asyncio
    async def test_hung_health_check_is_bounded(self, fast_service: ResilientDataService, primary):
        """Test a hung health check is reported unhealthy instead of blocking."""
        primary.health_latency_seconds = 10.0

        results = await asyncio.wait_for(fast_service.perform_health_check(), timeout=1.0)

        assert results == {"primary": False, "secondary": True}

    @pytest.mark.asyncio
    async def test_health_check_records_metrics(self, primary):
        """Test sweep results reach the metrics sink."""
        metrics = MagicMock()
        service = ResilientDataService([primary], metrics=metrics)

        await service.perform_health_check()

        metrics.record_health_check.assert_called_once_with("primary", True)

    @pytest.mark.asyncio
    async def test_listener_failure_is_isolated(self, chain_service: ResilientDataService):
        """Test a raising listener does not block later listeners."""
        received = []

        def broken(statuses):
            raise RuntimeError("listener bug")

        chain_service.on_status_change(broken)
        chain_service.on_status_change(received.append)

        await chain_service.perform_health_check()
        await chain_service.perform_health_check()

        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_remove_listener(self, chain_service: ResilientDataService):
        """Test removed listeners stop receiving updates."""
        received = []
        handle = chain_service.on_status_change(received.append)

        assert chain_service.remove_status_change_listener(handle) is True
        assert chain_service.remove_status_change_listener(handle) is False

        await chain_service.perform_health_check()
        assert received == []

    @pytest.mark.asyncio
    async def test_listeners_get_independent_snapshots(self, chain_service: ResilientDataService):
        """Test one listener mutating its snapshot does not leak into another's."""
        seen = []

        def mutate(statuses):
            statuses["primary"].is_healthy = False

        chain_service.on_status_change(mutate)
        chain_service.on_status_change(seen.append)

        await chain_service.perform_health_check()

        assert seen[0]["primary"].is_healthy is True

    @pytest.mark.asyncio
    async def test_get_chain_status(self, chain_service: ResilientDataService, secondary):
        """Test chain status mirrors provider health in priority order."""
        secondary.healthy = False

        statuses = await chain_service.get_chain_status()

        assert [(s.provider_id, s.is_healthy) for s in statuses] == [
            ("primary", True),
            ("secondary", False),
        ]

    @pytest.mark.asyncio
    async def test_background_sweep(self, primary, secondary):
        """Test start() runs recurring sweeps and destroy() stops them."""
        config = DataServiceConfig(
            health_check_interval_seconds=0.02, health_check_timeout_seconds=0.02
        )
        service = ResilientDataService([primary, secondary], config)
        snapshots = []
        service.on_status_change(snapshots.append)

        await service.start()
        await asyncio.sleep(0.15)
        await service.destroy()
        sweeps = primary.calls.count("health_check")
        await asyncio.sleep(0.05)

        assert len(snapshots) >= 2
        assert sweeps >= 2
        assert primary.calls.count("health_check") == sweeps

    @pytest.mark.asyncio
    async def test_context_manager_destroys(self, primary, secondary):
        """Test async with releases providers and state."""
        async with ResilientDataService([primary, secondary]) as service:
            assert service.get_active_provider() is primary

        assert primary.destroyed is True
        assert secondary.destroyed is True
        assert service.get_active_provider() is None
        assert service.get_provider_statuses() == {}
        assert service.get_available_providers() == []


class TestLiveUpdates:
    """Test suite for live subscriptions through the service."""

    @pytest.mark.asyncio
    async def test_subscribe_via_active_provider(self, chain_service: ResilientDataService, primary):
        """Test subscriptions are routed to the active provider."""
        received: list[PriceData] = []

        assert chain_service.subscribe_to_real_time("BTCUSDT", received.append) is True
        await asyncio.sleep(0.05)

        assert primary.get_subscribed_symbols() == ["BTCUSDT"]
        assert received and received[0].price == 100.0
        await chain_service.destroy()

    @pytest.mark.asyncio
    async def test_unsubscribe_after_switch(
        self, chain_service: ResilientDataService, primary, secondary
    ):
        """Test unsubscribe reaches the provider holding the registration."""
        callback = lambda data: None  # noqa: E731
        chain_service.subscribe_to_real_time("BTCUSDT", callback)
        await chain_service.switch_provider("secondary")

        assert chain_service.unsubscribe_from_real_time("BTCUSDT", callback) is True

        assert primary.get_active_subscriptions() == 0
        assert primary.is_feed_running("BTCUSDT") is False
        assert secondary.get_active_subscriptions() == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown(self, chain_service: ResilientDataService):
        """Test unsubscribing without a registration returns False."""
        assert chain_service.unsubscribe_from_real_time("BTCUSDT") is False

    def test_subscribe_without_provider(self):
        """Test subscribing with no active provider is refused."""
        assert ResilientDataService([]).subscribe_to_real_time("BTCUSDT", print) is False


class TestBuildDataService:
    """Test suite for wiring from configuration."""

    @pytest.mark.asyncio
    async def test_build_from_config(self):
        """Test providers and settings come from AppConfig."""
        config = AppConfig(
            service={"enable_chain_failover": False},
            providers=[{"type": "stub", "priority": 0}, {"type": "binance", "enabled": False}],
            metrics=MetricsConfig(enabled=False),
        )

        service = build_data_service(config)

        assert [p.name for p in service.get_available_providers()] == ["stub"]
        assert service.config.enable_chain_failover is False
        price = await service.get_current_price("BTCUSDT")
        assert price.symbol == "BTCUSDT"
        await service.destroy()
