"""Prometheus metrics for the provider access layer.

Tracks circuit breaker state and transitions, chain attempts and
exhaustion, provider latency and the currently active provider.

Example:
    >>> from pricewatch_engine.monitoring.metrics import MetricsService
    >>>
    >>> metrics = MetricsService()
    >>> metrics.start_server()
    >>>
    >>> metrics.record_chain_attempt("binance", "get_current_price", "success")
    >>> metrics.observe_provider_latency("binance", "get_current_price", 0.182)
"""

import logging
import threading

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

from pricewatch_engine.config.models import MetricsConfig

logger = logging.getLogger(__name__)

# Gauge value per circuit state
_STATE_VALUES = {"CLOSED": 0, "HALF_OPEN": 1, "OPEN": 2}


class MetricsService:
    """Prometheus metrics service for provider monitoring.

    Each instance owns its own ``CollectorRegistry`` so several services
    can coexist in one process (tests, multiple dashboards).

    Example:
        >>> metrics = MetricsService(MetricsConfig(port=9100))
        >>> metrics.set_breaker_state("coinbase", "OPEN")
    """

    def __init__(
        self,
        config: MetricsConfig | None = None,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """Initialize metrics service.

        Args:
            config: Metrics configuration (uses defaults if not provided)
            registry: Registry to register collectors in (a fresh one if not provided)
        """
        self.config = config or MetricsConfig()
        self.registry = registry or CollectorRegistry()
        self._server_started = False
        self._lock = threading.Lock()

        self._breaker_state: Gauge | None = None
        self._breaker_transitions: Counter | None = None
        self._breaker_rejections: Counter | None = None
        self._chain_attempts: Counter | None = None
        self._chain_exhausted: Counter | None = None
        self._provider_latency: Histogram | None = None
        self._active_provider: Gauge | None = None
        self._health_checks: Counter | None = None

        if self.config.enabled:
            self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        """Initialize Prometheus metrics objects."""
        prefix = self.config.prefix
        registry = self.registry

        self._breaker_state = Gauge(
            f"{prefix}_circuit_breaker_state",
            "Circuit state per provider (0=closed, 1=half_open, 2=open)",
            ["provider"],
            registry=registry,
        )

        self._breaker_transitions = Counter(
            f"{prefix}_circuit_breaker_transitions_total",
            "Circuit state transitions",
            ["provider", "from_state", "to_state"],
            registry=registry,
        )

        self._breaker_rejections = Counter(
            f"{prefix}_circuit_breaker_rejections_total",
            "Calls rejected without being attempted because the circuit was open",
            ["provider"],
            registry=registry,
        )

        self._chain_attempts = Counter(
            f"{prefix}_chain_attempts_total",
            "Provider chain attempts by outcome",
            ["provider", "operation", "outcome"],
            registry=registry,
        )

        self._chain_exhausted = Counter(
            f"{prefix}_chain_exhausted_total",
            "Chain executions where every provider failed or was skipped",
            ["operation"],
            registry=registry,
        )

        self._provider_latency = Histogram(
            f"{prefix}_provider_latency_seconds",
            "Latency of successful provider operations",
            ["provider", "operation"],
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        self._active_provider = Gauge(
            f"{prefix}_active_provider",
            "Whether the provider is currently active (0=inactive, 1=active)",
            ["provider"],
            registry=registry,
        )

        self._health_checks = Counter(
            f"{prefix}_health_checks_total",
            "Health check results per provider",
            ["provider", "healthy"],
            registry=registry,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self) -> bool:
        """Start the Prometheus HTTP server.

        Returns:
            True if server started successfully, False otherwise
        """
        if not self.config.enabled:
            logger.info("Metrics disabled, server not started")
            return False

        with self._lock:
            if self._server_started:
                logger.warning("Metrics server already started")
                return True

            try:
                start_http_server(self.config.port, registry=self.registry)
                self._server_started = True
                logger.info("Prometheus metrics server started on port %d", self.config.port)
                return True
            except OSError as e:
                logger.error("Failed to start metrics server: %s", e)
                return False

    @property
    def is_enabled(self) -> bool:
        """Check if metrics collection is enabled."""
        return self.config.enabled

    # --- Circuit breaker ---

    def set_breaker_state(self, provider: str, state: str) -> None:
        """Update the circuit state gauge.

        Args:
            provider: Provider identifier
            state: Circuit state name ("CLOSED", "OPEN", "HALF_OPEN")
        """
        if not self.config.enabled or self._breaker_state is None:
            return
        self._breaker_state.labels(provider=provider).set(_STATE_VALUES.get(state, 0))

    def record_breaker_transition(self, provider: str, from_state: str, to_state: str) -> None:
        """Record a circuit state transition and update the state gauge."""
        if not self.config.enabled or self._breaker_transitions is None:
            return
        self._breaker_transitions.labels(
            provider=provider, from_state=from_state, to_state=to_state
        ).inc()
        self.set_breaker_state(provider, to_state)

    def record_breaker_rejection(self, provider: str) -> None:
        """Record a fail-fast rejection."""
        if not self.config.enabled or self._breaker_rejections is None:
            return
        self._breaker_rejections.labels(provider=provider).inc()

    # --- Provider chain ---

    def record_chain_attempt(self, provider: str, operation: str, outcome: str) -> None:
        """Record one provider step within a chain execution.

        Args:
            provider: Provider identifier
            operation: Operation name (e.g. "get_current_price")
            outcome: "success", "failure", "timeout" or "skipped"
        """
        if not self.config.enabled or self._chain_attempts is None:
            return
        self._chain_attempts.labels(provider=provider, operation=operation, outcome=outcome).inc()

    def record_chain_exhausted(self, operation: str) -> None:
        """Record a chain execution that produced no result."""
        if not self.config.enabled or self._chain_exhausted is None:
            return
        self._chain_exhausted.labels(operation=operation).inc()

    def observe_provider_latency(self, provider: str, operation: str, seconds: float) -> None:
        """Observe latency of a successful provider operation."""
        if not self.config.enabled or self._provider_latency is None:
            return
        self._provider_latency.labels(provider=provider, operation=operation).observe(seconds)

    # --- Data service ---

    def set_active_provider(self, provider: str, providers: list[str]) -> None:
        """Mark ``provider`` active and every other known provider inactive."""
        if not self.config.enabled or self._active_provider is None:
            return
        for name in providers:
            self._active_provider.labels(provider=name).set(1 if name == provider else 0)

    def record_health_check(self, provider: str, healthy: bool) -> None:
        """Record a health check result."""
        if not self.config.enabled or self._health_checks is None:
            return
        self._health_checks.labels(provider=provider, healthy=str(healthy).lower()).inc()
