"""Pydantic configuration models with type safety and validation."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

ProviderType = Literal["binance", "coinbase", "stub"]


class CircuitBreakerConfig(BaseModel):
    """Failure detection thresholds for a per-provider circuit breaker."""

    model_config = ConfigDict(frozen=True)

    failure_threshold: int = Field(
        default=5,
        ge=0,
        description="Failures within the monitoring window before the circuit opens (0 disables opening)",
    )
    recovery_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds after the last failure before a trial call is allowed",
    )
    success_threshold: int = Field(
        default=3,
        ge=1,
        description="Consecutive HALF_OPEN successes required to close the circuit",
    )
    monitoring_window_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="Sliding window in seconds for counting failures",
    )


class DataServiceConfig(BaseModel):
    """Failover and health monitoring settings for the data service."""

    enable_circuit_breaker: bool = Field(
        default=True,
        description="Guard fast-path calls with a per-provider circuit breaker",
    )
    enable_chain_failover: bool = Field(
        default=True,
        description="Route price and history calls through the provider chain",
    )
    health_check_interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Interval between background health sweeps",
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        description="Upper bound for a single provider health check",
    )
    max_provider_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum providers attempted per chain call (skips not counted)",
    )
    operation_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Per-attempt timeout for provider operations",
    )
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    @model_validator(mode="after")
    def _health_timeout_within_interval(self) -> "DataServiceConfig":
        if self.health_check_timeout_seconds > self.health_check_interval_seconds:
            raise ValueError(
                f"health_check_timeout_seconds ({self.health_check_timeout_seconds}) must not "
                f"exceed health_check_interval_seconds ({self.health_check_interval_seconds})"
            )
        return self


class ProviderSettings(BaseModel):
    """Settings for one upstream provider."""

    type: ProviderType = Field(description="Provider implementation to construct")
    enabled: bool = Field(default=True, description="Include this provider in the chain")
    priority: int | None = Field(
        default=None,
        ge=0,
        description="Override the provider's built-in priority (lower is tried first)",
    )
    base_url: str | None = Field(
        default=None,
        description="Override the provider's REST base URL",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="HTTP request timeout for this provider",
    )
    live_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0.0,
        description="Polling interval for live price subscriptions",
    )


class MetricsConfig(BaseModel):
    """Prometheus metrics settings."""

    enabled: bool = Field(default=True, description="Collect Prometheus metrics")
    port: int = Field(default=9090, ge=1, le=65535, description="HTTP port for scraping")
    prefix: str = Field(default="pricewatch", min_length=1, description="Metric name prefix")


def _default_providers() -> list[ProviderSettings]:
    return [ProviderSettings(type="binance"), ProviderSettings(type="coinbase")]


class AppConfig(BaseModel):
    """Root configuration model."""

    service: DataServiceConfig = Field(default_factory=DataServiceConfig)
    providers: list[ProviderSettings] = Field(default_factory=_default_providers)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="after")
    def _unique_provider_types(self) -> "AppConfig":
        types = [p.type for p in self.providers]
        duplicates = sorted({t for t in types if types.count(t) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider entries: {', '.join(duplicates)}")
        return self

    @property
    def enabled_providers(self) -> list[ProviderSettings]:
        """Provider settings with ``enabled`` set."""
        return [p for p in self.providers if p.enabled]
