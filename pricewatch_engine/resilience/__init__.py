"""Fault isolation and failover primitives for provider calls."""

from pricewatch_engine.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerStats,
    CircuitState,
)
from pricewatch_engine.resilience.provider_chain import (
    ChainExecutionResult,
    ChainNodeStatus,
    ProviderChain,
)

__all__ = [
    "ChainExecutionResult",
    "ChainNodeStatus",
    "CircuitBreaker",
    "CircuitBreakerStats",
    "CircuitState",
    "ProviderChain",
]
