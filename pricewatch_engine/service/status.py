"""Per-provider status records published by the data service."""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from pricewatch_engine.resilience.circuit_breaker import CircuitBreakerStats, CircuitState


@dataclass
class ProviderStatus:
    """Live health and activity record for one provider."""

    provider_id: str
    priority: int
    is_healthy: bool
    is_active: bool
    last_check: datetime
    consecutive_failures: int = 0
    response_time_seconds: float = 0.0
    circuit_state: CircuitState | None = None
    circuit_stats: CircuitBreakerStats | None = None

    def snapshot(self) -> "ProviderStatus":
        """Independent copy safe to hand to callers."""
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "provider_id": self.provider_id,
            "priority": self.priority,
            "is_healthy": self.is_healthy,
            "is_active": self.is_active,
            "last_check": self.last_check.isoformat(),
            "consecutive_failures": self.consecutive_failures,
            "response_time_seconds": round(self.response_time_seconds, 4),
            "circuit_state": self.circuit_state.value if self.circuit_state else None,
            "circuit_stats": self.circuit_stats.to_dict() if self.circuit_stats else None,
        }


StatusListener = Callable[[dict[str, ProviderStatus]], None]
