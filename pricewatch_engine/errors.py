"""Exception taxonomy for the provider access layer.

- ProviderError: one provider attempt failed; recovered inside the chain.
- CircuitOpenError: the breaker rejected the call without attempting it.
- ChainExhaustedError: every eligible provider failed or was skipped. This is
  the only error chain-failover mode surfaces to callers.
- NoProviderAvailableError: fast-path call with no active provider.
"""

from typing import Sequence


class PricewatchError(Exception):
    """Base class for pricewatch errors."""


class ProviderError(PricewatchError):
    """A single provider request failed."""

    def __init__(
        self,
        message: str,
        provider_id: str,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.original_error = original_error


class CircuitOpenError(PricewatchError):
    """Raised when a circuit breaker fails fast without invoking the operation."""

    def __init__(self, breaker_name: str, retry_after_seconds: float) -> None:
        super().__init__(
            f"CircuitBreaker[{breaker_name}]: circuit is OPEN, failing fast "
            f"(retry in {retry_after_seconds:.1f}s)"
        )
        self.breaker_name = breaker_name
        self.retry_after_seconds = retry_after_seconds


class ChainExhaustedError(PricewatchError):
    """Raised when no provider in a chain produced a result."""

    def __init__(
        self,
        operation_name: str,
        attempts: int,
        failed_providers: Sequence[str],
        execution_time_seconds: float,
        errors: dict[str, BaseException] | None = None,
    ) -> None:
        self.operation_name = operation_name
        self.attempts = attempts
        self.failed_providers = tuple(failed_providers)
        self.execution_time_seconds = execution_time_seconds
        self.errors = dict(errors or {})
        if self.failed_providers:
            detail = ", ".join(self.failed_providers)
        else:
            detail = "no providers available"
        super().__init__(
            f"All providers failed for {operation_name}. "
            f"Attempted: {attempts}, failed providers: {detail}, "
            f"execution time: {execution_time_seconds * 1000:.0f}ms"
        )


class NoProviderAvailableError(PricewatchError):
    """Raised by fast-path calls when the service has no active provider."""

    def __init__(self, operation_name: str) -> None:
        super().__init__(f"No active provider available for {operation_name}")
        self.operation_name = operation_name
