import os
import sys
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]

if str(PROJECT_ROOT) not in sys.path:  # pragma: no cover
    sys.path.append(str(PROJECT_ROOT))


class FakeClock:
    """Manually advanced monotonic clock for breaker tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Fake monotonic clock."""
    return FakeClock()


@pytest.fixture(autouse=True)
def clean_config_env() -> Generator[None, None, None]:
    """Ensure PRICEWATCH_* env vars do not interfere with tests unless explicitly set."""
    original_env = {}
    keys_to_clear = [key for key in os.environ if key.startswith("PRICEWATCH_")]

    for key in keys_to_clear:
        original_env[key] = os.environ.pop(key)

    yield

    for key, value in original_env.items():
        os.environ[key] = value
