"""Configuration loader with JSON file and environment variable support."""

import json
import os
from pathlib import Path
from typing import Any

from .models import AppConfig


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_config(config_path: str | None = None) -> AppConfig:
    """
    Load configuration from JSON file with environment variable overrides.

    Priority: env vars > config file > defaults

    Args:
        config_path: Path to JSON config file. If None, uses PRICEWATCH_CONFIG_PATH env var
                     or defaults to 'config.json' in the project root.

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        json.JSONDecodeError: If config file has invalid JSON
        pydantic.ValidationError: If config values are invalid
    """
    if config_path is None:
        config_path = os.environ.get("PRICEWATCH_CONFIG_PATH", "config.json")

    config_file = Path(config_path)
    if not config_file.is_absolute():
        # Resolve relative to project root
        project_root = Path(__file__).parent.parent.parent
        config_file = project_root / config_file

    config_data: dict[str, Any] = {}
    if config_file.exists():
        with open(config_file) as f:
            config_data = json.load(f)
    else:
        raise FileNotFoundError(f"Config file not found: {config_file}")

    # Format: PRICEWATCH_SERVICE_ENABLE_CHAIN_FAILOVER, PRICEWATCH_PROVIDERS_ENABLED, etc.
    service = config_data.setdefault("service", {})

    if chain := os.environ.get("PRICEWATCH_SERVICE_ENABLE_CHAIN_FAILOVER"):
        service["enable_chain_failover"] = _parse_bool(chain)

    if breaker := os.environ.get("PRICEWATCH_SERVICE_ENABLE_CIRCUIT_BREAKER"):
        service["enable_circuit_breaker"] = _parse_bool(breaker)

    if interval := os.environ.get("PRICEWATCH_SERVICE_HEALTH_CHECK_INTERVAL_SECONDS"):
        service["health_check_interval_seconds"] = float(interval)

    if timeout := os.environ.get("PRICEWATCH_SERVICE_OPERATION_TIMEOUT_SECONDS"):
        service["operation_timeout_seconds"] = float(timeout)

    if attempts := os.environ.get("PRICEWATCH_SERVICE_MAX_PROVIDER_ATTEMPTS"):
        service["max_provider_attempts"] = int(attempts)

    if enabled := os.environ.get("PRICEWATCH_PROVIDERS_ENABLED"):
        wanted = [name.strip() for name in enabled.split(",") if name.strip()]
        existing = {p.get("type"): p for p in config_data.get("providers", [])}
        config_data["providers"] = [
            {**existing.get(name, {"type": name}), "enabled": True} for name in wanted
        ]

    if metrics := os.environ.get("PRICEWATCH_METRICS_ENABLED"):
        config_data.setdefault("metrics", {})["enabled"] = _parse_bool(metrics)

    return AppConfig(**config_data)
