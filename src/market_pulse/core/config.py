"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from market_pulse.core.exceptions import ConfigError
from market_pulse.core.models import CachePolicy, StorageBackend, Symbol


class GatewayConfig(BaseModel):
    """Finance quote gateway access configuration."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://internal-api.z.ai"
    api_prefix: str = "/external/finance"
    source_header: str = "Z"
    rate_limit: int = 5
    request_timeout: float = 15.0

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_in_bounds(cls, v: int) -> int:
        if v < 1 or v > 50:
            raise ValueError("rate_limit must be between 1 and 50")
        return v


class SearchConfig(BaseModel):
    """Web search service configuration."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://internal-api.z.ai/external/search"
    api_key: str | None = None
    rate_limit: int = 5
    request_timeout: float = 20.0
    result_count: int = 5

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("result_count")
    @classmethod
    def result_count_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("result_count must be >= 1")
        return v


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    backend: StorageBackend = StorageBackend.SQLITE
    sqlite_path: str = "./data/market_pulse.db"


class ResolverConfig(BaseModel):
    """Quote resolver behaviour."""

    model_config = ConfigDict(frozen=True)

    symbols: list[str] = [s.value for s in Symbol]
    primary_timeout: float = 15.0
    freshness_window_minutes: int = 60
    cache_policy: CachePolicy = CachePolicy.WHOLE_CACHE
    max_concurrency: int = 4
    default_prices: dict[str, float] = {}

    @field_validator("symbols")
    @classmethod
    def symbols_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("symbols must not be empty")
        return v

    @field_validator("primary_timeout")
    @classmethod
    def timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("primary_timeout must be > 0")
        return v

    @field_validator("freshness_window_minutes")
    @classmethod
    def freshness_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("freshness_window_minutes must be >= 0")
        return v

    @field_validator("max_concurrency")
    @classmethod
    def max_concurrency_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrency must be >= 1")
        return v

    @field_validator("default_prices")
    @classmethod
    def default_prices_positive(cls, v: dict[str, float]) -> dict[str, float]:
        for symbol, price in v.items():
            if price <= 0:
                raise ValueError(f"default price for {symbol} must be > 0")
        return v


class RefreshConfig(BaseModel):
    """Background refresh configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    interval_minutes: int = 60
    startup_delay_seconds: float = 5.0
    overall_timeout: float = 120.0
    news_count: int = 20
    news_store_limit: int = 15
    analysis_count: int = 10
    history_symbols: list[str] = ["BTC", "ETH", "USDKZT"]
    history_interval: str = "1h"
    history_limit: int = 24

    @field_validator("interval_minutes")
    @classmethod
    def interval_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("interval_minutes must be >= 1")
        return v

    @field_validator("overall_timeout")
    @classmethod
    def overall_timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("overall_timeout must be > 0")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str | None = None


class PulseConfig(BaseModel):
    """Root configuration for the entire market-pulse system."""

    model_config = ConfigDict(frozen=True)

    gateway: GatewayConfig = GatewayConfig()
    search: SearchConfig = SearchConfig()
    storage: StorageConfig = StorageConfig()
    resolver: ResolverConfig = ResolverConfig()
    refresh: RefreshConfig = RefreshConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "MARKET_PULSE_",
) -> PulseConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (MARKET_PULSE_GATEWAY__BASE_URL, etc.)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        MARKET_PULSE_RESOLVER__PRIMARY_TIMEOUT=20  ->  resolver.primary_timeout = 20
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_vars(base, env_prefix)
        return PulseConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("MARKET_PULSE_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from MARKET_PULSE_CONFIG not found: {env_path}",
                context={"field": "MARKET_PULSE_CONFIG", "value": env_path},
            )
        return p

    default = Path("market-pulse.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int/float,
    comma-separated strings -> list.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool | list[str]:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    if "," in value:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value
