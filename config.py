"""
Typed configuration — single source of truth for all engine settings.

SRP: This module's sole responsibility is loading and validating configuration.
All env-var reads are consolidated here; no other module should call os.getenv().
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


def _env(key: str, default: str) -> str:
    return os.getenv(key, default)


def _env_bool(key: str, default: str = "true") -> bool:
    return _env(key, default).lower() == "true"


def _env_int(key: str, default: str) -> int:
    return int(_env(key, default))


def _env_float(key: str, default: str) -> float:
    return float(_env(key, default))


def _env_decimal(key: str, default: str) -> Decimal:
    return Decimal(_env(key, default))


# ── Risk & Position Config ───────────────────────────────────────────────────

@dataclass(frozen=True)
class TradingConfig:
    """Immutable position limits, exit levels and monitoring cadence."""
    max_positions: int = _env_int("MAX_POSITIONS", "5")
    max_position_size: Decimal = _env_decimal("MAX_POSITION_SIZE", "1.0")
    min_position_size: Decimal = _env_decimal("MIN_POSITION_SIZE", "0.1")
    stop_loss_pct: Decimal = _env_decimal("STOP_LOSS_PCT", "0.10")
    take_profit_pct: Decimal = _env_decimal("TAKE_PROFIT_PCT", "0.20")
    slippage_bps: int = _env_int("SLIPPAGE_BPS", "100")
    min_confidence_score: float = _env_float("MIN_CONFIDENCE_SCORE", "0.7")
    monitoring_interval_sec: float = _env_float("MONITORING_INTERVAL_SEC", "10")
    position_size_fraction: Decimal = _env_decimal("POSITION_SIZE_FRACTION", "0.1")
    max_position_fraction: Decimal = _env_decimal("MAX_POSITION_FRACTION", "0.2")
    volatility_tp_multiplier: Decimal = _env_decimal("VOLATILITY_TP_MULTIPLIER", "2.0")
    trail_stop_activation_pct: Decimal = _env_decimal("TRAIL_STOP_ACTIVATION_PCT", "5.0")
    trail_stop_distance: Decimal = _env_decimal("TRAIL_STOP_DISTANCE", "0.02")
    volatility_threshold: float = _env_float("VOLATILITY_THRESHOLD", "0.05")
    position_stale_threshold_sec: float = _env_float("POSITION_STALE_THRESHOLD_SEC", "300")
    liquidate_on_shutdown: bool = _env_bool("LIQUIDATE_ON_SHUTDOWN", "true")
    dry_run: bool = _env_bool("DRY_RUN", "true")


# ── Market Data ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PriceFeedConfig:
    """Token price API settings."""
    base_url: str = _env("PRICE_API_URL", "https://api.helius.xyz")
    api_key: str = _env("PRICE_API_KEY", "")
    timeout_sec: float = _env_float("PRICE_API_TIMEOUT_SEC", "10")
    history_points: int = _env_int("PRICE_HISTORY_POINTS", "60")


# ── Execution Venue ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VenueConfig:
    """Swap venue settings. Simulated values only apply in dry-run mode."""
    base_url: str = _env("VENUE_API_URL", "https://quote-api.jup.ag")
    wallet_address: str = _env("WALLET_ADDRESS", "")
    timeout_sec: float = _env_float("VENUE_TIMEOUT_SEC", "30")
    simulated_balance: Decimal = _env_decimal("SIMULATED_BALANCE", "10.0")
    simulated_fee_bps: int = _env_int("SIMULATED_FEE_BPS", "25")


# ── Redis Config ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RedisConfig:
    """Durable store connection settings."""
    backend: str = _env("STORE_BACKEND", "redis")  # "redis" | "memory"
    host: str = _env("REDIS_HOST", "localhost")
    port: int = _env_int("REDIS_PORT", "6379")
    db: int = _env_int("REDIS_DB", "3")
    key_prefix: str = _env("REDIS_KEY_PREFIX", "engine")


# ── Logging / Metrics ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LoggingConfig:
    level: str = _env("LOG_LEVEL", "INFO")
    path: str = _env("LOG_PATH", "logs/engine.log")
    rotation: str = _env("LOG_ROTATION", "5 MB")
    retention: int = _env_int("LOG_RETENTION", "5")


@dataclass(frozen=True)
class MetricsConfig:
    enabled: bool = _env_bool("METRICS_ENABLED", "false")
    port: int = _env_int("METRICS_PORT", "8000")


# ── Top-level aggregate ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class EngineConfig:
    """
    Root configuration object — compose all sub-configs.

    Usage:
        cfg = EngineConfig()              # loads from env
        print(cfg.trading.max_positions)
        print(cfg.redis.host)
    """
    trading: TradingConfig = field(default_factory=TradingConfig)
    price_feed: PriceFeedConfig = field(default_factory=PriceFeedConfig)
    venue: VenueConfig = field(default_factory=VenueConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)


_cfg: EngineConfig | None = None


def get_config() -> EngineConfig:
    """Get the cached immutable config. Created once, never mutated."""
    global _cfg
    if _cfg is None:
        _cfg = EngineConfig()
    return _cfg
