from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
import os
import yaml


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class AppConfig:
    name: str = "Signal Replay"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "binance"
    base_url: str = "https://fapi.binance.com"
    rest_timeout_s: int = 20
    rest_max_attempts: int = 3
    rest_backoff_s: float = 0.2
    page_limit: int = 1500
    fetch_timeout_s: float = 0.0  # overall bound per logical fetch, 0 = none
    exchange_info_ttl_s: int = 30 * 60


@dataclass
class BacktestDefaults:
    leverage: str = "1x"
    sl_roe_pct: float = 100.0
    tp_roe_pct: float = 300.0
    lookahead_hours: float = 4.0
    timeframe: str = "1h"
    concurrency: int = 4  # signals evaluated in parallel by run_many


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    backtest: BacktestDefaults = field(default_factory=BacktestDefaults)


def load_config(path: Optional[str] = None) -> Config:
    raw = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        backtest=BacktestDefaults(**raw.get("backtest", {})),
    )

    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    cfg.provider.base_url = _env_override(cfg.provider.base_url, "BINANCE_BASE_URL")
    cfg.provider.fetch_timeout_s = _env_override(float(cfg.provider.fetch_timeout_s), "FETCH_TIMEOUT_S")
    return cfg
