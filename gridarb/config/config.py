"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from gridarb.core import decimal_math as dm
from gridarb.core.errors import ConfigurationError
from gridarb.core.json_utils import dumps

load_dotenv()


class SnapshotMode(str, Enum):
    LIVE = "live"
    RANDOM = "random"
    HISTORICAL = "historical"


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc


def _decimal_env(key: str, default: Optional[str]) -> Optional[Decimal]:
    raw = os.getenv(key)
    if raw is None or raw == "":
        raw = default
    if raw is None or raw.lower() == "none":
        return None
    try:
        return dm.to_decimal(raw)
    except InvalidOperation as exc:
        raise ConfigurationError(f"{key} must be a decimal, got {raw!r}") from exc


@dataclass(frozen=True)
class StrategyParams:
    """Partial stock state: everything needed to build a grid except the initial price."""
    target_position: int
    shares_per_interval: int
    space_between_intervals: Decimal
    interval_profit: Decimal
    is_static_intervals: bool = False
    brokerage_trading_cost_per_share: Decimal = Decimal(0)
    num_contracts: int = 1
    profit_threshold: Optional[Decimal] = None
    loss_threshold: Optional[Decimal] = None

    def validate(self) -> None:
        if self.shares_per_interval <= 0:
            raise ConfigurationError("shares_per_interval must be > 0")
        if self.target_position <= 0:
            raise ConfigurationError("target_position must be > 0")
        if self.target_position % self.shares_per_interval != 0:
            raise ConfigurationError(
                f"target_position ({self.target_position}) must be a multiple of "
                f"shares_per_interval ({self.shares_per_interval})"
            )
        if dm.compare(self.space_between_intervals, 0) <= 0:
            raise ConfigurationError("space_between_intervals must be > 0")
        if dm.compare(self.interval_profit, 0) <= 0:
            raise ConfigurationError("interval_profit must be > 0")
        if dm.compare(self.interval_profit, self.space_between_intervals) > 0:
            raise ConfigurationError("interval_profit must be <= space_between_intervals")
        if dm.compare(self.brokerage_trading_cost_per_share, 0) < 0:
            raise ConfigurationError("brokerage_trading_cost_per_share must be >= 0")
        if self.num_contracts <= 0:
            raise ConfigurationError("num_contracts must be > 0")
        if self.profit_threshold is not None and dm.compare(self.profit_threshold, 0) <= 0:
            raise ConfigurationError("profit_threshold must be > 0")
        if self.loss_threshold is not None and dm.compare(self.loss_threshold, 0) >= 0:
            raise ConfigurationError("loss_threshold must be < 0")

    def with_overrides(self, overrides: Dict[str, Any]) -> "StrategyParams":
        """Apply a per-stock override mapping (values as loaded from YAML)."""
        if not overrides:
            return self
        changes: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in self.__dataclass_fields__:
                raise ConfigurationError(f"unknown strategy parameter override: {key}")
            current = getattr(self, key)
            if value is None:
                changes[key] = None
            elif isinstance(current, bool):
                changes[key] = bool(value)
            elif isinstance(current, int):
                changes[key] = int(value)
            else:
                changes[key] = dm.to_decimal(value)
        params = replace(self, **changes)
        params.validate()
        return params


@dataclass(frozen=True)
class Settings:
    snapshot_mode: SnapshotMode
    stocks: List[str]
    state_dir: str
    historical_dir: str
    historical_start_date: Optional[str]
    historical_end_date: Optional[str]
    brokerage_base_url: str
    brokerage_token: Optional[str]
    http_timeout: float
    tick_interval_sec: float
    fill_poll_interval_sec: float
    fill_timeout_sec: float
    market_open: str
    market_close: str
    trading_end: str
    max_ticks: int
    random_initial_price: Decimal
    random_tick_size: Decimal
    random_down_probability: float
    random_seed: Optional[int]
    log_file: Optional[str]
    log_level: str
    metrics_port: int
    per_stock_config: str
    strategy: StrategyParams

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        data = self.__dict__.copy()
        data.pop("brokerage_token", None)
        return data

    @property
    def is_live(self) -> bool:
        return self.snapshot_mode is SnapshotMode.LIVE

    @staticmethod
    def _stocks() -> List[str]:
        raw = os.getenv("ARB_STOCKS", "")
        return [s.strip().upper() for s in raw.split(",") if s.strip()]

    @staticmethod
    def _snapshot_mode() -> SnapshotMode:
        is_random = env_bool("ARB_RANDOM_SNAPSHOT", False)
        is_historical = env_bool("ARB_HISTORICAL_SNAPSHOT", False)
        if is_random and is_historical:
            raise ConfigurationError(
                "ARB_RANDOM_SNAPSHOT and ARB_HISTORICAL_SNAPSHOT are both set; pick one snapshot mode"
            )
        if is_random:
            return SnapshotMode.RANDOM
        if is_historical:
            return SnapshotMode.HISTORICAL
        return SnapshotMode.LIVE

    @staticmethod
    def _strategy() -> StrategyParams:
        return StrategyParams(
            target_position=_int_env("ARB_TARGET_POSITION", 100),
            shares_per_interval=_int_env("ARB_SHARES_PER_INTERVAL", 50),
            space_between_intervals=_decimal_env("ARB_SPACE_BETWEEN_INTERVALS", "0.09"),
            interval_profit=_decimal_env("ARB_INTERVAL_PROFIT", "0.05"),
            is_static_intervals=env_bool("ARB_STATIC_INTERVALS", False),
            brokerage_trading_cost_per_share=_decimal_env("ARB_TRADING_COST_PER_SHARE", "0"),
            num_contracts=_int_env("ARB_NUM_CONTRACTS", 1),
            profit_threshold=_decimal_env("ARB_PROFIT_THRESHOLD", "0.5"),
            loss_threshold=_decimal_env("ARB_LOSS_THRESHOLD", "-0.75"),
        )

    @classmethod
    def load(cls) -> "Settings":
        seed_raw = os.getenv("ARB_RANDOM_SEED")
        cfg = cls(
            snapshot_mode=cls._snapshot_mode(),
            stocks=cls._stocks(),
            state_dir=os.getenv("ARB_STATE_DIR", "stock-states"),
            historical_dir=os.getenv("ARB_HISTORICAL_DIR", "historical-data"),
            historical_start_date=os.getenv("ARB_HISTORICAL_START_DATE") or None,
            historical_end_date=os.getenv("ARB_HISTORICAL_END_DATE") or None,
            brokerage_base_url=os.getenv("ARB_BROKERAGE_BASE_URL", "http://127.0.0.1:5000/v1"),
            brokerage_token=os.getenv("ARB_BROKERAGE_TOKEN"),
            http_timeout=_float_env("ARB_HTTP_TIMEOUT", 10.0),
            tick_interval_sec=_float_env("ARB_TICK_INTERVAL_SEC", 29.0),
            fill_poll_interval_sec=_float_env("ARB_FILL_POLL_INTERVAL_SEC", 1.0),
            fill_timeout_sec=_float_env("ARB_FILL_TIMEOUT_SEC", 120.0),
            market_open=os.getenv("ARB_MARKET_OPEN", "09:30:10"),
            market_close=os.getenv("ARB_MARKET_CLOSE", "15:55:00"),
            trading_end=os.getenv("ARB_TRADING_END", "15:50:00"),
            max_ticks=_int_env("ARB_MAX_TICKS", 0),
            random_initial_price=_decimal_env("ARB_RANDOM_INITIAL_PRICE", "9.00"),
            random_tick_size=_decimal_env("ARB_RANDOM_TICK_SIZE", "0.01"),
            random_down_probability=_float_env("ARB_RANDOM_DOWN_PROBABILITY", 0.49),
            random_seed=int(seed_raw) if seed_raw else None,
            log_file=os.getenv("ARB_LOG_FILE") or None,
            log_level=os.getenv("ARB_LOG_LEVEL", "INFO").upper(),
            metrics_port=_int_env("ARB_METRICS_PORT", 0),
            per_stock_config=os.getenv("ARB_PER_STOCK_CONFIG", "configs/per_stock.yaml"),
            strategy=cls._strategy(),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def _validate(self) -> None:
        self.strategy.validate()
        if self.snapshot_mode is SnapshotMode.HISTORICAL and not self.historical_start_date:
            raise ConfigurationError("ARB_HISTORICAL_START_DATE is required in historical snapshot mode")
        if self.tick_interval_sec < 0:
            raise ConfigurationError("ARB_TICK_INTERVAL_SEC must be >= 0")
        if self.fill_poll_interval_sec <= 0 or self.fill_timeout_sec <= 0:
            raise ConfigurationError("fill polling interval and timeout must be > 0")
        if not 0.0 <= self.random_down_probability <= 1.0:
            raise ConfigurationError("ARB_RANDOM_DOWN_PROBABILITY must be within [0, 1]")
        if dm.compare(self.random_tick_size, 0) <= 0:
            raise ConfigurationError("ARB_RANDOM_TICK_SIZE must be > 0")
        if self.max_ticks < 0:
            raise ConfigurationError("ARB_MAX_TICKS must be >= 0")
        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigurationError(f"ARB_LOG_LEVEL {self.log_level!r} is not a logging level")

        if self.is_live and self.strategy.profit_threshold is None and self.strategy.loss_threshold is None:
            logging.getLogger("gridarb").warning(
                "WARNING: no ARB_PROFIT_THRESHOLD/ARB_LOSS_THRESHOLD set. "
                "Live positions will only be flattened at trading end."
            )


def _sanity_check(cfg: Settings) -> None:
    """Log critical settings once at startup so overrides are obvious."""
    logger = logging.getLogger("gridarb")
    payload = {
        "event": "config_loaded",
        "snapshot_mode": cfg.snapshot_mode.value,
        "stocks": cfg.stocks,
        "state_dir": cfg.state_dir,
        "target_position": cfg.strategy.target_position,
        "shares_per_interval": cfg.strategy.shares_per_interval,
        "space_between_intervals": cfg.strategy.space_between_intervals,
        "interval_profit": cfg.strategy.interval_profit,
        "is_static_intervals": cfg.strategy.is_static_intervals,
    }
    logger.info(dumps(payload))
