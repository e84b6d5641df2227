"""
Configuration package.

Environment settings, strategy parameters and per-stock overrides.
"""

from gridarb.config.config import Settings, SnapshotMode, StrategyParams
from gridarb.config.per_stock_config import load_per_stock_overrides

__all__ = [
    "Settings",
    "SnapshotMode",
    "StrategyParams",
    "load_per_stock_overrides",
]
