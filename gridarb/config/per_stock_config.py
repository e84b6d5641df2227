"""Load per-stock strategy overrides from YAML.

Optional file path via env `ARB_PER_STOCK_CONFIG`, default `configs/per_stock.yaml`.
Returns a dict mapping stock -> dict of StrategyParams overrides, e.g.

    PARA:
      shares_per_interval: 25
      interval_profit: "0.04"
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

from gridarb.core.errors import ConfigurationError


def load_per_stock_overrides(path: str | None = None) -> Dict[str, Dict[str, Any]]:
    if path is None:
        path = os.getenv("ARB_PER_STOCK_CONFIG", "configs/per_stock.yaml")
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid per-stock config {p}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"per-stock config {p} must map stock symbols to overrides")
    return {str(k).upper(): v for k, v in data.items() if isinstance(v, dict)}
