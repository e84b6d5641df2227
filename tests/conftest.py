"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import gridarb without installing.
"""

import sys
from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from gridarb.config.config import Settings, SnapshotMode, StrategyParams  # noqa: E402
from gridarb.market_data.snapshot_source import SnapshotSource  # noqa: E402
from gridarb.state.models import Snapshot  # noqa: E402
from gridarb.strategy.grid_builder import new_stock_state  # noqa: E402

D = Decimal


def quote(bid, ask, timestamp=None) -> Snapshot:
    return Snapshot(
        bid=None if bid is None else D(bid),
        ask=None if ask is None else D(ask),
        timestamp=timestamp,
    )


class ScriptedSnapshotSource(SnapshotSource):
    """Serves a fixed list of (bid, ask) quotes in order, then reports exhaustion."""

    def __init__(self, quotes):
        self.quotes = [quote(b, a, f"03-21-2025 at 10:00:{i:02d}AM ET") for i, (b, a) in enumerate(quotes)]
        self.index = 0

    async def get_snapshot(self, stock):
        snap = self.quotes[self.index]
        self.index += 1
        return snap

    def is_exhausted(self, stock):
        return self.index >= len(self.quotes)


@pytest.fixture
def example_params():
    """initial 10.00, spacing 0.50, 10 shares per interval, target 50, profit 0.20."""
    return StrategyParams(
        target_position=50,
        shares_per_interval=10,
        space_between_intervals=D("0.50"),
        interval_profit=D("0.20"),
    )


@pytest.fixture
def make_state(example_params):
    def _make(stock="TEST", initial="10.00", date="2025-03-21", **changes):
        params = replace(example_params, **changes)
        return new_stock_state(stock, date, stock, D(initial), params)
    return _make


@pytest.fixture
def scripted_source():
    return ScriptedSnapshotSource


@pytest.fixture
def settings_factory(example_params, tmp_path):
    """Settings built directly, bypassing the environment."""
    def _make(mode=SnapshotMode.RANDOM, **changes):
        base = Settings(
            snapshot_mode=mode,
            stocks=["TEST"],
            state_dir=str(tmp_path / "states"),
            historical_dir=str(tmp_path / "historical"),
            historical_start_date="2025-03-21",
            historical_end_date=None,
            brokerage_base_url="http://127.0.0.1:5000/v1",
            brokerage_token=None,
            http_timeout=5.0,
            tick_interval_sec=0.0,
            fill_poll_interval_sec=0.01,
            fill_timeout_sec=1.0,
            market_open="09:30:10",
            market_close="15:55:00",
            trading_end="15:50:00",
            max_ticks=0,
            random_initial_price=D("10.00"),
            random_tick_size=D("0.01"),
            random_down_probability=0.49,
            random_seed=1,
            log_file=None,
            log_level="INFO",
            metrics_port=0,
            per_stock_config=str(tmp_path / "per_stock.yaml"),
            strategy=example_params,
        )
        return replace(base, **changes)
    return _make
