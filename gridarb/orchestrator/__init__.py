"""
Orchestrator package.

Market clock and the per-stock strategy driver.
"""

from gridarb.orchestrator.market_clock import MarketClock
from gridarb.orchestrator.strategy_driver import (
    RunnerConfig,
    StockRunner,
    StrategyDriver,
    historical_states_for_date,
    prepare_live_states,
    random_states,
)

__all__ = [
    "MarketClock",
    "RunnerConfig",
    "StockRunner",
    "StrategyDriver",
    "historical_states_for_date",
    "prepare_live_states",
    "random_states",
]
