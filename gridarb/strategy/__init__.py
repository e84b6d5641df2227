"""
Strategy package.

Interval ladder construction.
"""

from gridarb.strategy.grid_builder import build_intervals, new_stock_state, rungs_per_side

__all__ = [
    "build_intervals",
    "new_stock_state",
    "rungs_per_side",
]
