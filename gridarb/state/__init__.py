"""
State package.

Stock strategy models and their JSON persistence.
"""

from gridarb.state.models import (
    CloseReason,
    Interval,
    IntervalSide,
    IntervalType,
    OrderAction,
    Snapshot,
    StateStatus,
    StockState,
    TradingLogEntry,
)
from gridarb.state.state_store import AtomicStateStore, StateStore

__all__ = [
    "AtomicStateStore",
    "CloseReason",
    "Interval",
    "IntervalSide",
    "IntervalType",
    "OrderAction",
    "Snapshot",
    "StateStatus",
    "StateStore",
    "StockState",
    "TradingLogEntry",
]
