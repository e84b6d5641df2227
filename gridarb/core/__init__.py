"""
Core utilities package.

Exact decimal arithmetic, the error hierarchy, JSON helpers and time helpers.
"""

from gridarb.core import decimal_math
from gridarb.core.errors import (
    BrokerageError,
    ConfigurationError,
    FillQuantityMismatchError,
    GridArbError,
    OrderNotFilledError,
    PreconditionViolation,
    SnapshotsExhaustedError,
    StateNotFoundError,
)
from gridarb.core.utils import current_timestamp, today_str

__all__ = [
    "decimal_math",
    "BrokerageError",
    "ConfigurationError",
    "FillQuantityMismatchError",
    "GridArbError",
    "OrderNotFilledError",
    "PreconditionViolation",
    "SnapshotsExhaustedError",
    "StateNotFoundError",
    "current_timestamp",
    "today_str",
]
