"""
Execution layer components for the stop-loss arb engine.

- ReconciliationEngine: per-tick crossing detection, sizing and re-anchoring
- PositionExecutor: position changes, trading log and PnL ledger
- brokerage: capability interface, fill confirmation and the httpx adapter
"""

from gridarb.execution.brokerage import (
    BrokerageClient,
    HttpBrokerageClient,
    OrderRequest,
    OrderStatus,
    OrderStatusReport,
    set_security_position,
)
from gridarb.execution.position_executor import PositionExecutor
from gridarb.execution.reconciliation_engine import EngineConfig, ReconciliationEngine, TickResult

__all__ = [
    "BrokerageClient",
    "EngineConfig",
    "HttpBrokerageClient",
    "OrderRequest",
    "OrderStatus",
    "OrderStatusReport",
    "PositionExecutor",
    "ReconciliationEngine",
    "TickResult",
    "set_security_position",
]
