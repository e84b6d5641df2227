"""
Monitoring package.

Prometheus metrics and the console PnL report.
"""

from gridarb.monitoring.metrics import ArbMetrics
from gridarb.monitoring.pnl_report import build_pnl_table, print_pnl_values

__all__ = [
    "ArbMetrics",
    "build_pnl_table",
    "print_pnl_values",
]
