"""
Prometheus metrics for the stop-loss arb engine.

Organized into: execution, strategy, PnL, lifecycle.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server


class ArbMetrics:
    """Per-stock metrics on a private registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        # === Execution Metrics ===
        self.fills_total = Counter(
            'fills_total',
            'Position changes executed',
            labelnames=['stock', 'side'],
            registry=reg
        )
        self.intervals_filled_total = Counter(
            'intervals_filled_total',
            'Intervals flipped by fills',
            labelnames=['stock', 'side'],
            registry=reg
        )
        self.fill_confirm_ms = Histogram(
            'fill_confirm_ms',
            'Time from order placement to confirmed fill (milliseconds)',
            labelnames=['stock'],
            buckets=[100, 500, 1000, 2000, 5000, 10000, 30000, 120000],
            registry=reg
        )
        self.brokerage_errors_total = Counter(
            'brokerage_errors_total',
            'Brokerage failures that stopped a runner',
            labelnames=['stock', 'error_type'],
            registry=reg
        )

        # === Strategy Metrics ===
        self.position = Gauge(
            'position',
            'Current position (shares)',
            labelnames=['stock'],
            registry=reg
        )
        self.grid_corrections_total = Counter(
            'grid_corrections_total',
            'Dynamic grid re-anchoring shifts',
            labelnames=['stock', 'direction'],
            registry=reg
        )
        self.unreliable_quotes_total = Counter(
            'unreliable_quotes_total',
            'Ticks with a wide spread or a missing quote side',
            labelnames=['stock'],
            registry=reg
        )

        # === PnL Metrics ===
        self.exit_pnl_pct = Gauge(
            'exit_pnl_pct',
            'Hypothetical flatten-now PnL (%)',
            labelnames=['stock'],
            registry=reg
        )
        self.realized_pnl_pct = Gauge(
            'realized_pnl_pct',
            'Realized PnL after close (%)',
            labelnames=['stock'],
            registry=reg
        )
        self.net_position_value = Gauge(
            'net_position_value',
            'Running cash ledger net of commissions',
            labelnames=['stock'],
            registry=reg
        )

        # === Lifecycle ===
        self.ticks_total = Counter(
            'ticks_total',
            'Reconciliation ticks executed',
            labelnames=['stock'],
            registry=reg
        )
        self.states_closed_total = Counter(
            'states_closed_total',
            'Stock states closed',
            labelnames=['stock', 'reason'],
            registry=reg
        )
        self.runner_failures_total = Counter(
            'runner_failures_total',
            'Stock runners stopped by an error',
            labelnames=['stock'],
            registry=reg
        )

        self.registry = reg

    def get_registry(self):
        """Return the Prometheus registry for export."""
        return self.registry

    def serve(self, port: int) -> None:
        """Expose the registry over HTTP on `port` (0 disables)."""
        if port > 0:
            start_http_server(port, registry=self.registry)
