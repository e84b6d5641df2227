"""
PnL summary table for the console.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from gridarb.state.models import StockState


def _fmt(value: Optional[Decimal], suffix: str = "") -> str:
    return "-" if value is None else f"{value}{suffix}"


def _colored_pct(value: Optional[Decimal]) -> str:
    if value is None:
        return "-"
    if value > 0:
        return f"[green]{value}%[/green]"
    if value < 0:
        return f"[red]{value}%[/red]"
    return f"{value}%"


def build_pnl_table(states: Iterable[StockState], title: str = "Stop-loss arb PnL") -> Table:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Stock", style="cyan", no_wrap=True)
    table.add_column("Date")
    table.add_column("Status")
    table.add_column("Position", justify="right")
    table.add_column("Trades", justify="right")
    table.add_column("Net value", justify="right")
    table.add_column("Realized", justify="right")
    table.add_column("Exit", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Min", justify="right")

    for s in states:
        status = s.status.value if s.close_reason is None else f"{s.status.value} ({s.close_reason.value})"
        table.add_row(
            s.stock,
            s.date,
            status,
            str(s.position),
            str(len(s.trading_logs)),
            _fmt(s.net_position_value),
            _colored_pct(s.realized_pnl_as_percentage),
            _colored_pct(s.exit_pnl_as_percentage),
            _fmt(s.max_moving_profit_as_percentage, "%"),
            _fmt(s.max_moving_loss_as_percentage, "%"),
        )
    return table


def print_pnl_values(states: Iterable[StockState], console: Optional[Console] = None, title: str = "Stop-loss arb PnL") -> None:
    (console or Console()).print(build_pnl_table(states, title=title))
