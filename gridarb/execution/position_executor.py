"""
PositionExecutor: execution path and PnL ledger for one stock state.

Applies a position change (optionally through the brokerage), appends the
trading log entry and updates the net position value. Also computes realized
PnL once flat, and the hypothetical flatten-now ("exit") PnL with its
watermarks while a position is open.

All percentages are of the capital base `(target + spi) * initial_price`,
rounded half-up to 4 places.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Optional

from gridarb.core import decimal_math as dm
from gridarb.core.errors import PreconditionViolation
from gridarb.core.utils import current_timestamp
from gridarb.execution.brokerage import BrokerageClient, set_security_position
from gridarb.infra.logging_cfg import log_event
from gridarb.monitoring.metrics import ArbMetrics
from gridarb.state.models import OrderAction, Snapshot, StockState, TradingLogEntry

log = logging.getLogger("gridarb")

PCT_PLACES = 4


class PositionExecutor:
    def __init__(
        self,
        brokerage: Optional[BrokerageClient] = None,
        fill_poll_interval: float = 1.0,
        fill_timeout: float = 120.0,
        metrics: Optional[ArbMetrics] = None,
    ) -> None:
        self.brokerage = brokerage
        self.fill_poll_interval = fill_poll_interval
        self.fill_timeout = fill_timeout
        self.metrics = metrics

    async def apply_position_change(self, state: StockState, new_position: int, snapshot: Snapshot) -> TradingLogEntry:
        """
        Move `state.position` to `new_position`. Returns the appended log entry.

        Without a brokerage the fill price is the quoted ask (BUY) or bid
        (SELL). With one, the order is confirmed filled before this returns
        and the reported average price is used.
        """
        previous = state.position
        if new_position == previous:
            raise PreconditionViolation(f"{state.stock}: position change to the current position {previous}")
        action = OrderAction.BUY if new_position > previous else OrderAction.SELL
        quoted = snapshot.ask if action is OrderAction.BUY else snapshot.bid
        if dm.is_zero(quoted):
            raise PreconditionViolation(f"{state.stock}: no {action.value} quote to execute against")
        quantity = abs(new_position - previous)

        if self.brokerage is not None:
            started = time.monotonic()
            fill_price = await set_security_position(
                self.brokerage,
                state.brokerage_id,
                previous * state.num_contracts,
                new_position * state.num_contracts,
                snapshot,
                poll_interval=self.fill_poll_interval,
                timeout=self.fill_timeout,
            )
            if self.metrics:
                self.metrics.fill_confirm_ms.labels(stock=state.stock).observe((time.monotonic() - started) * 1000)
        else:
            fill_price = quoted

        npv = dm.subtract(state.net_position_value, dm.multiply(quantity, state.brokerage_trading_cost_per_share))
        cash = dm.multiply(quantity, fill_price)
        npv = dm.subtract(npv, cash) if action is OrderAction.BUY else dm.add(npv, cash)
        state.net_position_value = npv
        state.position = new_position

        entry = TradingLogEntry(
            action=action,
            timestamp=snapshot.timestamp or current_timestamp(),
            price=quoted,
            fill_price=fill_price,
            previous_position=previous,
            new_position=new_position,
        )
        state.append_log(entry)

        log_event(log, "position_changed", stock=state.stock, action=action.value, price=quoted,
                  fill_price=fill_price, previous=previous, new=new_position,
                  num_contracts=state.num_contracts, net_position_value=npv)
        if self.metrics:
            self.metrics.fills_total.labels(stock=state.stock, side=action.value).inc()
            self.metrics.position.labels(stock=state.stock).set(new_position)
            self.metrics.net_position_value.labels(stock=state.stock).set(float(npv))
        return entry

    async def flatten(self, state: StockState, snapshot: Snapshot) -> Optional[TradingLogEntry]:
        if state.position == 0:
            return None
        return await self.apply_position_change(state, 0, snapshot)

    @staticmethod
    def realized_pnl_percentage(state: StockState) -> Decimal:
        if state.position != 0:
            raise PreconditionViolation(
                f"{state.stock}: realized PnL requires a flat position, position is {state.position}"
            )
        return dm.round_to_places(dm.percentage_of(state.net_position_value, state.capital_base), PCT_PLACES)

    def record_realized_pnl(self, state: StockState) -> Decimal:
        pct = self.realized_pnl_percentage(state)
        state.realized_pnl = state.net_position_value
        state.realized_pnl_as_percentage = pct
        if self.metrics:
            self.metrics.realized_pnl_pct.labels(stock=state.stock).set(float(pct))
        log_event(log, "realized_pnl", stock=state.stock, value=state.realized_pnl, pct=pct)
        return pct

    @staticmethod
    def exit_value(state: StockState) -> Optional[Decimal]:
        """Net position value if the position were flattened at the last quote."""
        position = state.position
        if position == 0:
            return state.net_position_value
        price = state.last_bid if position > 0 else state.last_ask
        if dm.is_zero(price):
            return None
        quantity = abs(position)
        value = dm.subtract(state.net_position_value, dm.multiply(quantity, state.brokerage_trading_cost_per_share))
        cash = dm.multiply(quantity, price)
        return dm.add(value, cash) if position > 0 else dm.subtract(value, cash)

    def update_exit_pnl(self, state: StockState) -> Optional[Decimal]:
        value = self.exit_value(state)
        if value is None:
            return state.exit_pnl_as_percentage
        pct = dm.round_to_places(dm.percentage_of(value, state.capital_base), PCT_PLACES)
        state.exit_pnl = value
        state.exit_pnl_as_percentage = pct
        if state.max_moving_profit_as_percentage is None or dm.compare(pct, state.max_moving_profit_as_percentage) > 0:
            state.max_moving_profit_as_percentage = pct
        if state.max_moving_loss_as_percentage is None or dm.compare(pct, state.max_moving_loss_as_percentage) < 0:
            state.max_moving_loss_as_percentage = pct
        if self.metrics:
            self.metrics.exit_pnl_pct.labels(stock=state.stock).set(float(pct))
        return pct
