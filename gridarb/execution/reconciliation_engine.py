"""
ReconciliationEngine: the per-tick decision and execution step for one stock.

Tick sequence:
    1. fetch a snapshot
    2. change/time gate: record the quote, recompute exit PnL, close the state
       when an exit threshold or the trading end is reached
    3. spread gate: a wide spread or a missing side only runs crossing detection
    4. crossing detection (one-way latch); past the trading end the tick stops
       here and only persists
    5. buy sizing, bottom of the ladder upward
    6. sell sizing, top of the ladder downward, only when nothing is bought
    7. flip the filled intervals
    8. dynamic correction (non-static grids) re-anchors the ladder
    9. execute the position change, then a second crossing pass
   10. persist

The ladder is ordered by descending price: index 0 is the top long rung, the
last index is the bottom short rung. Index lists are kept ascending.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from gridarb.core import decimal_math as dm
from gridarb.core.errors import PreconditionViolation
from gridarb.core.json_utils import dumps
from gridarb.state.models import CloseReason, Interval, OrderAction, Snapshot, StockState

if TYPE_CHECKING:
    from gridarb.execution.position_executor import PositionExecutor
    from gridarb.market_data.snapshot_source import SnapshotSource
    from gridarb.monitoring.metrics import ArbMetrics
    from gridarb.orchestrator.market_clock import MarketClock
    from gridarb.state.state_store import AtomicStateStore

log = logging.getLogger("gridarb")


@dataclass
class TickResult:
    """Outcome of one reconciliation tick."""
    snapshot: Snapshot
    crossed_threshold: bool = False
    close_reason: Optional[CloseReason] = None
    filled_intervals: List[int] = field(default_factory=list)
    action: Optional[OrderAction] = None
    new_position: Optional[int] = None

    @property
    def traded(self) -> bool:
        return bool(self.filled_intervals) or self.crossed_threshold


@dataclass
class EngineConfig:
    # Write the state file after every changed snapshot (live trading)
    persist_on_change: bool = False

    # Logging
    log_event_callback: Optional[Callable[..., None]] = None


# ---------------------------------------------------------------------------
# Pure ladder operations
# ---------------------------------------------------------------------------

def is_snapshot_change(state: StockState, snapshot: Snapshot) -> bool:
    if state.last_bid is None or state.last_ask is None:
        return True
    if snapshot.bid is None or snapshot.ask is None:
        return True
    return dm.compare(state.last_bid, snapshot.bid) != 0 or dm.compare(state.last_ask, snapshot.ask) != 0


def is_unreliable_quote(state: StockState, snapshot: Snapshot) -> bool:
    """Wide spread (>= one interval spacing) or a missing/zero side."""
    spread = snapshot.spread
    if spread is None:
        return True
    return dm.compare(spread, state.space_between_intervals) >= 0


def check_crossings(intervals: List[Interval], snapshot: Snapshot) -> bool:
    """Latch crossed flags. Returns whether anything latched."""
    crossed = False
    for interval in intervals:
        if (
            snapshot.ask is not None
            and interval.buy.active
            and not interval.buy.crossed
            and dm.compare(snapshot.ask, interval.buy.price) < 0
        ):
            interval.buy.crossed = True
            crossed = True
        if (
            snapshot.bid is not None
            and interval.sell.active
            and not interval.sell.crossed
            and dm.compare(snapshot.bid, interval.sell.price) > 0
        ):
            interval.sell.crossed = True
            crossed = True
    return crossed


def select_buys(state: StockState, snapshot: Snapshot) -> List[int]:
    intervals = state.intervals
    running = state.position
    selected: List[int] = []
    for i in range(len(intervals) - 1, -1, -1):
        interval = intervals[i]
        if (
            interval.buy.active
            and interval.buy.crossed
            and dm.compare(snapshot.ask, interval.buy.price) >= 0
            and running + state.shares_per_interval <= interval.position_limit
        ):
            selected.append(i)
            running += state.shares_per_interval
    selected.reverse()
    if selected and state.is_static_intervals:
        # Pull in every armed buy below the lowest selection.
        lowest = selected[-1]
        selected.extend(i for i in range(lowest + 1, len(intervals)) if intervals[i].buy.active)
    return selected


def select_sells(state: StockState, snapshot: Snapshot) -> List[int]:
    intervals = state.intervals
    running = state.position
    selected: List[int] = []
    for i, interval in enumerate(intervals):
        if (
            interval.sell.active
            and interval.sell.crossed
            and dm.compare(snapshot.bid, interval.sell.price) <= 0
            and running - state.shares_per_interval >= interval.position_limit
        ):
            selected.append(i)
            running -= state.shares_per_interval
    if selected and state.is_static_intervals:
        # Pull in every armed sell above the highest selection.
        highest = selected[0]
        selected = [i for i in range(highest) if intervals[i].sell.active] + selected
    return selected


def apply_fills(intervals: List[Interval], indexes: List[int], action: OrderAction) -> None:
    for i in indexes:
        interval = intervals[i]
        if action is OrderAction.BUY:
            interval.buy.deactivate()
            interval.sell.activate()
        else:
            interval.sell.deactivate()
            interval.buy.activate()


def shift_ladder(intervals: List[Interval], amount: Decimal) -> None:
    for interval in intervals:
        interval.shift(amount)


def correct_after_buy(state: StockState, indexes: List[int]) -> bool:
    """
    When the rung just below the lowest buy is still armed, the fills were not
    contiguous from the bottom: fill that rung instead of the top one and move
    the whole ladder up one spacing. No-op at the bottom edge.
    """
    intervals = state.intervals
    lowest = indexes[-1]
    if lowest >= len(intervals) - 1:
        return False
    below = intervals[lowest + 1]
    if not below.buy.active:
        return False
    below.buy.deactivate()
    below.sell.activate()
    top = intervals[indexes[0]]
    top.sell.deactivate()
    top.buy.activate()
    shift_ladder(intervals, state.space_between_intervals)
    return True


def correct_after_sell(state: StockState, indexes: List[int]) -> bool:
    """Mirror of correct_after_buy. No-op at the top edge."""
    intervals = state.intervals
    highest = indexes[0]
    if highest == 0:
        return False
    above = intervals[highest - 1]
    if not above.sell.active:
        return False
    above.sell.deactivate()
    above.buy.activate()
    bottom = intervals[indexes[-1]]
    bottom.buy.deactivate()
    bottom.sell.activate()
    shift_ladder(intervals, dm.subtract(dm.ZERO, state.space_between_intervals))
    return True


def threshold_close_reason(state: StockState, trading_end_passed: bool) -> Optional[CloseReason]:
    pct = state.exit_pnl_as_percentage
    if pct is not None:
        if state.profit_threshold is not None and dm.compare(pct, state.profit_threshold) >= 0:
            return CloseReason.WIN
        if state.loss_threshold is not None and dm.compare(pct, state.loss_threshold) <= 0:
            return CloseReason.LOSS
    if trading_end_passed:
        return CloseReason.TIME_EXPIRED
    return None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class ReconciliationEngine:
    """
    Runs ticks for the stocks of one driver. Holds no per-stock state of its
    own; everything lives on the StockState passed in.
    """

    def __init__(
        self,
        source: "SnapshotSource",
        executor: "PositionExecutor",
        store: Optional["AtomicStateStore"] = None,
        clock: Optional["MarketClock"] = None,
        metrics: Optional["ArbMetrics"] = None,
        config: Optional[EngineConfig] = None,
    ) -> None:
        self.source = source
        self.executor = executor
        self.store = store
        self.clock = clock
        self.metrics = metrics
        self.config = config or EngineConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        if log.isEnabledFor(level):
            log.log(level, dumps({"event": event, **kwargs}))

    def _trading_end_passed(self) -> bool:
        return self.clock is not None and self.clock.is_trading_end_passed()

    async def reconcile(self, stock: str, state: StockState) -> TickResult:
        if not state.is_open:
            raise PreconditionViolation(f"{stock}: cannot reconcile a closed state ({state.close_reason})")

        snapshot = await self.source.get_snapshot(stock)
        if self.metrics:
            self.metrics.ticks_total.labels(stock=stock).inc()
        self._log_event("tick", logging.DEBUG, stock=stock, bid=snapshot.bid, ask=snapshot.ask,
                        position=state.position)

        changed = is_snapshot_change(state, snapshot)
        trading_end = self._trading_end_passed()
        if changed or trading_end:
            self._record_quote(state, snapshot)
            self.executor.update_exit_pnl(state)
            reason = threshold_close_reason(state, trading_end) if state.has_thresholds else None
            if reason is not None and state.position != 0:
                if self._can_flatten(state, snapshot):
                    await self._close_on_threshold(stock, state, snapshot, reason)
                    return TickResult(snapshot=snapshot, crossed_threshold=True, close_reason=reason,
                                      new_position=state.position)
                self._log_event("threshold_close_deferred", logging.WARNING, stock=stock,
                                reason=reason.value, bid=snapshot.bid, ask=snapshot.ask)

        if is_unreliable_quote(state, snapshot):
            check_crossings(state.intervals, snapshot)
            if self.metrics:
                self.metrics.unreliable_quotes_total.labels(stock=stock).inc()
            self._log_event("quote_unreliable", logging.WARNING, stock=stock, bid=snapshot.bid,
                            ask=snapshot.ask, spacing=state.space_between_intervals)
            await self._persist(state, changed)
            return TickResult(snapshot=snapshot)

        if trading_end:
            # Session over: keep latching, never open or add to a position.
            check_crossings(state.intervals, snapshot)
            self._log_event("trading_end_no_entries", logging.DEBUG, stock=stock, position=state.position)
            await self._persist(state, changed)
            return TickResult(snapshot=snapshot)

        if check_crossings(state.intervals, snapshot):
            self._log_event("crossing", logging.DEBUG, stock=stock, bid=snapshot.bid, ask=snapshot.ask)

        action = OrderAction.BUY
        selected = select_buys(state, snapshot)
        if not selected:
            action = OrderAction.SELL
            selected = select_sells(state, snapshot)
        if not selected:
            await self._persist(state, changed)
            return TickResult(snapshot=snapshot)

        apply_fills(state.intervals, selected, action)
        if not state.is_static_intervals:
            corrected = (correct_after_buy if action is OrderAction.BUY else correct_after_sell)(state, selected)
            if corrected:
                direction = "up" if action is OrderAction.BUY else "down"
                if self.metrics:
                    self.metrics.grid_corrections_total.labels(stock=stock, direction=direction).inc()
                self._log_event("grid_corrected", stock=stock, direction=direction,
                                spacing=state.space_between_intervals)

        delta = state.shares_per_interval * len(selected)
        new_position = state.position + delta if action is OrderAction.BUY else state.position - delta
        self._log_event("intervals_filled", stock=stock, action=action.value, intervals=selected,
                        previous=state.position, new=new_position)
        if self.metrics:
            self.metrics.intervals_filled_total.labels(stock=stock, side=action.value).inc(len(selected))

        await self.executor.apply_position_change(state, new_position, snapshot)
        self.executor.update_exit_pnl(state)
        check_crossings(state.intervals, snapshot)
        await self._persist(state, True)
        return TickResult(snapshot=snapshot, filled_intervals=selected, action=action, new_position=new_position)

    @staticmethod
    def _record_quote(state: StockState, snapshot: Snapshot) -> None:
        if snapshot.bid is not None:
            state.last_bid = snapshot.bid
        if snapshot.ask is not None:
            state.last_ask = snapshot.ask

    @staticmethod
    def _can_flatten(state: StockState, snapshot: Snapshot) -> bool:
        quote = snapshot.bid if state.position > 0 else snapshot.ask
        return not dm.is_zero(quote)

    async def _close_on_threshold(self, stock: str, state: StockState, snapshot: Snapshot,
                                  reason: CloseReason) -> None:
        self._log_event("threshold_crossed", stock=stock, reason=reason.value,
                        exit_pnl_pct=state.exit_pnl_as_percentage, position=state.position)
        await self.executor.flatten(state, snapshot)
        self.executor.record_realized_pnl(state)
        await self.close_state(state, reason)

    async def close_state(self, state: StockState, reason: CloseReason) -> None:
        state.close(reason)
        if self.store is not None:
            await self.store.close(state)
        if self.metrics:
            self.metrics.states_closed_total.labels(stock=state.stock, reason=reason.value).inc()
        self._log_event("stock_closed", stock=state.stock, reason=reason.value,
                        realized_pnl_pct=state.realized_pnl_as_percentage)

    async def _persist(self, state: StockState, changed: bool) -> None:
        if changed and self.config.persist_on_change and self.store is not None:
            await self.store.save(state)
