"""
Strategy driver with per-stock isolation.

One StockRunner task per stock. Runners share no mutable state; a runner that
fails is logged and the others keep trading.

Loop termination:
- live: market close, or a threshold close
- historical: the replay source reports exhaustion (checked before and after
  every tick), then the position is settled at the last quote
- random: `max_ticks` when set, or a threshold close
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from gridarb.config.config import Settings, SnapshotMode, StrategyParams
from gridarb.core import decimal_math as dm
from gridarb.core.errors import BrokerageError, PreconditionViolation
from gridarb.execution.reconciliation_engine import ReconciliationEngine, TickResult
from gridarb.infra.logging_cfg import log_event
from gridarb.market_data.snapshot_source import HistoricalSnapshotSource, SnapshotSource
from gridarb.monitoring.metrics import ArbMetrics
from gridarb.orchestrator.market_clock import MarketClock
from gridarb.state.models import CloseReason, Snapshot, StockState
from gridarb.state.state_store import StateStore
from gridarb.strategy.grid_builder import new_stock_state

log = logging.getLogger("gridarb")


@dataclass
class RunnerConfig:
    mode: SnapshotMode
    tick_interval_sec: float = 29.0
    max_ticks: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RunnerConfig":
        return cls(
            mode=settings.snapshot_mode,
            tick_interval_sec=settings.tick_interval_sec,
            max_ticks=settings.max_ticks,
        )


class StockRunner:
    def __init__(
        self,
        stock: str,
        state: StockState,
        engine: ReconciliationEngine,
        source: SnapshotSource,
        config: RunnerConfig,
        clock: Optional[MarketClock] = None,
    ) -> None:
        self.stock = stock
        self.state = state
        self.engine = engine
        self.source = source
        self.config = config
        self.clock = clock
        self.ticks = 0
        self.last_result: Optional[TickResult] = None
        self.error: Optional[BaseException] = None

    @property
    def is_live(self) -> bool:
        return self.config.mode is SnapshotMode.LIVE

    @property
    def is_replay(self) -> bool:
        return self.config.mode is SnapshotMode.HISTORICAL

    def _exhausted(self) -> bool:
        return self.is_replay and self.source.is_exhausted(self.stock)

    async def run(self) -> StockState:
        await self.source.open(self.stock)
        log_event(log, "runner_started", stock=self.stock, mode=self.config.mode.value,
                  position=self.state.position)

        if self.is_live and self.clock is not None:
            if not await self.clock.wait_until_open():
                log_event(log, "market_closed", stock=self.stock)
                return self.state

        loop = asyncio.get_running_loop()
        while self.state.is_open:
            if self._exhausted():
                await self.settle_replay()
                break
            if self.is_live and self.clock is not None and self.clock.is_closed():
                log_event(log, "market_closed", stock=self.stock)
                break

            started = loop.time()
            result = await self.engine.reconcile(self.stock, self.state)
            self.last_result = result
            self.ticks += 1

            if result.crossed_threshold:
                log_event(log, "runner_threshold_close", stock=self.stock,
                          reason=result.close_reason.value if result.close_reason else None)
                break
            if self._exhausted():
                await self.settle_replay()
                break
            if self.config.max_ticks and self.ticks >= self.config.max_ticks:
                break
            if self.is_live:
                remaining = self.config.tick_interval_sec - (loop.time() - started)
                if remaining > 0:
                    await asyncio.sleep(remaining)

        log_event(log, "runner_finished", stock=self.stock, ticks=self.ticks,
                  position=self.state.position, status=self.state.status.value)
        return self.state

    def settlement_snapshot(self) -> Snapshot:
        """Last replayed quote, with missing sides taken from the last recorded bid/ask."""
        last = self.last_result.snapshot if self.last_result else None
        bid = last.bid if last is not None and not dm.is_zero(last.bid) else self.state.last_bid
        ask = last.ask if last is not None and not dm.is_zero(last.ask) else self.state.last_ask
        return Snapshot(bid=bid, ask=ask, timestamp=last.timestamp if last is not None else None)

    async def settle_replay(self) -> None:
        """Flatten at the last replayed quote, book realized PnL and close the state."""
        if not self.state.is_open:
            return
        snapshot = self.settlement_snapshot()
        executor = self.engine.executor
        if self.state.position != 0:
            await executor.flatten(self.state, snapshot)
        executor.record_realized_pnl(self.state)
        await self.engine.close_state(self.state, CloseReason.TIME_EXPIRED)
        log_event(log, "replay_settled", stock=self.stock, ticks=self.ticks,
                  realized_pnl_pct=self.state.realized_pnl_as_percentage)


class StrategyDriver:
    def __init__(
        self,
        engine: ReconciliationEngine,
        source: SnapshotSource,
        config: RunnerConfig,
        clock: Optional[MarketClock] = None,
        metrics: Optional[ArbMetrics] = None,
    ) -> None:
        self.engine = engine
        self.source = source
        self.config = config
        self.clock = clock
        self.metrics = metrics
        self.runners: List[StockRunner] = []

    async def run(self, states: Dict[str, StockState]) -> Dict[str, StockRunner]:
        self.runners = [
            StockRunner(stock, state, self.engine, self.source, self.config, self.clock)
            for stock, state in states.items()
        ]
        await asyncio.gather(*(self._watch(r) for r in self.runners))
        return {r.stock: r for r in self.runners}

    async def _watch(self, runner: StockRunner) -> None:
        try:
            await runner.run()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            runner.error = exc
            log_event(log, "runner_failed", logging.ERROR, stock=runner.stock, err=str(exc),
                      error_type=type(exc).__name__, traceback=traceback.format_exc())
            if self.metrics:
                self.metrics.runner_failures_total.labels(stock=runner.stock).inc()
                if isinstance(exc, BrokerageError):
                    self.metrics.brokerage_errors_total.labels(
                        stock=runner.stock, error_type=type(exc).__name__
                    ).inc()


# ---------------------------------------------------------------------------
# State onboarding
# ---------------------------------------------------------------------------

def _params_for(stock: str, params: StrategyParams, overrides: Dict[str, Dict[str, Any]]) -> StrategyParams:
    return params.with_overrides(overrides.get(stock, {}))


async def prepare_live_states(
    settings: Settings,
    store: StateStore,
    client: Any,
    date: str,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, StockState]:
    """
    Load today's state for each stock, onboarding stocks that have none yet
    with a fresh grid around the current ask.
    """
    overrides = overrides or {}
    stocks = settings.stocks or store.list_active_stocks(date)
    states: Dict[str, StockState] = {}
    for stock in stocks:
        if store.has_closed(stock, date):
            log_event(log, "stock_already_closed", stock=stock, date=date)
            continue
        if store.exists(stock, date):
            state = store.load(stock, date)
            if not state.is_open:
                continue
            states[stock] = state
            continue
        snapshot = await client.get_snapshot(stock)
        if snapshot.ask is None:
            raise BrokerageError(f"{stock}: no ask quote to anchor a new grid")
        state = new_stock_state(stock, date, stock, snapshot.ask, _params_for(stock, settings.strategy, overrides))
        store.save(state)
        log_event(log, "stock_onboarded", stock=stock, date=date, initial_price=snapshot.ask)
        states[stock] = state
    return states


def historical_session_label(settings: Settings) -> str:
    if settings.historical_end_date:
        return f"{settings.historical_start_date}_{settings.historical_end_date}"
    return str(settings.historical_start_date)


def historical_states_for_date(
    settings: Settings,
    source: HistoricalSnapshotSource,
    overrides: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, StockState]:
    """Fresh states for replay, each anchored at the first recorded ask."""
    overrides = overrides or {}
    label = historical_session_label(settings)
    states: Dict[str, StockState] = {}
    for stock in settings.stocks:
        first = source.first_snapshot(stock)
        if first.ask is None:
            raise PreconditionViolation(f"{stock}: first historical snapshot has no ask")
        states[stock] = new_stock_state(stock, label, stock, first.ask, _params_for(stock, settings.strategy, overrides))
    return states


def random_states(settings: Settings, date: str, overrides: Optional[Dict[str, Dict[str, Any]]] = None) -> Dict[str, StockState]:
    overrides = overrides or {}
    return {
        stock: new_stock_state(stock, date, stock, settings.random_initial_price,
                               _params_for(stock, settings.strategy, overrides))
        for stock in settings.stocks
    }
