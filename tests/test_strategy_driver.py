"""
Tests for StockRunner / StrategyDriver and state onboarding.

Tests cover:
- Replay termination after exactly N ticks with settlement at the last quote
- Random-walk runs bounded by max_ticks
- Threshold closes ending the loop
- Live pacing against a market clock
- Failure isolation between stock runners
- Live, historical and random onboarding
"""

import json
from decimal import Decimal
from typing import Dict, List

import pytest
from prometheus_client import CollectorRegistry

from conftest import ScriptedSnapshotSource, quote
from gridarb.config.config import SnapshotMode
from gridarb.core.errors import BrokerageError
from gridarb.execution.position_executor import PositionExecutor
from gridarb.execution.reconciliation_engine import ReconciliationEngine
from gridarb.market_data.snapshot_source import HistoricalSnapshotSource, RandomWalkSnapshotSource, SnapshotSource
from gridarb.monitoring.metrics import ArbMetrics
from gridarb.orchestrator.strategy_driver import (
    RunnerConfig,
    StockRunner,
    StrategyDriver,
    historical_session_label,
    historical_states_for_date,
    prepare_live_states,
    random_states,
)
from gridarb.state.models import CloseReason, OrderAction, StateStatus
from gridarb.state.state_store import AtomicStateStore, StateStore

D = Decimal


class MultiStockSource(SnapshotSource):
    """Scripted quotes per stock; stocks in `failing` raise on every call."""

    def __init__(self, quotes: Dict[str, List[tuple]], failing=()):
        self.quotes = {s: [quote(b, a) for b, a in q] for s, q in quotes.items()}
        self.index = {s: 0 for s in quotes}
        self.failing = set(failing)

    async def get_snapshot(self, stock):
        if stock in self.failing:
            raise BrokerageError(f"{stock}: quote endpoint down")
        snap = self.quotes[stock][self.index[stock]]
        self.index[stock] += 1
        return snap

    def is_exhausted(self, stock):
        return self.index.get(stock, 0) >= len(self.quotes.get(stock, []))


class FakeMarketClock:
    """Open session that reports closed after `close_after` is_closed() checks."""

    def __init__(self, close_after: int = 3, opened: bool = True):
        self.close_after = close_after
        self.opened = opened
        self.checks = 0

    async def wait_until_open(self, poll_sec: float = 30.0) -> bool:
        return self.opened

    def is_closed(self) -> bool:
        self.checks += 1
        return self.checks >= self.close_after

    def is_trading_end_passed(self) -> bool:
        return False


class MockQuoteClient:
    def __init__(self, ask="10.30"):
        self.ask = ask

    async def get_snapshot(self, brokerage_id):
        return quote("10.29", self.ask)


def build_runner(state, source, mode, store=None, clock=None, max_ticks=0):
    engine = ReconciliationEngine(source, PositionExecutor(), store=store, clock=clock)
    config = RunnerConfig(mode=mode, tick_interval_sec=0, max_ticks=max_ticks)
    return StockRunner(state.stock, state, engine, source, config, clock)


class TestStockRunner:

    @pytest.mark.asyncio
    async def test_replay_settles_at_last_quote(self, make_state, tmp_path):
        state = make_state()
        source = ScriptedSnapshotSource([("10.29", "10.30"), ("10.39", "10.40"), ("10.49", "10.50")])
        store = AtomicStateStore(StateStore(str(tmp_path)))
        runner = build_runner(state, source, SnapshotMode.HISTORICAL, store=store)

        await runner.run()

        assert runner.ticks == 3
        assert state.status is StateStatus.CLOSED
        assert state.close_reason is CloseReason.TIME_EXPIRED
        assert state.position == 0
        assert state.net_position_value == D("1.90")
        assert state.realized_pnl_as_percentage == D("0.3167")
        assert [e.action for e in state.trading_logs] == [OrderAction.BUY, OrderAction.SELL]
        assert state.trading_logs[-1].fill_price == D("10.49")
        assert (tmp_path / "2025-03-21" / "_TEST_N.json").exists()

    @pytest.mark.asyncio
    async def test_replay_settles_with_missing_final_bid(self, make_state, tmp_path):
        state = make_state()
        source = ScriptedSnapshotSource([("10.29", "10.30"), (None, "10.40")])
        store = AtomicStateStore(StateStore(str(tmp_path)))
        engine = ReconciliationEngine(source, PositionExecutor(), store=store)
        driver = StrategyDriver(engine, source, RunnerConfig(SnapshotMode.HISTORICAL, 0))

        runners = await driver.run({"TEST": state})

        assert runners["TEST"].error is None
        assert runners["TEST"].ticks == 2
        assert state.position == 0
        assert state.close_reason is CloseReason.TIME_EXPIRED
        assert state.trading_logs[-1].action is OrderAction.SELL
        assert state.trading_logs[-1].fill_price == D("10.29")
        assert state.net_position_value == D("-0.10")
        assert state.realized_pnl_as_percentage == D("-0.0167")
        assert (tmp_path / "2025-03-21" / "_TEST_N.json").exists()

    @pytest.mark.asyncio
    async def test_replay_flat_settlement(self, make_state):
        state = make_state()
        source = ScriptedSnapshotSource([("10.00", "10.01"), ("10.10", "10.11")])
        runner = build_runner(state, source, SnapshotMode.HISTORICAL)

        await runner.run()

        assert runner.ticks == 2
        assert state.trading_logs == []
        assert state.realized_pnl_as_percentage == D("0.0000")
        assert state.close_reason is CloseReason.TIME_EXPIRED

    @pytest.mark.asyncio
    async def test_empty_replay_closes_without_ticks(self, make_state):
        state = make_state()
        runner = build_runner(state, ScriptedSnapshotSource([]), SnapshotMode.HISTORICAL)

        await runner.run()

        assert runner.ticks == 0
        assert not state.is_open

    @pytest.mark.asyncio
    async def test_random_mode_stops_at_max_ticks(self, make_state):
        state = make_state(initial="9.00")
        source = RandomWalkSnapshotSource(initial_price=D("9.00"), seed=5)
        runner = build_runner(state, source, SnapshotMode.RANDOM, max_ticks=25)

        await runner.run()

        assert runner.ticks == 25
        assert state.is_open

    @pytest.mark.asyncio
    async def test_threshold_close_ends_loop(self, make_state):
        state = make_state(profit_threshold=D("0.5"), loss_threshold=D("-0.5"))
        source = ScriptedSnapshotSource([("10.29", "10.30"), ("9.85", "9.86"), ("9.50", "9.51")])
        runner = build_runner(state, source, SnapshotMode.RANDOM)

        await runner.run()

        assert runner.ticks == 2
        assert runner.last_result.close_reason is CloseReason.LOSS
        assert source.index == 2

    @pytest.mark.asyncio
    async def test_live_runs_until_market_close(self, make_state):
        state = make_state()
        clock = FakeMarketClock(close_after=3)
        source = ScriptedSnapshotSource([("10.29", "10.30")] * 5)
        runner = build_runner(state, source, SnapshotMode.LIVE, clock=clock)

        await runner.run()

        assert runner.ticks == 2
        assert state.position == 10
        assert state.is_open

    @pytest.mark.asyncio
    async def test_live_skips_closed_session(self, make_state):
        state = make_state()
        clock = FakeMarketClock(opened=False)
        source = ScriptedSnapshotSource([("10.29", "10.30")])
        runner = build_runner(state, source, SnapshotMode.LIVE, clock=clock)

        await runner.run()

        assert runner.ticks == 0
        assert source.index == 0


class TestStrategyDriver:

    @pytest.mark.asyncio
    async def test_failing_runner_does_not_stop_others(self, make_state):
        good = make_state(stock="GOOD")
        bad = make_state(stock="BAD")
        source = MultiStockSource(
            {"GOOD": [("10.29", "10.30"), ("10.49", "10.50")], "BAD": [("10.29", "10.30")]},
            failing={"BAD"},
        )
        metrics = ArbMetrics(CollectorRegistry())
        engine = ReconciliationEngine(source, PositionExecutor(), metrics=metrics)
        driver = StrategyDriver(engine, source, RunnerConfig(SnapshotMode.HISTORICAL, 0), metrics=metrics)

        runners = await driver.run({"GOOD": good, "BAD": bad})

        assert isinstance(runners["BAD"].error, BrokerageError)
        assert runners["GOOD"].error is None
        assert runners["GOOD"].ticks == 2
        assert good.close_reason is CloseReason.TIME_EXPIRED
        assert good.realized_pnl_as_percentage == D("0.3167")
        assert bad.is_open
        reg = metrics.get_registry()
        assert reg.get_sample_value("runner_failures_total", {"stock": "BAD"}) == 1.0
        assert reg.get_sample_value(
            "brokerage_errors_total", {"stock": "BAD", "error_type": "BrokerageError"}
        ) == 1.0
        assert reg.get_sample_value("states_closed_total", {"stock": "GOOD", "reason": "N"}) == 1.0

    @pytest.mark.asyncio
    async def test_stocks_run_independently(self, make_state):
        states = {s: make_state(stock=s) for s in ("A", "B")}
        source = MultiStockSource({
            "A": [("10.29", "10.30"), ("10.49", "10.50")],
            "B": [("9.70", "9.71"), ("9.60", "9.61"), ("9.70", "9.71")],
        })
        engine = ReconciliationEngine(source, PositionExecutor())
        driver = StrategyDriver(engine, source, RunnerConfig(SnapshotMode.HISTORICAL, 0))

        runners = await driver.run(states)

        assert runners["A"].ticks == 2
        assert runners["B"].ticks == 3
        assert states["A"].trading_logs[0].action is OrderAction.BUY
        assert states["B"].trading_logs[0].action is OrderAction.SELL
        assert all(not s.is_open for s in states.values())


class TestOnboarding:

    @pytest.mark.asyncio
    async def test_prepare_live_states(self, settings_factory, make_state, tmp_path):
        store = StateStore(str(tmp_path))
        existing = make_state(stock="PARA")
        existing.position = 10
        store.save(existing)
        closed = make_state(stock="MSFT")
        closed.close(CloseReason.WIN)
        store.close(closed)
        cfg = settings_factory(SnapshotMode.LIVE, stocks=["PARA", "MSFT", "AAPL"])

        states = await prepare_live_states(cfg, store, MockQuoteClient(ask="187.50"), "2025-03-21",
                                           {"AAPL": {"shares_per_interval": 25}})

        assert sorted(states) == ["AAPL", "PARA"]
        assert states["PARA"].position == 10
        aapl = states["AAPL"]
        assert aapl.initial_price == D("187.50")
        assert aapl.shares_per_interval == 25
        assert len(aapl.intervals) == 6
        assert store.exists("AAPL", "2025-03-21")

    @pytest.mark.asyncio
    async def test_prepare_live_states_from_folder(self, settings_factory, make_state, tmp_path):
        store = StateStore(str(tmp_path))
        store.save(make_state(stock="PARA"))
        cfg = settings_factory(SnapshotMode.LIVE, stocks=[])

        states = await prepare_live_states(cfg, store, MockQuoteClient(), "2025-03-21")

        assert list(states) == ["PARA"]

    @pytest.mark.asyncio
    async def test_onboarding_needs_an_ask(self, settings_factory, tmp_path):
        cfg = settings_factory(SnapshotMode.LIVE, stocks=["PARA"])
        with pytest.raises(BrokerageError):
            await prepare_live_states(cfg, StateStore(str(tmp_path)), MockQuoteClient(ask=None), "2025-03-21")

    def test_historical_states_anchor_at_first_ask(self, settings_factory, tmp_path):
        path = tmp_path / "PARA" / "2025-03-21.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps([{"bid": "9.86", "ask": "9.87"}, {"bid": "9.88", "ask": "9.89"}]))
        cfg = settings_factory(SnapshotMode.HISTORICAL, stocks=["PARA"], historical_dir=str(tmp_path))
        source = HistoricalSnapshotSource(cfg.historical_dir, cfg.historical_start_date)

        states = historical_states_for_date(cfg, source)

        state = states["PARA"]
        assert state.initial_price == D("9.87")
        assert state.date == "2025-03-21"
        assert state.intervals[5].sell.price == D("10.37")

    def test_session_label_for_range(self, settings_factory):
        cfg = settings_factory(SnapshotMode.HISTORICAL, historical_start_date="2025-03-17",
                               historical_end_date="2025-03-21")
        assert historical_session_label(cfg) == "2025-03-17_2025-03-21"

    def test_random_states(self, settings_factory):
        cfg = settings_factory(SnapshotMode.RANDOM, stocks=["A", "B"])
        states = random_states(cfg, "2025-03-21", {"B": {"is_static_intervals": True}})
        assert states["A"].initial_price == D("10.00")
        assert not states["A"].is_static_intervals
        assert states["B"].is_static_intervals
