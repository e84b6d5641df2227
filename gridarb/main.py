"""
Entry point wiring all components.

    gridarb run                         trade every configured stock
    gridarb new-state PARA --price 9.87 create a fresh state file
    gridarb list-states                 list today's active stock states
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, List, Optional

from gridarb.config.config import Settings, SnapshotMode
from gridarb.config.per_stock_config import load_per_stock_overrides
from gridarb.core import decimal_math as dm
from gridarb.core.errors import ConfigurationError
from gridarb.core.utils import today_str
from gridarb.execution.brokerage import HttpBrokerageClient
from gridarb.execution.position_executor import PositionExecutor
from gridarb.execution.reconciliation_engine import EngineConfig, ReconciliationEngine
from gridarb.infra.logging_cfg import build_logger, log_event
from gridarb.market_data.snapshot_source import LiveSnapshotSource, create_snapshot_source
from gridarb.monitoring.metrics import ArbMetrics
from gridarb.monitoring.pnl_report import print_pnl_values
from gridarb.orchestrator.market_clock import MarketClock
from gridarb.orchestrator.strategy_driver import (
    RunnerConfig,
    StrategyDriver,
    historical_states_for_date,
    prepare_live_states,
    random_states,
)
from gridarb.state.models import StockState
from gridarb.state.state_store import AtomicStateStore, StateStore
from gridarb.strategy.grid_builder import new_stock_state

log = build_logger("gridarb")


def state_root(cfg: Settings) -> str:
    """Simulated runs keep their states apart from live ones."""
    if cfg.is_live:
        return cfg.state_dir
    return str(Path(cfg.state_dir) / "simulated")


async def run(cfg: Settings) -> Dict[str, StockState]:
    overrides = load_per_stock_overrides(cfg.per_stock_config)
    metrics = ArbMetrics()
    metrics.serve(cfg.metrics_port)

    store = StateStore(state_root(cfg))
    client: Optional[HttpBrokerageClient] = None
    if cfg.is_live:
        client = HttpBrokerageClient(cfg.brokerage_base_url, token=cfg.brokerage_token, timeout=cfg.http_timeout)
    source = create_snapshot_source(cfg, client=client)
    clock = MarketClock(cfg.market_open, cfg.market_close, cfg.trading_end) if cfg.is_live else None

    try:
        date = today_str()
        if cfg.snapshot_mode is SnapshotMode.LIVE:
            states = await prepare_live_states(cfg, store, client, date, overrides)
        elif cfg.snapshot_mode is SnapshotMode.HISTORICAL:
            states = historical_states_for_date(cfg, source, overrides)
        else:
            states = random_states(cfg, date, overrides)
        if not states:
            raise ConfigurationError("no stocks to trade: set ARB_STOCKS or create state files")
        if isinstance(source, LiveSnapshotSource):
            for stock, state in states.items():
                source.register(stock, state.brokerage_id)

        executor = PositionExecutor(
            brokerage=client,
            fill_poll_interval=cfg.fill_poll_interval_sec,
            fill_timeout=cfg.fill_timeout_sec,
            metrics=metrics,
        )
        engine = ReconciliationEngine(
            source,
            executor,
            store=AtomicStateStore(store),
            clock=clock,
            metrics=metrics,
            config=EngineConfig(persist_on_change=cfg.is_live),
        )
        driver = StrategyDriver(engine, source, RunnerConfig.from_settings(cfg), clock=clock, metrics=metrics)

        log_event(log, "startup", stocks=list(states), mode=cfg.snapshot_mode.value)
        runners = await driver.run(states)
        failed = [s for s, r in runners.items() if r.error is not None]
        if failed:
            log_event(log, "runners_failed", logging.ERROR, stocks=failed)
        return states
    finally:
        await source.close()
        if client is not None:
            await client.close()


async def main_run(cfg: Settings) -> int:
    loop = asyncio.get_running_loop()
    run_task = asyncio.create_task(run(cfg))

    def stop_all() -> None:
        if not run_task.done():
            run_task.cancel()

    # Windows doesn't support add_signal_handler, so rely on KeyboardInterrupt handling
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        states = await run_task
    except asyncio.CancelledError:
        log.info("Shutdown signal received, state files hold the last persisted tick")
        return 130
    print_pnl_values(states.values())
    return 0


def cmd_new_state(cfg: Settings, stock: str, price: str, date: Optional[str], force: bool) -> int:
    stock = stock.upper()
    date = date or today_str()
    store = StateStore(state_root(cfg))
    if store.exists(stock, date) and not force:
        raise ConfigurationError(f"state for {stock} on {date} already exists (use --force to replace)")
    params = cfg.strategy.with_overrides(load_per_stock_overrides(cfg.per_stock_config).get(stock, {}))
    state = new_stock_state(stock, date, stock, dm.to_decimal(price), params)
    path = store.save(state)
    log_event(log, "state_created", stock=stock, date=date, path=str(path), intervals=len(state.intervals))
    return 0


def cmd_list_states(cfg: Settings, date: Optional[str]) -> int:
    date = date or today_str()
    store = StateStore(state_root(cfg))
    stocks = store.list_active_stocks(date)
    for stock in stocks:
        print(stock)
    if stocks:
        print_pnl_values((store.load(s, date) for s in stocks), title=f"Active states {date}")
    return 0


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gridarb", description="Interval-grid stop-loss arb engine")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run the strategy for every configured stock")

    p_new = sub.add_parser("new-state", help="Create a fresh state file around an initial price")
    p_new.add_argument("stock")
    p_new.add_argument("--price", required=True, help="Initial price the grid is built around")
    p_new.add_argument("--date", default=None, help="Trading date (YYYY-MM-DD), default today in New York")
    p_new.add_argument("--force", action="store_true", help="Replace an existing state file")

    p_list = sub.add_parser("list-states", help="List active stock states")
    p_list.add_argument("--date", default=None)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = Settings.load()
    except ConfigurationError as exc:
        log.error(f"Configuration error: {exc}")
        return 2
    build_logger("gridarb", level=getattr(logging, cfg.log_level), file_path=cfg.log_file)

    try:
        if args.command == "new-state":
            return cmd_new_state(cfg, args.stock, args.price, args.date, args.force)
        if args.command == "list-states":
            return cmd_list_states(cfg, args.date)
        return asyncio.run(main_run(cfg))
    except ConfigurationError as exc:
        log.error(f"Configuration error: {exc}")
        return 2
    except KeyboardInterrupt:
        print("\nStopped by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
