"""
State persistence helpers.

Layout: `<state_dir>/<date>/<stock>.json`, one file per stock per trading day.
Closing a state renames its file to `_<stock>_<W|L|N>.json` so the next
stock discovery scan skips it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List

from gridarb.core.errors import ConfigurationError, PreconditionViolation, StateNotFoundError
from gridarb.core.json_utils import dumps_pretty, loads
from gridarb.infra.logging_cfg import log_event
from gridarb.state.models import CloseReason, StockState

log = logging.getLogger("gridarb")

EXCLUDED_NAME_PARTS = ("results", "templates", "historical")


class StateStore:
    def __init__(self, state_dir: str) -> None:
        self.root = Path(state_dir)

    def folder(self, date: str) -> Path:
        return self.root / date

    def path_for(self, stock: str, date: str) -> Path:
        safe = stock.replace(":", "_").replace("/", "_")
        return self.folder(date) / f"{safe}.json"

    def closed_path_for(self, state: StockState) -> Path:
        if state.close_reason is None:
            raise PreconditionViolation(f"{state.stock}: state has no close reason")
        path = self.path_for(state.stock, state.date)
        return path.with_name(f"_{path.stem}_{state.close_reason.value}.json")

    def exists(self, stock: str, date: str) -> bool:
        return self.path_for(stock, date).exists()

    def has_closed(self, stock: str, date: str) -> bool:
        path = self.path_for(stock, date)
        return any(path.with_name(f"_{path.stem}_{r.value}.json").exists() for r in CloseReason)

    def load(self, stock: str, date: str) -> StockState:
        path = self.path_for(stock, date)
        if not path.exists():
            raise StateNotFoundError(f"no state file for {stock} on {date}: {path}")
        try:
            return StockState.from_dict(loads(path.read_bytes()))
        except (ValueError, KeyError, TypeError) as exc:
            raise ConfigurationError(f"corrupt state file {path}: {exc}") from exc

    def save(self, state: StockState) -> Path:
        path = self.path_for(state.stock, state.date)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_bytes(dumps_pretty(state.to_dict()))
        tmp.replace(path)
        return path

    def close(self, state: StockState) -> Path:
        """Write the closed state and move it out of the active listing."""
        path = self.save(state)
        target = self.closed_path_for(state)
        path.replace(target)
        log_event(log, "state_closed", stock=state.stock, date=state.date,
                  reason=state.close_reason.value, path=str(target))
        return target

    def list_active_stocks(self, date: str) -> List[str]:
        folder = self.folder(date)
        if not folder.is_dir():
            return []
        stocks = []
        for p in sorted(folder.glob("*.json")):
            name = p.stem
            if name.startswith("_"):
                continue
            if any(part in name for part in EXCLUDED_NAME_PARTS):
                continue
            stocks.append(name)
        return stocks


class AtomicStateStore:
    """
    Async wrapper around StateStore. File IO runs in the default executor.
    Calls for the same stock and date share a lock so their writes never
    interleave; different stocks proceed independently.
    """

    def __init__(self, store: StateStore) -> None:
        self._store = store
        self._locks: Dict[Path, asyncio.Lock] = {}

    @property
    def store(self) -> StateStore:
        return self._store

    def _lock_for(self, stock: str, date: str) -> asyncio.Lock:
        key = self._store.path_for(stock, date)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def load(self, stock: str, date: str) -> StockState:
        async with self._lock_for(stock, date):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._store.load, stock, date)

    async def save(self, state: StockState) -> Path:
        async with self._lock_for(state.stock, state.date):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._store.save, state)

    async def close(self, state: StockState) -> Path:
        async with self._lock_for(state.stock, state.date):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._store.close, state)
