"""
Snapshot sources: where each tick's bid/ask comes from.

- LiveSnapshotSource: brokerage quote endpoint
- RandomWalkSnapshotSource: seeded one-tick random walk
- HistoricalSnapshotSource: ordered replay of recorded per-second quotes

One source is selected at startup by `create_snapshot_source`. Historical
series are loaded once per stock through a HistoricalSeriesCache owned by the
source, never through module globals.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from gridarb.config.config import Settings, SnapshotMode
from gridarb.core import decimal_math as dm
from gridarb.core.errors import ConfigurationError, SnapshotsExhaustedError
from gridarb.core.json_utils import loads
from gridarb.infra.logging_cfg import log_event
from gridarb.state.models import Snapshot

log = logging.getLogger("gridarb")


class SnapshotSource(ABC):
    """Supplies one quote per call for a stock."""

    async def open(self, stock: str) -> None:
        """Prepare per-stock resources. Default: nothing to do."""

    @abstractmethod
    async def get_snapshot(self, stock: str) -> Snapshot:
        ...

    def is_exhausted(self, stock: str) -> bool:
        return False

    async def close(self) -> None:
        return None


class LiveSnapshotSource(SnapshotSource):
    def __init__(self, client: Any, brokerage_ids: Optional[Dict[str, str]] = None) -> None:
        self._client = client
        self._brokerage_ids = dict(brokerage_ids or {})

    def register(self, stock: str, brokerage_id: str) -> None:
        self._brokerage_ids[stock] = brokerage_id

    async def get_snapshot(self, stock: str) -> Snapshot:
        return await self._client.get_snapshot(self._brokerage_ids.get(stock, stock))


class RandomWalkSnapshotSource(SnapshotSource):
    """
    Ask starts at `initial_price` and moves one tick per call: down with
    probability `down_probability`, else up. Bid is always ask minus one tick.
    The first call returns the initial price.
    """

    def __init__(
        self,
        initial_price: Decimal = Decimal("9.00"),
        tick_size: Decimal = Decimal("0.01"),
        down_probability: float = 0.49,
        seed: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.initial_price = dm.to_decimal(initial_price)
        self.tick_size = dm.to_decimal(tick_size)
        self.down_probability = down_probability
        self._rng = rng or random.Random(seed)
        self._prices: Dict[str, Decimal] = {}

    async def open(self, stock: str) -> None:
        self._prices.pop(stock, None)

    def next_ask(self, stock: str) -> Decimal:
        price = self._prices.get(stock)
        if price is None:
            price = self.initial_price
        elif self._rng.random() < self.down_probability:
            price = dm.subtract(price, self.tick_size)
        else:
            price = dm.add(price, self.tick_size)
        self._prices[stock] = price
        return price

    async def get_snapshot(self, stock: str) -> Snapshot:
        ask = self.next_ask(stock)
        return Snapshot(bid=dm.subtract(ask, self.tick_size), ask=ask)


@dataclass
class HistoricalSeries:
    snapshots: List[Snapshot]
    index: int = 0

    @property
    def remaining(self) -> int:
        return len(self.snapshots) - self.index


@dataclass
class HistoricalSeriesCache:
    """Loaded replay series keyed by stock, with their read cursors."""
    series: Dict[str, HistoricalSeries] = field(default_factory=dict)

    def get(self, stock: str) -> Optional[HistoricalSeries]:
        return self.series.get(stock)

    def put(self, stock: str, snapshots: List[Snapshot]) -> HistoricalSeries:
        s = HistoricalSeries(snapshots=snapshots)
        self.series[stock] = s
        return s

    def clear(self) -> None:
        self.series.clear()


def historical_file_path(historical_dir: str, stock: str, start_date: str, end_date: Optional[str] = None) -> Path:
    """`<dir>/<stock>/<date>.json` for one day, `<dir>/<stock>/<start>_<end>.json` for a range."""
    name = f"{start_date}_{end_date}.json" if end_date else f"{start_date}.json"
    return Path(historical_dir) / stock / name


def _parse_record(record: Dict[str, Any]) -> Snapshot:
    # Recorder output nests the quote under "snapshot"; flat records are accepted too.
    quote = record.get("snapshot", record)
    timestamp = record.get("timestamp", quote.get("timestamp"))
    return Snapshot.from_dict({"bid": quote.get("bid"), "ask": quote.get("ask"), "timestamp": timestamp})


def load_historical_snapshots(path: Path) -> List[Snapshot]:
    if not path.exists():
        raise ConfigurationError(f"historical quote log not found: {path}")
    data = loads(path.read_bytes())
    if not isinstance(data, list):
        raise ConfigurationError(f"historical quote log {path} must be a JSON array")
    return [_parse_record(r) for r in data]


class HistoricalSnapshotSource(SnapshotSource):
    def __init__(
        self,
        historical_dir: str,
        start_date: str,
        end_date: Optional[str] = None,
        cache: Optional[HistoricalSeriesCache] = None,
    ) -> None:
        self.historical_dir = historical_dir
        self.start_date = start_date
        self.end_date = end_date
        self.cache = cache if cache is not None else HistoricalSeriesCache()

    def path_for(self, stock: str) -> Path:
        return historical_file_path(self.historical_dir, stock, self.start_date, self.end_date)

    def _series(self, stock: str) -> HistoricalSeries:
        series = self.cache.get(stock)
        if series is None:
            snapshots = load_historical_snapshots(self.path_for(stock))
            series = self.cache.put(stock, snapshots)
            log_event(log, "historical_series_loaded", stock=stock, count=len(snapshots),
                      path=str(self.path_for(stock)))
        return series

    async def open(self, stock: str) -> None:
        self._series(stock)

    def first_snapshot(self, stock: str) -> Snapshot:
        series = self._series(stock)
        if not series.snapshots:
            raise SnapshotsExhaustedError(f"{stock}: historical quote log is empty")
        return series.snapshots[0]

    async def get_snapshot(self, stock: str) -> Snapshot:
        series = self._series(stock)
        if series.remaining <= 0:
            raise SnapshotsExhaustedError(f"{stock}: all {len(series.snapshots)} snapshots consumed")
        snapshot = series.snapshots[series.index]
        series.index += 1
        return snapshot

    def is_exhausted(self, stock: str) -> bool:
        return self._series(stock).remaining <= 0


_SourceBuilder = Callable[..., SnapshotSource]


def _live(settings: Settings, client: Any = None, **_: Any) -> SnapshotSource:
    if client is None:
        raise ConfigurationError("live snapshot mode requires a brokerage client")
    return LiveSnapshotSource(client)


def _random(settings: Settings, rng: Optional[random.Random] = None, **_: Any) -> SnapshotSource:
    return RandomWalkSnapshotSource(
        initial_price=settings.random_initial_price,
        tick_size=settings.random_tick_size,
        down_probability=settings.random_down_probability,
        seed=settings.random_seed,
        rng=rng,
    )


def _historical(settings: Settings, cache: Optional[HistoricalSeriesCache] = None, **_: Any) -> SnapshotSource:
    if not settings.historical_start_date:
        raise ConfigurationError("historical snapshot mode requires a start date")
    return HistoricalSnapshotSource(
        historical_dir=settings.historical_dir,
        start_date=settings.historical_start_date,
        end_date=settings.historical_end_date,
        cache=cache,
    )


class SnapshotSourceFactory:
    _registry: Dict[SnapshotMode, _SourceBuilder] = {
        SnapshotMode.LIVE: _live,
        SnapshotMode.RANDOM: _random,
        SnapshotMode.HISTORICAL: _historical,
    }

    @classmethod
    def create(cls, settings: Settings, **kwargs: Any) -> SnapshotSource:
        ctor = cls._registry.get(settings.snapshot_mode)
        if ctor is None:
            raise ConfigurationError(f"unknown snapshot mode: {settings.snapshot_mode}")
        return ctor(settings, **kwargs)


def create_snapshot_source(settings: Settings, **kwargs: Any) -> SnapshotSource:
    return SnapshotSourceFactory.create(settings, **kwargs)
