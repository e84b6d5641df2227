"""
Market data package.

Live, random-walk and historical-replay snapshot sources.
"""

from gridarb.market_data.snapshot_source import (
    HistoricalSeriesCache,
    HistoricalSnapshotSource,
    LiveSnapshotSource,
    RandomWalkSnapshotSource,
    SnapshotSource,
    create_snapshot_source,
)

__all__ = [
    "HistoricalSeriesCache",
    "HistoricalSnapshotSource",
    "LiveSnapshotSource",
    "RandomWalkSnapshotSource",
    "SnapshotSource",
    "create_snapshot_source",
]
