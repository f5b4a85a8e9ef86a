"""Biosensor live sync client.

Keeps a local copy of a remote biosensor time series consistent with the
server: a push channel announces new data, range queries pull it, and a
generation counter makes sure only the newest requested range is shown.

Core modules:
    base       Measurement, TimeRange, modes, snapshots
    errors     Error taxonomy (transport, protocol, fetch, limit warning)
    connection Push channel state machine and reconnect timer
    router     Inbound message classification
    fetcher    Range endpoint queries and truncation detection
    controller Dataset ownership and stale-response suppression
    client     Everything wired together as one scoped resource
    series     Per-series views of the dataset for chart consumers
"""

from src.livesync.base import (
    ConnectionState,
    FixedMode,
    LiveMode,
    Measurement,
    Mode,
    SyncSnapshot,
    TimeRange,
)
from src.livesync.client import LiveSyncClient
from src.livesync.controller import SyncController
from src.livesync.connection import ConnectionManager
from src.livesync.fetcher import RangeFetcher
from src.livesync.router import NotificationRouter

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "FixedMode",
    "LiveMode",
    "LiveSyncClient",
    "Measurement",
    "Mode",
    "NotificationRouter",
    "RangeFetcher",
    "SyncController",
    "SyncSnapshot",
    "TimeRange",
]
