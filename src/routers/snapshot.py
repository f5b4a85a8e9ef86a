"""Read-only view of the canonical dataset, plus mode switching."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query

from src.dependencies import SyncClient
from src.livesync.series import DataSeries, filter_series
from src.models.sync import ModeRead, ModeUpdate, SnapshotRead

router = APIRouter(tags=["sync"])
logger = logging.getLogger("livesync.api")


@router.get("/snapshot", response_model=SnapshotRead)
async def get_snapshot(
    client: SyncClient,
    series: DataSeries | None = Query(default=None),
) -> Any:
    snapshot = client.snapshot
    dataset = filter_series(snapshot.dataset, series) if series else None
    return SnapshotRead.build(snapshot, client.connection_state.value, dataset=dataset)


@router.get("/mode", response_model=ModeRead)
async def get_mode(client: SyncClient) -> Any:
    return ModeRead.from_mode(client.mode)


@router.put("/mode", response_model=ModeRead)
async def update_mode(client: SyncClient, body: ModeUpdate) -> Any:
    mode = body.to_mode()
    logger.info("Mode update requested: %s", mode)
    client.set_mode(mode)
    return ModeRead.from_mode(client.mode)
