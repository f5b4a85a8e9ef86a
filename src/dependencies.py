"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.livesync.client import LiveSyncClient


async def get_sync_client(request: Request) -> LiveSyncClient:
    """Return the live sync client started by the app lifespan.

    Raises 503 while the client is not running (startup, shutdown).
    """
    client: LiveSyncClient | None = getattr(request.app.state, "sync_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Live sync client is not running")
    return client


# Annotated shortcuts for route signatures
SyncClient = Annotated[LiveSyncClient, Depends(get_sync_client)]
AppSettings = Annotated[Settings, Depends(get_settings)]
