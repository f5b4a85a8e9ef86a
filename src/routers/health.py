"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.dependencies import AppSettings

router = APIRouter(tags=["system"])
logger = logging.getLogger("livesync.health")


@router.get("/health")
async def health_check(request: Request, settings: AppSettings) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Reports the push channel state as well; a dropped channel is "degraded",
    not down, because the client reconnects on its own.
    """
    client = getattr(request.app.state, "sync_client", None)
    if client is None:
        connection = "stopped"
        connected = False
    else:
        connection = client.connection_state.value
        connected = client.snapshot.is_connected

    if not connected:
        logger.debug("Health check: push channel %s", connection)

    return {
        "status": "healthy" if connected else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "push_channel": connection,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
