"""LiveSyncClient: the assembled push + pull sync client.

Wires ConnectionManager → NotificationRouter → SyncController → RangeFetcher
and exposes the result as immutable snapshots.  The client is a scoped
resource: ``start()`` acquires the socket, ``aclose()`` releases everything on
every exit path.

Usage::

    async with LiveSyncClient.from_settings(get_settings()) as client:
        client.subscribe(lambda snap: print(len(snap.dataset), snap.is_connected))
        client.set_mode(FixedMode(TimeRange(start, end)))
        ...
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

import httpx

from src.config import Settings
from src.livesync.base import ConnectionState, LiveMode, Mode, SyncSnapshot, utc_now
from src.livesync.connection import ConnectionManager, SocketFactory, open_websocket
from src.livesync.controller import SnapshotListener, SyncController
from src.livesync.errors import TransportError
from src.livesync.fetcher import RangeFetcher
from src.livesync.router import NotificationRouter

logger = logging.getLogger("livesync.client")


class LiveSyncClient:
    """Keep a local view of the remote biosensor time series current.

    Args:
        connection: Push channel manager; its callbacks are bound here.
        router:     Message classifier.
        controller: Dataset owner.
        owned_http_client: httpx client created by ``from_settings`` and
                    closed by ``aclose()``.
        shutdown_grace: Seconds ``aclose()`` lets in-flight fetches finish
                    before cancelling them.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        router: NotificationRouter,
        controller: SyncController,
        owned_http_client: httpx.AsyncClient | None = None,
        shutdown_grace: float = 2.0,
    ) -> None:
        self._connection = connection
        self._router = router
        self._controller = controller
        self._owned_http_client = owned_http_client
        self._shutdown_grace = shutdown_grace
        self._closed = False

        connection.bind(
            on_open=self._handle_open,
            on_message=self._handle_message,
            on_close=self._handle_close,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        mode: Mode | None = None,
        socket_factory: SocketFactory = open_websocket,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "LiveSyncClient":
        """Build a client from application settings.

        When ``http_client`` is not given, one is created and owned by the
        client so range fetches reuse a connection pool.
        """
        owned = None
        if http_client is None:
            owned = http_client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        fetcher = RangeFetcher.from_settings(settings, http_client=http_client)
        router = NotificationRouter(
            update_types=settings.update_message_types,
            liveness_types=settings.liveness_message_types,
        )
        controller = SyncController(
            fetcher,
            mode=mode or LiveMode(lookback=timedelta(hours=settings.live_lookback_hours)),
            clock=clock,
        )
        connection = ConnectionManager.from_settings(settings, socket_factory=socket_factory)
        return cls(
            connection,
            router,
            controller,
            owned_http_client=owned,
            shutdown_grace=settings.shutdown_grace_seconds,
        )

    # ------------------------------------------------------------------
    # Consumer surface
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SyncSnapshot:
        return self._controller.snapshot

    @property
    def mode(self) -> Mode:
        return self._controller.mode

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    @property
    def router(self) -> NotificationRouter:
        return self._router

    @property
    def controller(self) -> SyncController:
        return self._controller

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        return self._controller.subscribe(listener)

    def set_mode(self, mode: Mode) -> None:
        self._controller.set_mode(mode)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        logger.info("Starting live sync against %s", self._connection.url)
        self._connection.connect()

    async def aclose(self) -> None:
        """Tear down the socket and timer; in-flight fetch results are discarded."""
        if self._closed:
            return
        self._closed = True
        await self._connection.aclose()
        self._controller.dispose()
        await self._controller.wait_idle(timeout=self._shutdown_grace)
        if self._owned_http_client is not None:
            await self._owned_http_client.aclose()
        logger.info("Live sync stopped")

    async def __aenter__(self) -> "LiveSyncClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Connection callbacks
    # ------------------------------------------------------------------

    def _handle_open(self) -> None:
        self._controller.on_connection_opened()

    def _handle_message(self, raw: str) -> None:
        self._controller.handle(self._router.route(raw))

    def _handle_close(self, error: TransportError | None) -> None:
        self._controller.on_connection_lost(error)
