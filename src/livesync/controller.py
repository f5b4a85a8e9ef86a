"""Sync controller: owner of the canonical dataset.

Every trigger (connection opened, update notification, mode change) bumps a
generation counter and starts a range fetch tagged with it.  A completed fetch
is accepted only if its generation is still the current one, so the dataset
always reflects the most recently *requested* range even when responses
arrive out of order.

All mutation happens in callbacks on the event loop, so no locks are needed.

Usage::

    controller = SyncController(fetcher)
    controller.subscribe(render)
    controller.on_connection_opened()
    controller.set_mode(FixedMode(TimeRange(start, end)))
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from src.livesync.base import (
    FetchRequest,
    FetchResult,
    LiveMode,
    Measurement,
    Mode,
    SyncSnapshot,
    admissible,
    resolve_range,
    utc_now,
)
from src.livesync.errors import FetchError, LimitExceededWarning, TransportError
from src.livesync.fetcher import RangeFetcher
from src.livesync.router import Notification, NotificationKind

logger = logging.getLogger("livesync.controller")

SnapshotListener = Callable[[SyncSnapshot], None]

_UNSET = object()


class SyncController:
    """Hold mode, dataset and generation; issue and arbitrate fetches.

    Args:
        fetcher: RangeFetcher used for every pull query.
        mode:    Initial mode (defaults to live with a 24 h lookback).
        clock:   Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        fetcher: RangeFetcher,
        mode: Mode | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._fetcher = fetcher
        self._mode: Mode = mode if mode is not None else LiveMode()
        self._clock = clock
        self._generation = 0
        self._snapshot = SyncSnapshot(mode=self._mode)
        self._listeners: list[SnapshotListener] = []
        self._inflight: set[asyncio.Task] = set()
        self._disposed = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> SyncSnapshot:
        return self._snapshot

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending_fetches(self) -> int:
        return len(self._inflight)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener for published snapshots.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def set_mode(self, mode: Mode) -> FetchRequest | None:
        """Switch mode; fetches immediately if the mode actually changed."""
        if mode == self._mode:
            logger.debug("Mode unchanged (%s); no fetch", mode)
            return None
        logger.info("Mode change: %s → %s", self._mode, mode)
        self._mode = mode
        return self._trigger_fetch()

    def on_connection_opened(self) -> FetchRequest | None:
        self._publish(is_connected=True, error=None)
        return self._trigger_fetch()

    def on_connection_lost(self, error: TransportError | None = None) -> None:
        message = str(error) if error is not None else self._snapshot.error
        self._publish(is_connected=False, error=message)

    def on_refetch_requested(self) -> FetchRequest | None:
        return self._trigger_fetch()

    def on_direct_data(self, records: tuple[Measurement, ...] | list[Measurement]) -> None:
        """Replace the dataset with a pushed payload, bypassing the fetcher.

        Bumping the generation also invalidates any fetch still in flight.
        """
        if self._disposed:
            return
        self._generation += 1
        dataset = admissible(records)
        logger.info(
            "Direct data accepted: %d of %d records admissible (generation %d)",
            len(dataset),
            len(records),
            self._generation,
        )
        self._publish(
            dataset=dataset, warning=None, generation=self._generation, truncated=False
        )

    def handle(self, notification: Notification) -> None:
        """Act on a routed push message."""
        if notification.kind is NotificationKind.REFETCH:
            self.on_refetch_requested()
        elif notification.kind is NotificationKind.DIRECT_DATA:
            self.on_direct_data(notification.records)
        elif notification.kind is NotificationKind.INVALID and notification.error is not None:
            self._publish(error=str(notification.error))

    # ------------------------------------------------------------------
    # Fetch protocol
    # ------------------------------------------------------------------

    def _trigger_fetch(self) -> FetchRequest | None:
        if self._disposed:
            return None
        self._generation += 1
        request = FetchRequest(
            generation=self._generation,
            range=resolve_range(self._mode, self._clock()),
        )
        task = asyncio.get_running_loop().create_task(self._run_fetch(request))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        logger.debug(
            "Fetch generation %d issued for %s → %s",
            request.generation,
            request.range.start.isoformat(),
            request.range.end.isoformat(),
        )
        return request

    async def _run_fetch(self, request: FetchRequest) -> None:
        try:
            result = await self._fetcher.fetch(request.range)
        except FetchError as exc:
            if self._is_current(request):
                logger.warning("Fetch generation %d failed: %s", request.generation, exc)
                self._publish(error=str(exc))
            else:
                logger.debug("Discarding failure of stale fetch generation %d", request.generation)
            return
        except Exception as exc:
            logger.exception("Fetch generation %d raised unexpectedly", request.generation)
            if self._is_current(request):
                self._publish(error=f"Range fetch failed: {exc}")
            return
        self._accept(request, result)

    def _is_current(self, request: FetchRequest) -> bool:
        return not self._disposed and request.generation == self._generation

    def _accept(self, request: FetchRequest, result: FetchResult) -> None:
        if not self._is_current(request):
            logger.debug(
                "Discarding stale fetch generation %d (current %d)",
                request.generation,
                self._generation,
            )
            return

        warning: str | None = None
        if result.truncated:
            warning = str(LimitExceededWarning(result.count, result.limit))
            logger.warning("%s", warning)

        dataset = admissible(result.records)
        logger.info(
            "Fetch generation %d accepted: %d of %d records admissible",
            request.generation,
            len(dataset),
            len(result.records),
        )
        self._publish(
            dataset=dataset,
            error=None,
            warning=warning,
            generation=request.generation,
            truncated=result.truncated,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait until every outstanding fetch task has finished.

        Args:
            timeout: Grace period in seconds.  Fetches still running after it
                     are cancelled.  None waits indefinitely.
        """
        while self._inflight:
            _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
            if pending:
                logger.debug("Cancelling %d outstanding fetch(es)", len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

    def dispose(self) -> None:
        """Stop publishing.  In-flight fetches may finish but are discarded."""
        self._disposed = True
        self._listeners.clear()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def _publish(
        self,
        *,
        dataset: tuple[Measurement, ...] | None = None,
        is_connected: bool | None = None,
        error: object = _UNSET,
        warning: object = _UNSET,
        generation: int | None = None,
        truncated: bool | None = None,
    ) -> None:
        if self._disposed:
            return
        current = self._snapshot
        self._snapshot = SyncSnapshot(
            dataset=current.dataset if dataset is None else dataset,
            is_connected=current.is_connected if is_connected is None else is_connected,
            error=current.error if error is _UNSET else error,  # type: ignore[arg-type]
            warning=current.warning if warning is _UNSET else warning,  # type: ignore[arg-type]
            mode=self._mode,
            generation=current.generation if generation is None else generation,
            truncated=current.truncated if truncated is None else truncated,
        )
        for listener in list(self._listeners):
            try:
                listener(self._snapshot)
            except Exception:
                logger.exception("Snapshot listener %r failed", listener)
