"""Push-channel connection lifecycle.

State machine (``next_state``)::

    DISCONNECTED ──connect──▶ CONNECTING ──opened──▶ OPEN
                                  │                    │
                            error │                    │ closed / error
                                  ▼                    ▼
                     ┌────── RECONNECT_WAITING ◀───────┘
                     │            │
                     └─connect────┴──timer_fired──▶ CONNECTING

    teardown (any state) ──▶ DISCONNECTED, terminal

The manager owns the socket and the reconnect timer.  At most one socket is
live and at most one reconnect timer is pending; re-arming the timer cancels
the previous one.  After ``aclose()`` no callback fires again.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.config import Settings
from src.livesync.base import ConnectionState
from src.livesync.errors import TransportError

logger = logging.getLogger("livesync.connection")

SocketFactory = Callable[[str], Awaitable[Any]]
OpenCallback = Callable[[], None]
MessageCallback = Callable[[str], None]
CloseCallback = Callable[[TransportError | None], None]

_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class ConnectionEvent(str, Enum):
    CONNECT = "connect"
    OPENED = "opened"
    CLOSED = "closed"
    ERROR = "error"
    TIMER_FIRED = "timer_fired"
    TEARDOWN = "teardown"


_TRANSITIONS: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.RECONNECT_WAITING, ConnectionEvent.CONNECT): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.OPENED): ConnectionState.OPEN,
    (ConnectionState.CONNECTING, ConnectionEvent.CLOSED): ConnectionState.RECONNECT_WAITING,
    (ConnectionState.CONNECTING, ConnectionEvent.ERROR): ConnectionState.RECONNECT_WAITING,
    (ConnectionState.OPEN, ConnectionEvent.CLOSED): ConnectionState.RECONNECT_WAITING,
    (ConnectionState.OPEN, ConnectionEvent.ERROR): ConnectionState.RECONNECT_WAITING,
    (ConnectionState.RECONNECT_WAITING, ConnectionEvent.TIMER_FIRED): ConnectionState.CONNECTING,
}


def next_state(state: ConnectionState, event: ConnectionEvent) -> ConnectionState | None:
    """Return the state reached from ``state`` on ``event``.

    Returns None when the event is not valid in that state.
    """
    if event is ConnectionEvent.TEARDOWN:
        return ConnectionState.DISCONNECTED
    return _TRANSITIONS.get((state, event))


async def open_websocket(url: str) -> Any:
    """Default socket factory: a websockets client connection."""
    return await websocket_connect(url, open_timeout=10, ping_interval=20, ping_timeout=20)


class ConnectionManager:
    """Keep one push-channel socket alive, reconnecting after drops.

    Callbacks run synchronously on the event loop; an exception raised by a
    callback is logged and does not affect the connection.

    Args:
        url:                 Push channel URL.
        on_open:             Called once per successful open.
        on_message:          Called with every inbound text frame, in order.
        on_close:            Called on every drop with the TransportError (None
                             for a clean server close).
        socket_factory:      Async callable(url) → socket.  The socket must be
                             async-iterable over frames and have ``close()``.
        reconnect_delay:     Base delay before a reconnect attempt (seconds).
        backoff_factor:      Multiplier per consecutive failure (1.0 = fixed).
        max_reconnect_delay: Upper bound on the delay.
    """

    def __init__(
        self,
        url: str,
        on_open: OpenCallback | None = None,
        on_message: MessageCallback | None = None,
        on_close: CloseCallback | None = None,
        socket_factory: SocketFactory = open_websocket,
        reconnect_delay: float = 5.0,
        backoff_factor: float = 1.0,
        max_reconnect_delay: float = 60.0,
    ) -> None:
        self._url = url
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close
        self._socket_factory = socket_factory
        self._reconnect_delay = reconnect_delay
        self._backoff_factor = backoff_factor
        self._max_reconnect_delay = max_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._socket: Any = None
        self._task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._failures = 0
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ConnectionManager":
        return cls(
            settings.ws_url,
            reconnect_delay=settings.reconnect_delay_seconds,
            backoff_factor=settings.reconnect_backoff_factor,
            max_reconnect_delay=settings.reconnect_max_delay_seconds,
            **kwargs,
        )

    def bind(
        self,
        on_open: OpenCallback | None = None,
        on_message: MessageCallback | None = None,
        on_close: CloseCallback | None = None,
    ) -> None:
        """Attach lifecycle callbacks (replaces any set at construction)."""
        self._on_open = on_open
        self._on_message = on_message
        self._on_close = on_close

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def reconnect_due_in(self) -> float | None:
        """Seconds until the pending reconnect fires, or None."""
        if self._reconnect_handle is None:
            return None
        return max(0.0, self._reconnect_handle.when() - asyncio.get_running_loop().time())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the push channel unless a socket is already live or opening.

        Raises:
            TransportError: If the manager has been torn down.
        """
        if self._closed:
            raise TransportError("Connection manager has been torn down")
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.debug("connect() ignored: already %s", self._state.value)
            return
        self._cancel_reconnect()
        self._apply(ConnectionEvent.CONNECT)
        self._start_attempt()

    async def aclose(self) -> None:
        """Cancel the reconnect timer and close the socket.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._cancel_reconnect()
        self._apply(ConnectionEvent.TEARDOWN)

        socket, task = self._socket, self._task
        self._socket = None
        self._task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if socket is not None:
            try:
                await socket.close()
            except _TRANSPORT_ERRORS as exc:
                logger.debug("Error closing push channel: %s", exc)
        logger.info("Push channel torn down")

    async def __aenter__(self) -> "ConnectionManager":
        self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply(self, event: ConnectionEvent) -> bool:
        new_state = next_state(self._state, event)
        if new_state is None:
            logger.debug("Ignoring %s while %s", event.value, self._state.value)
            return False
        if new_state is not self._state:
            logger.debug("%s: %s → %s", event.value, self._state.value, new_state.value)
        self._state = new_state
        return True

    def _start_attempt(self) -> None:
        logger.info("Connecting to push channel: %s", self._url)
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            socket = await self._socket_factory(self._url)
        except _TRANSPORT_ERRORS as exc:
            self._drop(ConnectionEvent.ERROR, TransportError(f"Failed to open push channel: {exc}"))
            return

        if self._closed:
            await socket.close()
            return

        self._socket = socket
        self._apply(ConnectionEvent.OPENED)
        self._failures = 0
        logger.info("Push channel connected")
        self._emit(self._on_open)

        error: TransportError | None = None
        try:
            async for frame in socket:
                if self._closed:
                    break
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                self._emit(self._on_message, frame)
        except ConnectionClosed as exc:
            error = TransportError(f"Push channel closed abnormally: {exc}")
        except OSError as exc:
            error = TransportError(f"Push channel transport error: {exc}")
        finally:
            self._socket = None

        if self._closed:
            return
        self._drop(ConnectionEvent.ERROR if error else ConnectionEvent.CLOSED, error)

    def _drop(self, event: ConnectionEvent, error: TransportError | None) -> None:
        if self._closed:
            return
        self._apply(event)
        if error is not None:
            logger.warning("%s", error)
        else:
            logger.info("Push channel disconnected")
        self._emit(self._on_close, error)
        if not self._closed:
            self._schedule_reconnect()

    def _next_delay(self) -> float:
        delay = self._reconnect_delay * (self._backoff_factor ** self._failures)
        return min(delay, self._max_reconnect_delay)

    def _schedule_reconnect(self) -> None:
        self._cancel_reconnect()
        delay = self._next_delay()
        self._failures += 1
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            delay, self._on_reconnect_timer
        )
        logger.info("Reconnecting in %.1fs", delay)

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _on_reconnect_timer(self) -> None:
        self._reconnect_handle = None
        if self._closed:
            return
        if self._apply(ConnectionEvent.TIMER_FIRED):
            logger.info("Attempting to reconnect...")
            self._start_attempt()

    def _emit(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None or self._closed:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Push channel callback %r failed", callback)
