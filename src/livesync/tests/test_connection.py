"""Tests for the push-channel state machine and ConnectionManager."""

from __future__ import annotations

import asyncio

import pytest

from src.livesync.base import ConnectionState
from src.livesync.connection import ConnectionEvent, ConnectionManager, next_state
from src.livesync.errors import TransportError
from src.livesync.tests.conftest import FakeSocketFactory, settle


class Recorder:
    """Collects connection callbacks in arrival order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def on_open(self) -> None:
        self.events.append(("open", None))

    def on_message(self, raw: str) -> None:
        self.events.append(("message", raw))

    def on_close(self, error: TransportError | None) -> None:
        self.events.append(("close", error))

    def of(self, kind: str) -> list[object]:
        return [payload for k, payload in self.events if k == kind]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


def make_manager(
    socket_factory: FakeSocketFactory, recorder: Recorder, **kwargs: float
) -> ConnectionManager:
    return ConnectionManager(
        "wss://biosensor.test/ws/ouratimeseries",
        on_open=recorder.on_open,
        on_message=recorder.on_message,
        on_close=recorder.on_close,
        socket_factory=socket_factory,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestNextState:
    @pytest.mark.parametrize(
        "state,event,expected",
        [
            (ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT, ConnectionState.CONNECTING),
            (ConnectionState.CONNECTING, ConnectionEvent.OPENED, ConnectionState.OPEN),
            (ConnectionState.CONNECTING, ConnectionEvent.ERROR, ConnectionState.RECONNECT_WAITING),
            (ConnectionState.OPEN, ConnectionEvent.CLOSED, ConnectionState.RECONNECT_WAITING),
            (ConnectionState.OPEN, ConnectionEvent.ERROR, ConnectionState.RECONNECT_WAITING),
            (
                ConnectionState.RECONNECT_WAITING,
                ConnectionEvent.TIMER_FIRED,
                ConnectionState.CONNECTING,
            ),
            (ConnectionState.RECONNECT_WAITING, ConnectionEvent.CONNECT, ConnectionState.CONNECTING),
        ],
    )
    def test_valid_transitions(
        self, state: ConnectionState, event: ConnectionEvent, expected: ConnectionState
    ) -> None:
        assert next_state(state, event) is expected

    @pytest.mark.parametrize("state", list(ConnectionState))
    def test_teardown_from_any_state(self, state: ConnectionState) -> None:
        assert next_state(state, ConnectionEvent.TEARDOWN) is ConnectionState.DISCONNECTED

    @pytest.mark.parametrize(
        "state,event",
        [
            (ConnectionState.DISCONNECTED, ConnectionEvent.OPENED),
            (ConnectionState.DISCONNECTED, ConnectionEvent.TIMER_FIRED),
            (ConnectionState.OPEN, ConnectionEvent.CONNECT),
            (ConnectionState.OPEN, ConnectionEvent.TIMER_FIRED),
            (ConnectionState.CONNECTING, ConnectionEvent.CONNECT),
        ],
    )
    def test_invalid_transitions(self, state: ConnectionState, event: ConnectionEvent) -> None:
        assert next_state(state, event) is None


# ---------------------------------------------------------------------------
# Open / message delivery
# ---------------------------------------------------------------------------


class TestOpenAndDeliver:
    @pytest.mark.asyncio
    async def test_connect_opens_and_notifies(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        assert manager.state is ConnectionState.CONNECTING
        await settle()

        assert manager.is_open
        assert recorder.of("open") == [None]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_frames_delivered_in_order_and_bytes_decoded(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        await settle()

        socket_factory.current.push('{"type": "pong"}')
        socket_factory.current.push(b'{"type": "heartrate_update"}')
        socket_factory.current.push("third")
        await settle()

        assert recorder.of("message") == [
            '{"type": "pong"}',
            '{"type": "heartrate_update"}',
            "third",
        ]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_connect_while_open_is_a_no_op(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        manager.connect()
        await settle()
        manager.connect()
        await settle()

        assert socket_factory.attempts == 1
        assert recorder.of("open") == [None]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_callback_exception_does_not_break_stream(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        delivered: list[str] = []

        def flaky(raw: str) -> None:
            delivered.append(raw)
            if raw == "first":
                raise ValueError("consumer bug")

        manager = make_manager(socket_factory, recorder)
        manager.bind(on_open=recorder.on_open, on_message=flaky, on_close=recorder.on_close)
        manager.connect()
        await settle()
        socket_factory.current.push("first")
        socket_factory.current.push("second")
        await settle()

        assert delivered == ["first", "second"]
        assert manager.is_open
        await manager.aclose()


# ---------------------------------------------------------------------------
# Drops and reconnect
# ---------------------------------------------------------------------------


class TestReconnect:
    @pytest.mark.asyncio
    async def test_clean_close_schedules_one_reconnect(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        await settle()

        socket_factory.current.drop()
        await settle()

        assert manager.state is ConnectionState.RECONNECT_WAITING
        assert recorder.of("close") == [None]
        assert manager.reconnect_pending
        assert manager.reconnect_due_in() == pytest.approx(5.0, abs=0.5)
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_reported(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        await settle()

        socket_factory.current.drop(ConnectionResetError("reset by peer"))
        await settle()

        (error,) = recorder.of("close")
        assert isinstance(error, TransportError)
        assert "reset by peer" in str(error)
        assert manager.reconnect_pending
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_refused_connect_schedules_reconnect_without_open(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        socket_factory.refuse = 1
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        await settle()

        assert recorder.of("open") == []
        (error,) = recorder.of("close")
        assert isinstance(error, TransportError)
        assert manager.state is ConnectionState.RECONNECT_WAITING
        assert manager.reconnect_pending
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_timer_fires_and_reconnects(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        socket_factory.refuse = 1
        manager = make_manager(socket_factory, recorder, reconnect_delay=0.01)
        manager.connect()
        await asyncio.sleep(0.05)
        await settle()

        assert socket_factory.attempts == 2
        assert manager.is_open
        assert not manager.reconnect_pending
        assert recorder.of("open") == [None]
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_manual_connect_while_waiting_cancels_timer(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        socket_factory.refuse = 1
        manager = make_manager(socket_factory, recorder, reconnect_delay=0.02)
        manager.connect()
        await settle()
        assert manager.reconnect_pending

        manager.connect()
        assert not manager.reconnect_pending
        await settle()
        assert manager.is_open

        # The cancelled timer must not start a second attempt
        await asyncio.sleep(0.05)
        assert socket_factory.attempts == 2
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_backoff_grows_and_is_capped(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        socket_factory.refuse = 3
        manager = make_manager(
            socket_factory, recorder, reconnect_delay=1.0, backoff_factor=2.0, max_reconnect_delay=3.0
        )
        delays = []
        for _ in range(3):
            manager.connect()
            await settle()
            delays.append(manager.reconnect_due_in())

        assert delays == [
            pytest.approx(1.0, abs=0.2),
            pytest.approx(2.0, abs=0.2),
            pytest.approx(3.0, abs=0.2),
        ]

        # A successful open resets the backoff
        manager.connect()
        await settle()
        socket_factory.current.drop()
        await settle()
        assert manager.reconnect_due_in() == pytest.approx(1.0, abs=0.2)
        await manager.aclose()


# ---------------------------------------------------------------------------
# Teardown
# ---------------------------------------------------------------------------


class TestTeardown:
    @pytest.mark.asyncio
    async def test_aclose_cancels_pending_reconnect(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        socket_factory.refuse = 1
        manager = make_manager(socket_factory, recorder, reconnect_delay=0.01)
        manager.connect()
        await settle()
        assert manager.reconnect_pending

        await manager.aclose()
        await asyncio.sleep(0.05)

        assert manager.state is ConnectionState.DISCONNECTED
        assert not manager.reconnect_pending
        assert socket_factory.attempts == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_socket_silently(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        manager.connect()
        await settle()
        socket = socket_factory.current

        await manager.aclose()
        socket.push("late frame")
        await settle()

        assert socket.closed
        assert recorder.of("close") == []
        assert recorder.of("message") == []
        assert manager.is_closed

    @pytest.mark.asyncio
    async def test_aclose_while_connecting(self, recorder: Recorder) -> None:
        release = asyncio.Event()

        async def slow_factory(url: str) -> object:
            await release.wait()
            raise AssertionError("should have been cancelled")

        manager = ConnectionManager(
            "wss://biosensor.test/ws/ouratimeseries",
            on_open=recorder.on_open,
            on_close=recorder.on_close,
            socket_factory=slow_factory,
        )
        manager.connect()
        await settle()
        await manager.aclose()

        assert manager.state is ConnectionState.DISCONNECTED
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent_and_connect_after_raises(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        manager = make_manager(socket_factory, recorder)
        await manager.aclose()
        await manager.aclose()

        with pytest.raises(TransportError):
            manager.connect()

    @pytest.mark.asyncio
    async def test_async_context_manager(
        self, socket_factory: FakeSocketFactory, recorder: Recorder
    ) -> None:
        async with make_manager(socket_factory, recorder) as manager:
            await settle()
            assert manager.is_open
        assert manager.state is ConnectionState.DISCONNECTED
        assert socket_factory.current.closed
