"""Shared fixtures, fakes and sample payloads for live sync tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.config import Settings
from src.livesync.base import FetchResult, TimeRange, parse_records

# Canonical "now" for deterministic live-mode ranges
TEST_NOW = datetime(2026, 1, 4, 22, 18, 21, 700000, tzinfo=timezone.utc)


def make_record(
    minutes_ago: float | None = 0,
    value: float | str | None = 57,
    measurement_type: str = "heartrate",
) -> dict[str, Any]:
    """A wire-format record relative to TEST_NOW (``minutes_ago=None`` → null timestamp)."""
    ts = None
    if minutes_ago is not None:
        ts = (TEST_NOW - timedelta(minutes=minutes_ago)).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return {
        "timestamp": ts,
        "measurement_type": measurement_type,
        "measurement_value": value,
        "measurement_unit": "bpm",
        "sensor_mode": "awake",
        "data_source": "oura",
        "device_source": "oura_ring_4",
    }


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Settings / clock
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        api_base_url="https://biosensor.test",
        ws_url="wss://biosensor.test/ws/ouratimeseries",
    )


@pytest.fixture
def clock() -> "FakeClock":
    return FakeClock(TEST_NOW)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Sample payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def mixed_records() -> list[dict[str, Any]]:
    """Five records: three admissible, one null timestamp, one null value."""
    return [
        make_record(30, 55),
        make_record(20, "58"),
        make_record(None, 60),
        make_record(10, None),
        make_record(5, 42.5, "hrv"),
    ]


# ---------------------------------------------------------------------------
# Mock HTTP clients
# ---------------------------------------------------------------------------


def make_response(body: Any = None, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.is_success = 200 <= status_code < 300
    response.json = MagicMock(return_value=body)
    return response


@pytest.fixture
def mock_httpx_client() -> MagicMock:
    """Mock httpx.AsyncClient for testing the fetcher without real API calls."""
    client = MagicMock()
    client.get = AsyncMock(return_value=make_response({"data": []}))
    return client


# ---------------------------------------------------------------------------
# Controllable fetcher
# ---------------------------------------------------------------------------


class ControlledFetcher:
    """Fetcher whose responses are completed by the test, in any order."""

    def __init__(self) -> None:
        self.calls: list[tuple[TimeRange, asyncio.Future]] = []

    async def fetch(self, time_range: TimeRange) -> FetchResult:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self.calls.append((time_range, future))
        return await future

    @property
    def ranges(self) -> list[TimeRange]:
        return [r for r, _ in self.calls]

    def respond(
        self, index: int, records: list[dict[str, Any]], count: int | None = None, limit: int = 10000
    ) -> None:
        parsed = parse_records(records)
        result = FetchResult(
            records=parsed, count=len(parsed) if count is None else count, limit=limit
        )
        self.calls[index][1].set_result(result)

    def fail(self, index: int, exc: Exception) -> None:
        self.calls[index][1].set_exception(exc)


@pytest.fixture
def fetcher() -> ControlledFetcher:
    return ControlledFetcher()


# ---------------------------------------------------------------------------
# Fake push channel
# ---------------------------------------------------------------------------

_END = object()


class FakeSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, frame: str | bytes) -> None:
        self._queue.put_nowait(frame)

    def drop(self, exc: BaseException | None = None) -> None:
        """End the stream cleanly, or raise ``exc`` from the iterator."""
        self._queue.put_nowait(exc if exc is not None else _END)

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(_END)

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> str | bytes:
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeSocketFactory:
    """Socket factory recording every attempt; can be told to refuse."""

    def __init__(self) -> None:
        self.sockets: list[FakeSocket] = []
        self.attempts = 0
        self.refuse = 0

    async def __call__(self, url: str) -> FakeSocket:
        self.attempts += 1
        if self.refuse:
            self.refuse -= 1
            raise ConnectionRefusedError("connection refused")
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket

    @property
    def current(self) -> FakeSocket:
        return self.sockets[-1]


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()
