"""Canonical data models for the biosensor live sync client.

Measurements arrive from two places (the push channel and the REST range
endpoint) in the same wire shape.  Both paths parse through
``Measurement.from_dict`` so the controller, the status API and any chart
consumer see one representation.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable

logger = logging.getLogger("livesync.base")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MeasurementType(str, Enum):
    """Measurement tags the server is known to emit.

    The server may add more; unknown tags are kept as plain strings on
    ``Measurement.measurement_type``.
    """

    HEARTRATE = "heartrate"
    HEARTRATE_SESSION = "heartrate_session"
    HRV = "hrv"
    MOTION_COUNT = "motion_count"


class ConnectionState(str, Enum):
    """Push channel lifecycle state owned by ConnectionManager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECT_WAITING = "reconnect_waiting"


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive input is assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp such as ``2026-01-04T22:18:21.700Z``.

    Returns None if the value is missing or unparseable.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning("Could not parse timestamp: %r", value)
        return None


def parse_value(value: object) -> float | None:
    """Coerce a measurement value (number or numeric string) to float.

    Booleans, non-numeric strings and NaN yield None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Measurement:
    """One biosensor reading.

    Attributes:
        timestamp:        UTC instant of the reading.
        measurement_type: Tag such as ``heartrate`` or ``hrv``.
        value:            Numeric reading.
        unit:             Unit string (e.g. ``bpm``, ``ms``).
        sensor_mode:      Ring/sensor mode (``awake``, ``workout``, ``live``).
        data_source:      Provider slug (e.g. ``oura``).
        device_source:    Hardware slug (e.g. ``oura_ring_4``).
    """

    timestamp: datetime | None = None
    measurement_type: str | None = None
    value: float | None = None
    unit: str | None = None
    sensor_mode: str | None = None
    data_source: str | None = None
    device_source: str | None = None

    @property
    def is_admissible(self) -> bool:
        """Only readings with both a timestamp and a value enter the dataset."""
        return self.timestamp is not None and self.value is not None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Measurement":
        """Build a Measurement from a wire record.

        Accepts the server's ``measurement_*`` keys as well as the short
        ``type`` / ``value`` / ``unit`` forms.
        """
        return cls(
            timestamp=parse_timestamp(raw.get("timestamp")),
            measurement_type=_optional_str(raw.get("measurement_type", raw.get("type"))),
            value=parse_value(raw.get("measurement_value", raw.get("value"))),
            unit=_optional_str(raw.get("measurement_unit", raw.get("unit"))),
            sensor_mode=_optional_str(raw.get("sensor_mode")),
            data_source=_optional_str(raw.get("data_source")),
            device_source=_optional_str(raw.get("device_source")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_instant(self.timestamp) if self.timestamp else None,
            "measurement_type": self.measurement_type,
            "measurement_value": self.value,
            "measurement_unit": self.unit,
            "sensor_mode": self.sensor_mode,
            "data_source": self.data_source,
            "device_source": self.device_source,
        }


def parse_records(records: Iterable[Any]) -> tuple[Measurement, ...]:
    """Parse wire records, skipping entries that are not JSON objects."""
    parsed = []
    skipped = 0
    for raw in records:
        if isinstance(raw, dict):
            parsed.append(Measurement.from_dict(raw))
        else:
            skipped += 1
    if skipped:
        logger.debug("Skipped %d non-object records", skipped)
    return tuple(parsed)


def admissible(records: Iterable[Measurement]) -> tuple[Measurement, ...]:
    """Return the admissible subset of ``records``, preserving order."""
    return tuple(m for m in records if m.is_admissible)


def format_instant(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with milliseconds and a ``Z`` suffix."""
    utc = ensure_utc(value)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


# ---------------------------------------------------------------------------
# Ranges and modes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeRange:
    """Query window.  Both bounds are inclusive per the server contract."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.start > self.end:
            raise ValueError(
                f"TimeRange start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True)
class LiveMode:
    """Follow the newest data: the range end is re-resolved to "now" per fetch."""

    lookback: timedelta = timedelta(hours=24)

    def __post_init__(self) -> None:
        if self.lookback <= timedelta(0):
            raise ValueError("LiveMode lookback must be positive")


@dataclass(frozen=True)
class FixedMode:
    """Show a caller-chosen, non-moving range."""

    range: TimeRange


Mode = LiveMode | FixedMode


def resolve_range(mode: Mode, now: datetime) -> TimeRange:
    """Resolve a mode to the concrete range to query at instant ``now``."""
    if isinstance(mode, FixedMode):
        return mode.range
    end = ensure_utc(now)
    return TimeRange(start=end - mode.lookback, end=end)


# ---------------------------------------------------------------------------
# Fetch bookkeeping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchRequest:
    """A range query tagged with the generation that issued it."""

    generation: int
    range: TimeRange


@dataclass(frozen=True)
class FetchResult:
    """Parsed range query response.

    Attributes:
        records: Every record the server returned, admissible or not.
        count:   Server-reported count (or ``len(records)`` when omitted).
        limit:   Server-advertised record limit (or the configured default).
    """

    records: tuple[Measurement, ...] = ()
    count: int = 0
    limit: int = 10000

    @property
    def truncated(self) -> bool:
        """True when the server may be holding back more data in the range."""
        return self.count >= self.limit


# ---------------------------------------------------------------------------
# Consumer snapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SyncSnapshot:
    """Immutable view republished to consumers after every accepted mutation.

    Attributes:
        dataset:      Admissible measurements from the last accepted update.
        is_connected: Whether the push channel is open.
        error:        Latest transient error message, or None.
        warning:      Non-blocking warning (record limit reached), or None.
        mode:         Mode the dataset was requested under.
        generation:   Generation of the last accepted update (0 = none yet).
        truncated:    Whether the last accepted fetch hit the record limit.
    """

    dataset: tuple[Measurement, ...] = ()
    is_connected: bool = False
    error: str | None = None
    warning: str | None = None
    mode: Mode = field(default_factory=LiveMode)
    generation: int = 0
    truncated: bool = False
