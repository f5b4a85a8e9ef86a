"""Pydantic models for the read-only sync status API."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Literal

from pydantic import Field, model_validator

from src.livesync.base import (
    FixedMode,
    LiveMode,
    Measurement,
    Mode,
    SyncSnapshot,
    TimeRange,
    ensure_utc,
)
from src.models.base import LiveSyncBase


# ---------- Measurements ----------

class MeasurementRead(LiveSyncBase):
    timestamp: datetime
    measurement_type: str | None = None
    measurement_value: float
    measurement_unit: str | None = None
    sensor_mode: str | None = None
    data_source: str | None = None
    device_source: str | None = None

    @classmethod
    def from_measurement(cls, m: Measurement) -> "MeasurementRead":
        return cls(
            timestamp=m.timestamp,
            measurement_type=m.measurement_type,
            measurement_value=m.value,
            measurement_unit=m.unit,
            sensor_mode=m.sensor_mode,
            data_source=m.data_source,
            device_source=m.device_source,
        )


# ---------- Mode ----------

class ModeRead(LiveSyncBase):
    kind: Literal["live", "fixed"]
    lookback_hours: float | None = None
    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def from_mode(cls, mode: Mode) -> "ModeRead":
        if isinstance(mode, FixedMode):
            return cls(kind="fixed", start=mode.range.start, end=mode.range.end)
        return cls(kind="live", lookback_hours=mode.lookback.total_seconds() / 3600)


class ModeUpdate(LiveSyncBase):
    kind: Literal["live", "fixed"]
    lookback_hours: float = Field(default=24.0, gt=0, le=24 * 365)
    start: datetime | None = None
    end: datetime | None = None

    @model_validator(mode="after")
    def check_range(self) -> "ModeUpdate":
        if self.kind == "fixed":
            if self.start is None or self.end is None:
                raise ValueError("fixed mode requires both start and end")
            if ensure_utc(self.start) > ensure_utc(self.end):
                raise ValueError("start must not be after end")
        return self

    def to_mode(self) -> Mode:
        if self.kind == "fixed":
            return FixedMode(TimeRange(start=self.start, end=self.end))  # type: ignore[arg-type]
        return LiveMode(lookback=timedelta(hours=self.lookback_hours))


# ---------- Snapshot ----------

class SnapshotRead(LiveSyncBase):
    dataset: list[MeasurementRead]
    count: int
    is_connected: bool
    connection_state: str
    error: str | None = None
    warning: str | None = None
    truncated: bool = False
    generation: int
    mode: ModeRead

    @classmethod
    def build(
        cls,
        snapshot: SyncSnapshot,
        connection_state: str,
        dataset: list[Measurement] | None = None,
    ) -> "SnapshotRead":
        entries = list(snapshot.dataset) if dataset is None else dataset
        return cls(
            dataset=[MeasurementRead.from_measurement(m) for m in entries],
            count=len(entries),
            is_connected=snapshot.is_connected,
            connection_state=connection_state,
            error=snapshot.error,
            warning=snapshot.warning,
            truncated=snapshot.truncated,
            generation=snapshot.generation,
            mode=ModeRead.from_mode(snapshot.mode),
        )
