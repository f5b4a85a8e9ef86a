"""Split the canonical dataset into the series a chart consumer plots."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable

from src.livesync.base import Measurement, MeasurementType


class DataSeries(str, Enum):
    HR_NON_SESSION = "hr_non_session"
    HR_SESSION = "hr_session"
    HRV = "hrv"
    MOTION_COUNT = "motion_count"

    @property
    def measurement_type(self) -> MeasurementType:
        return _SERIES_TYPES[self]


_SERIES_TYPES: dict[DataSeries, MeasurementType] = {
    DataSeries.HR_NON_SESSION: MeasurementType.HEARTRATE,
    DataSeries.HR_SESSION: MeasurementType.HEARTRATE_SESSION,
    DataSeries.HRV: MeasurementType.HRV,
    DataSeries.MOTION_COUNT: MeasurementType.MOTION_COUNT,
}


def filter_series(dataset: Iterable[Measurement], series: DataSeries) -> list[Measurement]:
    wanted = series.measurement_type.value
    return [m for m in dataset if m.measurement_type == wanted]


def split_series(dataset: Iterable[Measurement]) -> dict[DataSeries, list[Measurement]]:
    """Group measurements by series in one pass; unknown types are dropped."""
    by_type = {t.value: s for s, t in _SERIES_TYPES.items()}
    grouped: dict[DataSeries, list[Measurement]] = {s: [] for s in DataSeries}
    for m in dataset:
        series = by_type.get(m.measurement_type or "")
        if series is not None:
            grouped[series].append(m)
    return grouped


def series_values(entries: Iterable[Measurement]) -> tuple[list[datetime], list[float]]:
    """Return parallel (timestamps, values) lists for admissible entries."""
    timestamps: list[datetime] = []
    values: list[float] = []
    for m in entries:
        if m.timestamp is None or m.value is None:
            continue
        timestamps.append(m.timestamp)
        values.append(m.value)
    return timestamps, values
