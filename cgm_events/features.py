"""Numeric helpers shared by the detectors."""
from __future__ import annotations

import math
from typing import Final, Sequence

import numpy as np
import pandas as pd

from .models import DEFAULT_READING_MINUTES

_SECONDS_PER_DAY: Final[float] = 86400.0


def to_epoch_seconds(timestamps: pd.Series) -> np.ndarray:
    """Return float seconds since the epoch; NaT becomes NaN."""

    ts = pd.to_datetime(timestamps)
    if ts.dt.tz is not None:
        origin = pd.Timestamp("1970-01-01", tz="UTC")
    else:
        origin = pd.Timestamp("1970-01-01")
    seconds = (ts - origin) / pd.Timedelta(seconds=1)
    return seconds.to_numpy(dtype=float, na_value=np.nan)


def infer_interval_minutes(times: np.ndarray) -> float:
    """Median positive spacing between readings, in minutes."""

    if len(times) < 2:
        return DEFAULT_READING_MINUTES
    deltas = np.diff(times) / 60.0
    deltas = deltas[np.isfinite(deltas) & (deltas > 0)]
    if deltas.size == 0:
        return DEFAULT_READING_MINUTES
    fallback = float(np.median(deltas))
    if math.isnan(fallback) or fallback <= 0:
        return DEFAULT_READING_MINUTES
    return fallback


def rates_per_hour(times: np.ndarray, glucose: np.ndarray) -> np.ndarray:
    """Rate of change between consecutive readings in mg/dL per hour.

    ``rates[i]`` describes the step from reading ``i - 1`` to ``i``; the first
    entry and any step with a non-positive time delta are NaN.
    """

    rates = np.full(len(times), np.nan)
    if len(times) < 2:
        return rates
    dt_hours = np.diff(times) / 3600.0
    dg = np.diff(glucose)
    with np.errstate(divide="ignore", invalid="ignore"):
        step = np.where(dt_hours > 0, dg / dt_hours, np.nan)
    rates[1:] = step
    return rates


def minutes_below(times: np.ndarray, glucose: np.ndarray, start: int, end: int, threshold: float) -> float:
    """Minutes spent below ``threshold`` between two offsets, inclusive."""

    n = len(times)
    total = 0.0
    for idx in range(start, end + 1):
        value = glucose[idx]
        if math.isnan(value) or value >= threshold:
            continue
        if idx + 1 < n:
            total += times[idx + 1] - times[idx]
        elif idx > 0:
            total += times[idx] - times[idx - 1]
    return total / 60.0


def span_days(times: np.ndarray) -> float:
    valid = times[np.isfinite(times)]
    if valid.size < 2:
        return 0.0
    return float(valid.max() - valid.min()) / _SECONDS_PER_DAY


def round_statistic(value: float, digits: int) -> float:
    """Round half away from zero; exact zero and NaN pass through."""

    if value == 0 or math.isnan(value):
        return 0.0 if value == 0 else value
    factor = 10.0 ** digits
    return math.copysign(math.floor(abs(value) * factor + 0.5) / factor, value)


def mean_or_zero(values: Sequence[float]) -> float:
    finite = [v for v in values if not math.isnan(v)]
    if not finite:
        return 0.0
    return float(np.mean(finite))
