"""GRID rapid-rise detector and its flag-based companions."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, Final

import numpy as np
import pandas as pd

from .episodes import flag_starts, point_tables, start_finder
from .features import rates_per_hour
from .models import RowRef, SubjectSlice
from .segmentation import SubjectSegmenter, resolve_positions, row_refs
from .validation import prepare_readings

_GRID_MIN_POINTS: Final[int] = 4
_PRIMARY_RATE: Final[float] = 95.0
_SECONDARY_RATE: Final[float] = 90.0
_EXCURSION_RISE: Final[float] = 70.0
_EXCURSION_FLOOR: Final[float] = 70.0
_EXCURSION_HORIZON_SECONDS: Final[float] = 2 * 3600.0

__all__ = ["FlagResult", "excursion", "grid", "mod_grid", "start_finder"]


@dataclass(frozen=True)
class FlagResult:
    """Binary flags per row plus the episode-start tables derived from them."""

    flags: pd.DataFrame
    episode_counts: pd.DataFrame
    episode_start_total: pd.DataFrame
    episode_start: pd.DataFrame
    points: tuple[RowRef, ...]


def _flag_result(
    segmenter: SubjectSegmenter,
    name: str,
    per_subject_flags: dict[str, np.ndarray],
) -> FlagResult:
    merged = segmenter.merge(per_subject_flags, fill_value=0).astype(np.int64)
    starts = {sid: flag_starts(flags) for sid, flags in per_subject_flags.items()}
    counts, start_total, start = point_tables(segmenter, starts)
    return FlagResult(
        flags=pd.DataFrame({name: merged}),
        episode_counts=counts,
        episode_start_total=start_total,
        episode_start=start,
        points=row_refs(segmenter.frame, start_total["index"]),
    )


def _run_flags(frame: pd.DataFrame, name: str, func: Callable[[SubjectSlice], np.ndarray]) -> FlagResult:
    df, _ = prepare_readings(frame)
    segmenter = SubjectSegmenter(df)
    flags = segmenter.map_subjects(func)
    return _flag_result(segmenter, name, flags)


def grid_flags(times: np.ndarray, glucose: np.ndarray, gap: float, threshold: float) -> np.ndarray:
    """GRID flags for one subject's time-ordered readings."""

    n = len(times)
    flags = np.zeros(n, dtype=np.int64)
    if n < _GRID_MIN_POINTS:
        return flags
    rates = rates_per_hour(times, glucose)
    gap_seconds = gap * 60.0
    for j in range(3, n):
        if np.isnan(glucose[j - 3 : j + 1]).any():
            continue
        r1, r2, r3 = rates[j], rates[j - 1], rates[j - 2]
        if np.isnan(r1) or np.isnan(r2) or np.isnan(r3):
            continue
        if r1 >= _PRIMARY_RATE and r2 >= _PRIMARY_RATE and glucose[j - 2] >= threshold:
            shift = 2
        elif glucose[j - 3] >= threshold and r3 >= _SECONDARY_RATE and (
            r2 >= _SECONDARY_RATE or r1 >= _SECONDARY_RATE
        ):
            shift = 3
        else:
            continue
        k = j
        while k < n and times[k] - times[j] <= gap_seconds:
            flags[k - shift] = 1
            k += 1
    return flags


def grid(frame: pd.DataFrame, *, gap: float = 15, threshold: float = 130) -> FlagResult:
    """Flag rapid rises using three consecutive rates of change."""

    return _run_flags(frame, "grid", lambda subject: grid_flags(subject.times, subject.glucose, gap, threshold))


def mod_grid_flags(
    times: np.ndarray,
    glucose: np.ndarray,
    seeds: np.ndarray,
    hours: float,
    gap: float,
) -> np.ndarray:
    """Move each seed back to the lowest reading within ``hours`` and flag ``gap`` minutes from there."""

    flags = np.zeros(len(times), dtype=np.int64)
    lookback = hours * 3600.0
    gap_seconds = gap * 60.0
    for seed in seeds:
        window_start = times[seed] - lookback
        first = int(seed)
        while first > 0 and times[first - 1] >= window_start:
            first -= 1
        min_idx = -1
        min_value = math.inf
        for k in range(first, int(seed) + 1):
            value = glucose[k]
            if not math.isnan(value) and value < min_value:
                min_value = value
                min_idx = k
        if min_idx < 0:
            continue
        k = min_idx
        while k < len(times) and times[k] <= times[min_idx] + gap_seconds:
            flags[k] = 1
            k += 1
    return flags


def mod_grid(frame: pd.DataFrame, grid_points: Any, *, hours: float = 2, gap: float = 15) -> FlagResult:
    """Re-anchor GRID points at the preceding minimum within ``hours``."""

    if hours < 0 or gap < 0:
        raise ValueError("hours and gap must be non-negative")
    df, _ = prepare_readings(frame)
    segmenter = SubjectSegmenter(df)
    seeds = segmenter.locate(resolve_positions(df, grid_points))
    empty = np.asarray([], dtype=np.int64)
    flags = segmenter.map_subjects(
        lambda subject: mod_grid_flags(
            subject.times, subject.glucose, seeds.get(subject.subject_id, empty), hours, gap
        )
    )
    return _flag_result(segmenter, "mod_grid", flags)


def excursion_flags(times: np.ndarray, glucose: np.ndarray, gap: float) -> np.ndarray:
    """Flag readings followed within two hours by a rise of more than 70 mg/dL."""

    n = len(times)
    flags = np.zeros(n, dtype=np.int64)
    if n < _GRID_MIN_POINTS:
        return flags
    gap_seconds = gap * 60.0
    for j in range(3, n):
        if flags[j] == 1 or math.isnan(glucose[j]) or math.isnan(glucose[j - 1]):
            continue
        if glucose[j - 1] < _EXCURSION_FLOOR:
            continue
        k = j + 1
        rises = False
        while k < n and times[k] - times[j] <= _EXCURSION_HORIZON_SECONDS:
            if glucose[k] > glucose[j] + _EXCURSION_RISE:
                rises = True
                break
            k += 1
        if not rises:
            continue
        k = j
        while k < n and times[k] - times[j] <= gap_seconds:
            flags[k] = 1
            k += 1
    return flags


def excursion(frame: pd.DataFrame, *, gap: float = 15) -> FlagResult:
    """Flag starts of large excursions above the preceding level."""

    return _run_flags(frame, "excursion", lambda subject: excursion_flags(subject.times, subject.glucose, gap))
