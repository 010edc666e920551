"""Peak localization: local maxima, windowed extrema and the maxima-refinement pipeline."""
from __future__ import annotations

import math
import operator
from dataclasses import dataclass
from typing import Any, Callable, Final

import numpy as np
import pandas as pd

from .episodes import point_tables
from .features import to_epoch_seconds
from .grid import grid, mod_grid
from .models import GLUCOSE_COLUMN, SUBJECT_COLUMN, TIME_COLUMN, RowRef
from .segmentation import ROW_TABLE_ATTR, SubjectSegmenter, resolve_positions, row_refs, tag_positions
from .validation import prepare_readings

_LOCAL_MAXIMA_MIN_POINTS: Final[int] = 5
_NEW_MAXIMA_HORIZON_SECONDS: Final[float] = 2 * 3600.0
_TRANSFORM_HORIZON_SECONDS: Final[float] = 4 * 3600.0

TRANSFORM_COLUMNS: Final[list[str]] = [
    SUBJECT_COLUMN,
    "grid_time",
    "grid_glucose",
    "maxima_time",
    "maxima_glucose",
    "grid_index",
    "maxima_index",
]
BETWEEN_COLUMNS: Final[list[str]] = [
    SUBJECT_COLUMN,
    "grid_time",
    "grid_glucose",
    "maxima_time",
    "maxima_glucose",
    "time_to_peak_minutes",
    "grid_index",
    "maxima_index",
]


@dataclass(frozen=True)
class LocalMaximaResult:
    local_maxima_vector: pd.DataFrame
    merged_results: pd.DataFrame
    points: tuple[RowRef, ...]


@dataclass(frozen=True)
class ExtremaResult:
    """Windowed extremum positions and their episode-start tables."""

    indices: pd.DataFrame
    episode_counts: pd.DataFrame
    episode_start_total: pd.DataFrame
    episode_start: pd.DataFrame
    points: tuple[RowRef, ...]


@dataclass(frozen=True)
class BetweenMaximaResult:
    results: pd.DataFrame
    episode_counts: pd.DataFrame


def _load(frame: pd.DataFrame) -> tuple[pd.DataFrame, SubjectSegmenter]:
    df, _ = prepare_readings(frame)
    return df, SubjectSegmenter(df)


def _points_frame(segmenter: SubjectSegmenter, per_subject: dict[str, np.ndarray]) -> pd.DataFrame:
    _, start_total, _ = point_tables(segmenter, per_subject)
    return start_total


def local_maxima_offsets(glucose: np.ndarray) -> np.ndarray:
    """Offsets with two non-negative steps before and two non-positive steps after."""

    n = len(glucose)
    if n < _LOCAL_MAXIMA_MIN_POINTS:
        return np.asarray([], dtype=np.int64)
    diff = np.diff(glucose)
    found = []
    for i in range(3, n - 2):
        window = diff[i - 2 : i + 2]
        if np.isnan(window).any():
            continue
        if window[0] >= 0 and window[1] >= 0 and window[2] <= 0 and window[3] <= 0:
            found.append(i)
    return np.asarray(found, dtype=np.int64)


def find_local_maxima(frame: pd.DataFrame) -> LocalMaximaResult:
    df, segmenter = _load(frame)
    offsets = segmenter.map_subjects(lambda subject: local_maxima_offsets(subject.glucose))
    merged = _points_frame(segmenter, offsets)
    return LocalMaximaResult(
        local_maxima_vector=tag_positions(pd.DataFrame({"local_maxima": merged["index"].to_numpy()}), df),
        merged_results=merged,
        points=row_refs(df, merged["index"]),
    )


def window_extrema(
    times: np.ndarray,
    glucose: np.ndarray,
    seeds: np.ndarray,
    hours: float,
    *,
    forward: bool,
    better: Callable[[float, float], bool],
) -> np.ndarray:
    """Best reading per seed within ``hours``, cut short at the neighbouring seed.

    The scan runs away from the seed and keeps the first reading that is
    strictly better than every earlier one.
    """

    n = len(times)
    span = hours * 3600.0
    seeds = np.sort(np.asarray(seeds, dtype=np.int64))
    found = []
    for pos, seed in enumerate(seeds):
        seed = int(seed)
        if forward:
            bound = seed
            while bound + 1 < n and times[bound + 1] <= times[seed] + span:
                bound += 1
            if pos + 1 < len(seeds):
                neighbour = int(seeds[pos + 1])
                if times[neighbour] - times[seed] < span:
                    bound = min(bound, neighbour)
            scan = range(seed, bound + 1)
        else:
            bound = seed
            while bound - 1 >= 0 and times[bound - 1] >= times[seed] - span:
                bound -= 1
            if pos > 0:
                neighbour = int(seeds[pos - 1])
                if times[seed] - times[neighbour] < span:
                    bound = max(bound, neighbour)
            scan = range(seed, bound - 1, -1)

        best_idx = -1
        best_value = math.nan
        for k in scan:
            value = glucose[k]
            if math.isnan(value):
                continue
            if best_idx < 0 or better(value, best_value):
                best_idx = k
                best_value = value
        if best_idx >= 0:
            found.append(best_idx)
    return np.unique(np.asarray(found, dtype=np.int64))


def _find_extrema(
    frame: pd.DataFrame,
    start_points: Any,
    hours: float,
    *,
    forward: bool,
    better: Callable[[float, float], bool],
    column: str,
) -> ExtremaResult:
    if hours < 0:
        raise ValueError("hours must be non-negative")
    df, segmenter = _load(frame)
    seeds = segmenter.locate(resolve_positions(df, start_points))
    empty = np.asarray([], dtype=np.int64)
    offsets = segmenter.map_subjects(
        lambda subject: window_extrema(
            subject.times,
            subject.glucose,
            seeds.get(subject.subject_id, empty),
            hours,
            forward=forward,
            better=better,
        )
    )
    counts, start_total, start = point_tables(segmenter, offsets)
    return ExtremaResult(
        indices=tag_positions(pd.DataFrame({column: start_total["index"].to_numpy()}), df),
        episode_counts=counts,
        episode_start_total=start_total,
        episode_start=start,
        points=row_refs(df, start_total["index"]),
    )


def find_max_after_hours(frame: pd.DataFrame, start_points: Any, hours: float) -> ExtremaResult:
    return _find_extrema(frame, start_points, hours, forward=True, better=operator.gt, column="max_indices")


def find_max_before_hours(frame: pd.DataFrame, start_points: Any, hours: float) -> ExtremaResult:
    return _find_extrema(frame, start_points, hours, forward=False, better=operator.gt, column="max_indices")


def find_min_after_hours(frame: pd.DataFrame, start_points: Any, hours: float) -> ExtremaResult:
    return _find_extrema(frame, start_points, hours, forward=True, better=operator.lt, column="min_indices")


def find_min_before_hours(frame: pd.DataFrame, start_points: Any, hours: float) -> ExtremaResult:
    return _find_extrema(frame, start_points, hours, forward=False, better=operator.lt, column="min_indices")


def reconcile_maxima(
    times: np.ndarray,
    glucose: np.ndarray,
    seeds: np.ndarray,
    candidates: np.ndarray,
    horizon_seconds: float = _NEW_MAXIMA_HORIZON_SECONDS,
) -> np.ndarray:
    """For each seed keep the highest of itself and the local maxima within the horizon.

    Candidates are compared in time order after the seed, so on equal glucose
    the earliest position wins.
    """

    candidates = np.sort(np.asarray(candidates, dtype=np.int64))
    winners = []
    for seed in np.asarray(seeds, dtype=np.int64):
        seed = int(seed)
        best_idx = seed
        best_value = glucose[seed]
        for c in candidates:
            c = int(c)
            if c == seed or not times[seed] <= times[c] <= times[seed] + horizon_seconds:
                continue
            value = glucose[c]
            if math.isnan(value):
                continue
            if math.isnan(best_value) or value > best_value:
                best_idx = c
                best_value = value
        winners.append(best_idx)
    return np.unique(np.asarray(winners, dtype=np.int64))


def find_new_maxima(frame: pd.DataFrame, seed_points: Any, local_maxima_points: Any) -> pd.DataFrame:
    """Reconcile windowed maxima with nearby local maxima."""

    df, segmenter = _load(frame)
    seeds = segmenter.locate(resolve_positions(df, seed_points))
    candidates = segmenter.locate(resolve_positions(df, local_maxima_points))
    empty = np.asarray([], dtype=np.int64)
    winners = segmenter.map_subjects(
        lambda subject: reconcile_maxima(
            subject.times,
            subject.glucose,
            seeds.get(subject.subject_id, empty),
            candidates.get(subject.subject_id, empty),
        )
    )
    return _points_frame(segmenter, winners)


def _optional_index(table: pd.DataFrame) -> np.ndarray:
    if "index" in table.columns:
        return pd.to_numeric(table["index"], errors="coerce").to_numpy(dtype=float)
    return np.full(len(table), np.nan)


def _require_columns(table: pd.DataFrame, columns: list[str], name: str) -> None:
    missing = [column for column in columns if column not in table.columns]
    if missing:
        raise ValueError(f"{name} is missing columns: {', '.join(missing)}")


def transform_df(grid_points: pd.DataFrame, maxima: pd.DataFrame) -> pd.DataFrame:
    """Pair each GRID point with the highest maximum within the following four hours."""

    for table, name in ((grid_points, "grid_points"), (maxima, "maxima")):
        _require_columns(table, [SUBJECT_COLUMN, "time", "glucose"], name)

    grid_subjects = grid_points[SUBJECT_COLUMN].astype(str).to_numpy()
    grid_seconds = to_epoch_seconds(grid_points["time"])
    grid_glucose = pd.to_numeric(grid_points["glucose"], errors="coerce").to_numpy(dtype=float)
    grid_index = _optional_index(grid_points)

    max_subjects = maxima[SUBJECT_COLUMN].astype(str).to_numpy()
    max_seconds = to_epoch_seconds(maxima["time"])
    max_glucose = pd.to_numeric(maxima["glucose"], errors="coerce").to_numpy(dtype=float)
    max_index = _optional_index(maxima)
    order = np.argsort(max_seconds, kind="stable")

    rows = []
    for g in range(len(grid_points)):
        if math.isnan(grid_seconds[g]) or math.isnan(grid_glucose[g]):
            continue
        best = -1
        best_value = -1.0
        for m in order:
            if max_subjects[m] != grid_subjects[g]:
                continue
            delta = max_seconds[m] - grid_seconds[g]
            if 0 <= delta <= _TRANSFORM_HORIZON_SECONDS and max_glucose[m] > best_value:
                best = int(m)
                best_value = max_glucose[m]
        if best < 0:
            continue
        rows.append(
            {
                SUBJECT_COLUMN: grid_subjects[g],
                "grid_time": grid_points["time"].iloc[g],
                "grid_glucose": grid_glucose[g],
                "maxima_time": maxima["time"].iloc[best],
                "maxima_glucose": max_glucose[best],
                "grid_index": grid_index[g],
                "maxima_index": max_index[best],
            }
        )

    result = pd.DataFrame(rows, columns=TRANSFORM_COLUMNS)
    for column in ("grid_index", "maxima_index"):
        result[column] = pd.array(
            [None if math.isnan(value) else int(value) for value in result[column]], dtype="Int64"
        )
    token = grid_points.attrs.get(ROW_TABLE_ATTR) or maxima.attrs.get(ROW_TABLE_ATTR)
    if token is not None:
        result.attrs[ROW_TABLE_ATTR] = token
    return result


def detect_between_maxima(frame: pd.DataFrame, transformed: pd.DataFrame) -> BetweenMaximaResult:
    """Split consecutive GRID points that share a maximum at the peak between them."""

    _require_columns(transformed, TRANSFORM_COLUMNS[:5], "transformed")
    df, segmenter = _load(frame)
    time_column = df[TIME_COLUMN]
    glucose_all = df[GLUCOSE_COLUMN].to_numpy(dtype=float)

    pairs = transformed.copy()
    pairs[SUBJECT_COLUMN] = pairs[SUBJECT_COLUMN].astype(str)
    pairs["_grid_seconds"] = to_epoch_seconds(pairs["grid_time"])
    pairs["_maxima_seconds"] = to_epoch_seconds(pairs["maxima_time"])
    if "maxima_index" not in pairs.columns:
        pairs["maxima_index"] = pd.array([None] * len(pairs), dtype="Int64")
    if "grid_index" not in pairs.columns:
        pairs["grid_index"] = pd.array([None] * len(pairs), dtype="Int64")

    rows = []
    count_rows = []
    for subject_id in segmenter.groups:
        subject_pairs = pairs.loc[pairs[SUBJECT_COLUMN] == subject_id].sort_values("_grid_seconds", kind="stable")
        count_rows.append({SUBJECT_COLUMN: subject_id, "episode_counts": len(subject_pairs)})
        if subject_pairs.empty:
            continue
        subject = segmenter.slice(subject_id)
        records = subject_pairs.to_dict("records")
        for i, record in enumerate(records):
            peak_time = record["maxima_time"]
            peak_glucose = float(record["maxima_glucose"])
            peak_index = record["maxima_index"]
            peak_seconds = record["_maxima_seconds"]
            if i + 1 < len(records) and record["_maxima_seconds"] == records[i + 1]["_maxima_seconds"]:
                lower = record["_grid_seconds"]
                upper = records[i + 1]["_grid_seconds"]
                best = -1
                for offset in np.flatnonzero((subject.times > lower) & (subject.times < upper)):
                    value = subject.glucose[offset]
                    if math.isnan(value):
                        continue
                    if best < 0 or value > subject.glucose[best]:
                        best = int(offset)
                if best >= 0:
                    row = int(subject.positions[best])
                    peak_time = time_column.iloc[row]
                    peak_glucose = float(glucose_all[row])
                    peak_index = row + 1
                    peak_seconds = subject.times[best]
            rows.append(
                {
                    SUBJECT_COLUMN: subject_id,
                    "grid_time": record["grid_time"],
                    "grid_glucose": float(record["grid_glucose"]),
                    "maxima_time": peak_time,
                    "maxima_glucose": peak_glucose,
                    "time_to_peak_minutes": (peak_seconds - record["_grid_seconds"]) / 60.0,
                    "grid_index": record["grid_index"],
                    "maxima_index": peak_index,
                }
            )

    results = pd.DataFrame(rows, columns=BETWEEN_COLUMNS)
    for column in ("grid_index", "maxima_index"):
        results[column] = pd.array(
            [None if pd.isna(value) else int(value) for value in results[column]], dtype="Int64"
        )
    counts = pd.DataFrame(count_rows, columns=[SUBJECT_COLUMN, "episode_counts"])
    return BetweenMaximaResult(results=tag_positions(results, df), episode_counts=counts)


def maxima_grid(
    frame: pd.DataFrame,
    *,
    threshold: float = 130,
    gap: float = 60,
    hours: float = 2,
) -> BetweenMaximaResult:
    """GRID starts refined to their post-rise peaks."""

    df, _ = prepare_readings(frame)
    grid_result = grid(df, gap=gap, threshold=threshold)
    minima = mod_grid(df, grid_result.points, hours=hours, gap=gap)
    windowed = find_max_after_hours(df, minima.points, hours)
    local = find_local_maxima(df)
    reconciled = find_new_maxima(df, windowed.points, local.points)
    paired = transform_df(grid_result.episode_start_total, reconciled)
    return detect_between_maxima(df, paired)
