"""Per-subject grouping, extraction and merge of reading tables."""
from __future__ import annotations

import hashlib
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Iterator, Mapping, Sequence, TypeVar

import numpy as np
import pandas as pd

from .features import infer_interval_minutes, to_epoch_seconds
from .models import GLUCOSE_COLUMN, SUBJECT_COLUMN, TIME_COLUMN, RowRef, SubjectSlice

T = TypeVar("T")

ROW_TABLE_ATTR = "row_table"


def group_by_subject(subject_ids: Iterable[Any]) -> dict[str, np.ndarray]:
    """Map each subject to its 0-based row positions, in first-seen order."""

    groups: dict[str, list[int]] = {}
    for position, subject_id in enumerate(subject_ids):
        groups.setdefault(str(subject_id), []).append(position)
    return {subject_id: np.asarray(rows, dtype=np.int64) for subject_id, rows in groups.items()}


def extract_subject(frame: pd.DataFrame, positions: np.ndarray, *columns: str) -> tuple[np.ndarray, ...]:
    """Return the requested columns restricted to ``positions``."""

    return tuple(frame[column].to_numpy()[positions] for column in columns)


def merge_subject_results(
    groups: Mapping[str, np.ndarray],
    per_subject: Mapping[str, Sequence[Any]],
    total_rows: int,
    fill_value: Any = 0,
) -> np.ndarray:
    """Scatter per-subject results back into a full-length array."""

    sample = next((np.asarray(values) for values in per_subject.values() if len(values)), None)
    dtype = np.result_type(sample.dtype, np.asarray(fill_value).dtype) if sample is not None else None
    merged = np.full(total_rows, fill_value, dtype=dtype)
    for subject_id, values in per_subject.items():
        positions = groups.get(subject_id)
        if positions is None:
            raise ValueError(f"Unknown subject '{subject_id}' in merge")
        values = np.asarray(values)
        if len(values) != len(positions):
            raise ValueError(
                f"Subject '{subject_id}' has {len(positions)} rows but {len(values)} results"
            )
        merged[positions] = values
    return merged


def table_token(frame: pd.DataFrame) -> str:
    """Short fingerprint identifying a readings table by subject and time columns."""

    hashes = pd.util.hash_pandas_object(frame[[SUBJECT_COLUMN, TIME_COLUMN]], index=False)
    digest = hashlib.sha1(hashes.to_numpy().tobytes())
    digest.update(str(len(frame)).encode())
    return digest.hexdigest()[:16]


def row_refs(frame: pd.DataFrame, positions: Iterable[int]) -> tuple[RowRef, ...]:
    """Wrap 1-based positions as references into ``frame``."""

    token = table_token(frame)
    return tuple(RowRef(token, int(position)) for position in positions)


def tag_positions(table: pd.DataFrame, frame: pd.DataFrame) -> pd.DataFrame:
    table.attrs[ROW_TABLE_ATTR] = table_token(frame)
    return table


def resolve_positions(frame: pd.DataFrame, points: Any) -> np.ndarray:
    """Resolve 1-based references against ``frame`` to sorted unique 0-based offsets.

    Accepts RowRef sequences, an integer Series, a DataFrame with an ``index``
    column (or a single column), or plain integers.
    """

    token: str | None = None
    if isinstance(points, pd.DataFrame):
        token = points.attrs.get(ROW_TABLE_ATTR)
        if "index" in points.columns:
            raw = points["index"]
        elif len(points.columns) == 1:
            raw = points.iloc[:, 0]
        else:
            raise ValueError("Point table needs an 'index' column or a single column")
        values = pd.to_numeric(raw, errors="coerce").dropna().to_numpy(dtype=np.int64)
    elif isinstance(points, pd.Series):
        values = pd.to_numeric(points, errors="coerce").dropna().to_numpy(dtype=np.int64)
    else:
        items = list(points)
        refs = [item for item in items if isinstance(item, RowRef)]
        if refs and len(refs) != len(items):
            raise ValueError("Cannot mix RowRef and plain positions")
        if refs:
            tables = {ref.table for ref in refs}
            if len(tables) != 1:
                raise ValueError("RowRefs point at more than one table")
            token = tables.pop()
            values = np.asarray([ref.position for ref in refs], dtype=np.int64)
        else:
            values = np.asarray(items, dtype=np.int64)

    if token is not None and token != table_token(frame):
        raise ValueError("Row references were issued against a different table")
    if values.size and (values.min() < 1 or values.max() > len(frame)):
        raise ValueError(f"Row positions must lie in [1, {len(frame)}]")
    return np.unique(values - 1)


class SubjectSegmenter:
    """Splits a validated readings table into per-subject slices.

    Each subject's positions are ordered by timestamp, so slices are time-ordered
    while positions keep pointing at rows of the original table.
    """

    def __init__(self, frame: pd.DataFrame, *, reading_minutes: Any = None) -> None:
        self._frame = frame
        self._times = to_epoch_seconds(frame[TIME_COLUMN])
        self._groups = {
            subject_id: positions[np.argsort(self._times[positions], kind="stable")]
            for subject_id, positions in group_by_subject(frame[SUBJECT_COLUMN]).items()
        }
        self._glucose = pd.to_numeric(frame[GLUCOSE_COLUMN], errors="coerce").to_numpy(dtype=float)
        self._reading_minutes = reading_minutes

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame

    @property
    def groups(self) -> dict[str, np.ndarray]:
        return self._groups

    @property
    def times(self) -> np.ndarray:
        return self._times

    @property
    def glucose(self) -> np.ndarray:
        return self._glucose

    def __len__(self) -> int:
        return len(self._frame)

    def slice(self, subject_id: str) -> SubjectSlice:
        positions = self._groups[subject_id]
        times = self._times[positions]
        return SubjectSlice(
            subject_id=subject_id,
            positions=positions,
            times=times,
            glucose=self._glucose[positions],
            interval_minutes=self._intervals(positions, times),
        )

    def slices(self) -> Iterator[SubjectSlice]:
        for subject_id in self._groups:
            yield self.slice(subject_id)

    def _intervals(self, positions: np.ndarray, times: np.ndarray) -> np.ndarray:
        reading_minutes = self._reading_minutes
        if reading_minutes is None:
            return np.full(len(positions), infer_interval_minutes(times))
        if np.ndim(reading_minutes) == 0:
            return np.full(len(positions), float(reading_minutes))
        return np.asarray(reading_minutes, dtype=float)[positions]

    def locate(self, rows: np.ndarray) -> dict[str, np.ndarray]:
        """Group 0-based table rows by subject as sorted per-subject offsets."""

        owner = np.empty(len(self._frame), dtype=object)
        offset_of = np.zeros(len(self._frame), dtype=np.int64)
        for subject_id, positions in self._groups.items():
            owner[positions] = subject_id
            offset_of[positions] = np.arange(len(positions))
        located: dict[str, list[int]] = {}
        for row in np.asarray(rows, dtype=np.int64):
            located.setdefault(owner[row], []).append(int(offset_of[row]))
        return {subject_id: np.unique(np.asarray(offsets, dtype=np.int64)) for subject_id, offsets in located.items()}

    def merge(self, per_subject: Mapping[str, Sequence[Any]], fill_value: Any = 0) -> np.ndarray:
        return merge_subject_results(self._groups, per_subject, len(self._frame), fill_value)

    def map_subjects(
        self,
        func: Callable[[SubjectSlice], T],
        *,
        max_workers: int | None = None,
    ) -> dict[str, T]:
        """Apply ``func`` to every subject; results keep group order."""

        subject_ids = list(self._groups)
        if max_workers is None or max_workers <= 1 or len(subject_ids) <= 1:
            return {subject_id: func(self.slice(subject_id)) for subject_id in subject_ids}

        results: dict[str, T] = {}
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_map = {executor.submit(func, self.slice(sid)): sid for sid in subject_ids}
            for future in as_completed(future_map):
                results[future_map[future]] = future.result()
        return {subject_id: results[subject_id] for subject_id in subject_ids}

    def row_values(self, column: str, offsets: np.ndarray) -> list[Any]:
        """Values of ``column`` at 0-based row offsets, preserving dtype such as tz."""

        series = self._frame[column]
        return [series.iloc[int(offset)] for offset in offsets]
