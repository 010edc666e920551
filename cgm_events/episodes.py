"""Turn markers and flags into episode tables and per-subject statistics."""
from __future__ import annotations

from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from .detector import CommittedSpan
from .features import mean_or_zero, round_statistic, span_days
from .models import (
    GLUCOSE_COLUMN,
    SUBJECT_COLUMN,
    TIME_COLUMN,
    DiscardedEpisode,
    Episode,
    EventMarker,
    SubjectSlice,
    SubjectStatistics,
)
from .segmentation import SubjectSegmenter, tag_positions

EPISODE_COLUMNS = [
    SUBJECT_COLUMN,
    "start_time",
    "start_glucose",
    "end_time",
    "end_glucose",
    "start_index",
    "end_index",
    "duration_minutes",
    "average_glucose",
]
TOTAL_COLUMNS = [SUBJECT_COLUMN, "total_events", "avg_ep_per_day", "avg_ep_duration", "avg_ep_gl"]
DISCARD_COLUMNS = [SUBJECT_COLUMN, "start_index", "last_core_index", "core_minutes", "core_met", "reason"]
START_TOTAL_COLUMNS = [SUBJECT_COLUMN, "time", "glucose", "index"]


def build_episodes(
    segmenter: SubjectSegmenter,
    subject: SubjectSlice,
    spans: Iterable[CommittedSpan],
    severity_level: str,
) -> tuple[Episode, ...]:
    times_col = segmenter.frame[TIME_COLUMN]
    episodes = []
    for span in spans:
        start_row = int(subject.positions[span.start])
        end_row = int(subject.positions[span.end])
        values = subject.glucose[span.start : span.end + 1]
        episodes.append(
            Episode(
                subject_id=subject.subject_id,
                start_index=start_row + 1,
                end_index=end_row + 1,
                start_time=times_col.iloc[start_row],
                end_time=times_col.iloc[end_row],
                start_glucose=float(subject.glucose[span.start]),
                end_glucose=float(subject.glucose[span.end]),
                duration_minutes=float(subject.times[span.end] - subject.times[span.start]) / 60.0,
                average_glucose=float(np.nanmean(values)) if np.isfinite(values).any() else float("nan"),
                severity_level=severity_level,
                start_offset=span.start,
                end_offset=span.end,
            )
        )
    return tuple(episodes)


def markers_to_spans(markers: Sequence[int]) -> tuple[CommittedSpan, ...]:
    """Pair start and end markers; a dangling start is dropped."""

    spans = []
    open_start: int | None = None
    for offset, code in enumerate(markers):
        if code == EventMarker.START:
            open_start = offset
        elif code == EventMarker.END and open_start is not None:
            spans.append(CommittedSpan(open_start, offset))
            open_start = None
    return tuple(spans)


def summarize_subject(subject_id: str, episodes: Sequence[Episode], days: float) -> SubjectStatistics:
    total = len(episodes)
    return SubjectStatistics(
        subject_id=subject_id,
        total_events=total,
        events_per_day=total / days if days > 0 else 0.0,
        average_duration=mean_or_zero([ep.duration_minutes for ep in episodes]),
        average_glucose=mean_or_zero([ep.average_glucose for ep in episodes]),
        span_days=days,
    )


def subject_span_days(subject: SubjectSlice) -> float:
    return span_days(subject.times)


def statistics_frame(stats: Iterable[SubjectStatistics]) -> pd.DataFrame:
    rows = [
        {
            SUBJECT_COLUMN: item.subject_id,
            "total_events": item.total_events,
            "avg_ep_per_day": round_statistic(item.events_per_day, 2),
            "avg_ep_duration": round_statistic(item.average_duration, 1),
            "avg_ep_gl": round_statistic(item.average_glucose, 1),
        }
        for item in stats
    ]
    return pd.DataFrame(rows, columns=TOTAL_COLUMNS)


def episodes_frame(episodes: Iterable[Episode], frame: pd.DataFrame) -> pd.DataFrame:
    rows = [
        {
            SUBJECT_COLUMN: ep.subject_id,
            "start_time": ep.start_time,
            "start_glucose": ep.start_glucose,
            "end_time": ep.end_time,
            "end_glucose": ep.end_glucose,
            "start_index": ep.start_index,
            "end_index": ep.end_index,
            "duration_minutes": ep.duration_minutes,
            "average_glucose": ep.average_glucose,
        }
        for ep in episodes
    ]
    table = pd.DataFrame(rows, columns=EPISODE_COLUMNS)
    return tag_positions(table, frame)


def discarded_frame(discarded: Iterable[DiscardedEpisode]) -> pd.DataFrame:
    rows = [
        {
            SUBJECT_COLUMN: item.subject_id,
            "start_index": item.start_index,
            "last_core_index": item.last_core_index,
            "core_minutes": item.core_minutes,
            "core_met": item.core_met,
            "reason": item.reason,
        }
        for item in discarded
    ]
    return pd.DataFrame(rows, columns=DISCARD_COLUMNS)


def flag_starts(flags: Sequence[int]) -> np.ndarray:
    """0-based offsets where a 0/1 flag vector switches on."""

    values = np.asarray(flags, dtype=np.int64)
    if values.size == 0:
        return np.asarray([], dtype=np.int64)
    previous = np.concatenate(([0], values[:-1]))
    return np.flatnonzero((values == 1) & (previous != 1))


def start_finder(flags: Sequence[int]) -> pd.DataFrame:
    """1-based positions where a binary vector turns on."""

    return pd.DataFrame({"start_index": flag_starts(flags) + 1})


def point_tables(
    segmenter: SubjectSegmenter,
    per_subject_offsets: Mapping[str, np.ndarray],
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """Episode count, start-total and start tables from per-subject 0-based offsets."""

    frame = segmenter.frame
    count_rows = []
    rows: list[int] = []
    subjects: list[str] = []
    for subject_id, positions in segmenter.groups.items():
        offsets = np.asarray(per_subject_offsets.get(subject_id, ()), dtype=np.int64)
        count_rows.append({SUBJECT_COLUMN: subject_id, "episode_counts": int(offsets.size)})
        rows.extend(int(positions[offset]) for offset in offsets)
        subjects.extend([subject_id] * int(offsets.size))

    counts = pd.DataFrame(count_rows, columns=[SUBJECT_COLUMN, "episode_counts"])
    row_index = np.asarray(rows, dtype=np.int64)
    start_total = pd.DataFrame(
        {
            SUBJECT_COLUMN: pd.Series(subjects, dtype=object),
            "time": frame[TIME_COLUMN].iloc[row_index].reset_index(drop=True),
            "glucose": frame[GLUCOSE_COLUMN].iloc[row_index].reset_index(drop=True).astype(float),
            "index": pd.Series(row_index + 1, dtype=np.int64),
        },
        columns=START_TOTAL_COLUMNS,
    )
    start = start_total[[SUBJECT_COLUMN, "time", "glucose"]].copy()
    return counts, tag_positions(start_total, frame), start
