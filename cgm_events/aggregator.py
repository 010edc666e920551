"""Unified event aggregator across every registered category."""
from __future__ import annotations

from typing import Any, Final, Sequence

import pandas as pd

from . import categories  # noqa: F401 - ensure category registration side-effects
from .engine import EventEngine
from .episodes import summarize_subject
from .features import mean_or_zero, round_statistic
from .models import SUBJECT_COLUMN, Episode, EventContext, EventLevel, SubjectStatistics
from .registry import CategoryRegistry, registry
from .validation import prepare_readings

EXCLUSIVE_MODES: Final[tuple[str, ...]] = ("banded", "subtraction")
SUMMARY_COLUMNS: Final[list[str]] = [
    SUBJECT_COLUMN,
    "type",
    "level",
    "avg_ep_per_day",
    "avg_ep_duration",
    "avg_ep_gl",
    "total_episodes",
]


def _overlaps(episode: Episode, others: Sequence[Episode]) -> bool:
    return any(
        other.start_offset <= episode.end_offset and episode.start_offset <= other.end_offset for other in others
    )


def subtract_levels(
    subject_id: str,
    level1: Sequence[Episode],
    level2: Sequence[Episode],
    days: float,
) -> SubjectStatistics:
    """Level-1-exclusive statistics as level 1 minus level 2, clamped at zero."""

    count = max(0, len(level1) - len(level2))
    total_duration = max(
        0.0,
        sum(ep.duration_minutes for ep in level1) - sum(ep.duration_minutes for ep in level2),
    )
    exclusive = [ep for ep in level1 if not _overlaps(ep, level2)]
    return SubjectStatistics(
        subject_id=subject_id,
        total_events=count,
        events_per_day=count / days if days > 0 else 0.0,
        average_duration=total_duration / count if count else 0.0,
        average_glucose=mean_or_zero([ep.average_glucose for ep in exclusive]) if count else 0.0,
        span_days=days,
    )


def detect_all_events(
    frame: pd.DataFrame,
    *,
    reading_minutes: Any = None,
    exclusive_mode: str = "banded",
    context: EventContext | None = None,
    max_workers: int | None = None,
    category_registry: CategoryRegistry | None = None,
) -> pd.DataFrame:
    """One summary row per subject and registered category."""

    if exclusive_mode not in EXCLUSIVE_MODES:
        raise ValueError(f"exclusive_mode must be one of {EXCLUSIVE_MODES}, got {exclusive_mode!r}")
    active = category_registry if category_registry is not None else registry
    df, reading_minutes = prepare_readings(frame, reading_minutes)

    run = EventEngine(active, context=context, max_workers=max_workers).run(df, reading_minutes=reading_minutes)
    by_type_level = {(criteria.event_type, criteria.level): key for key, criteria in active.items()}

    rows = []
    for subject_id, detections in run.detections.items():
        for key, criteria in active.items():
            detection = detections[key]
            stats = summarize_subject(subject_id, detection.episodes, detection.span_days)
            if exclusive_mode == "subtraction" and criteria.level is EventLevel.LV1_EXCL:
                lv1_key = by_type_level.get((criteria.event_type, EventLevel.LV1))
                lv2_key = by_type_level.get((criteria.event_type, EventLevel.LV2))
                if lv1_key is not None and lv2_key is not None:
                    stats = subtract_levels(
                        subject_id,
                        detections[lv1_key].episodes,
                        detections[lv2_key].episodes,
                        detection.span_days,
                    )
            rows.append(
                {
                    SUBJECT_COLUMN: subject_id,
                    "type": criteria.event_type.value,
                    "level": criteria.level.value,
                    "avg_ep_per_day": round_statistic(stats.events_per_day, 2),
                    "avg_ep_duration": round_statistic(stats.average_duration, 1),
                    "avg_ep_gl": round_statistic(stats.average_glucose, 1),
                    "total_episodes": stats.total_events,
                }
            )
    return pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
