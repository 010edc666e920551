"""Single-category event detection entry points."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

import numpy as np
import pandas as pd

from . import categories
from .engine import EventEngine
from .episodes import discarded_frame, episodes_frame, statistics_frame, summarize_subject
from .features import minutes_below
from .models import EventContext, EventCriteria, EventType
from .registry import CategoryRegistry, registry
from .validation import prepare_readings

SEVERE_HYPO_THRESHOLD = 54.0


@dataclass(frozen=True)
class EventDetectionResult:
    """Per-subject totals, committed episodes, discarded candidates and row markers."""

    events_total: pd.DataFrame
    events_detailed: pd.DataFrame
    events_discarded: pd.DataFrame
    markers: pd.Series


def detect_events(
    frame: pd.DataFrame,
    criteria: EventCriteria | str,
    *,
    reading_minutes: Any = None,
    context: EventContext | None = None,
) -> EventDetectionResult:
    """Run one event category over every subject of ``frame``."""

    if isinstance(criteria, str):
        criteria = registry.get(criteria)
    df, reading_minutes = prepare_readings(frame, reading_minutes)

    single = CategoryRegistry()
    single.register(criteria)
    run = EventEngine(single, context=context).run(df, reading_minutes=reading_minutes)
    detections = run.for_category(criteria.key)

    stats = [summarize_subject(sid, det.episodes, det.span_days) for sid, det in detections.items()]
    episodes = [episode for det in detections.values() for episode in det.episodes]
    discarded = [item for det in detections.values() for item in det.discarded]

    detailed = episodes_frame(episodes, df)
    if criteria.event_type is EventType.HYPO:
        segmenter = run.segmenter
        detailed["duration_below_54_minutes"] = [
            minutes_below(
                segmenter.slice(ep.subject_id).times,
                segmenter.slice(ep.subject_id).glucose,
                ep.start_offset,
                ep.end_offset,
                SEVERE_HYPO_THRESHOLD,
            )
            for ep in episodes
        ]

    markers = run.segmenter.merge({sid: det.markers for sid, det in detections.items()}, fill_value=0)
    return EventDetectionResult(
        events_total=statistics_frame(stats),
        events_detailed=detailed,
        events_discarded=discarded_frame(discarded),
        markers=pd.Series(markers.astype(np.int64), name="event_marker"),
    )


def detect_hypoglycemic_events(
    frame: pd.DataFrame,
    *,
    reading_minutes: Any = None,
    min_duration_minutes: float = 120.0,
    min_recovery_minutes: float = 15.0,
    start_threshold: float = 70.0,
    context: EventContext | None = None,
) -> EventDetectionResult:
    """Readings below ``start_threshold`` for the core duration, ended by sustained recovery."""

    criteria = replace(
        categories.HYPO_LV1,
        key="hypoglycemia",
        level=categories.HYPO_EXTENDED.level if min_duration_minutes >= 120 else categories.HYPO_LV1.level,
        start_threshold=start_threshold,
        end_threshold=start_threshold,
        min_duration_minutes=min_duration_minutes,
        min_recovery_minutes=min_recovery_minutes,
    )
    return detect_events(frame, criteria, reading_minutes=reading_minutes, context=context)


def detect_hyperglycemic_events(
    frame: pd.DataFrame,
    *,
    reading_minutes: Any = None,
    min_duration_minutes: float = 120.0,
    min_recovery_minutes: float = 15.0,
    start_threshold: float = 250.0,
    end_threshold: float = 180.0,
    context: EventContext | None = None,
) -> EventDetectionResult:
    """Readings above ``start_threshold`` for the core duration, ended at or below ``end_threshold``."""

    criteria = replace(
        categories.HYPER_LV1,
        key="hyperglycemia",
        level=categories.HYPER_EXTENDED.level if min_duration_minutes >= 120 else categories.HYPER_LV1.level,
        start_threshold=start_threshold,
        end_threshold=end_threshold,
        min_duration_minutes=min_duration_minutes,
        min_recovery_minutes=min_recovery_minutes,
    )
    return detect_events(frame, criteria, reading_minutes=reading_minutes, context=context)


def detect_level1_hypoglycemic_events(
    frame: pd.DataFrame,
    *,
    reading_minutes: Any = None,
    context: EventContext | None = None,
) -> EventDetectionResult:
    """Episodes within the 54-69 mg/dL band."""

    return detect_events(frame, categories.HYPO_LV1_EXCL, reading_minutes=reading_minutes, context=context)


def detect_level1_hyperglycemic_events(
    frame: pd.DataFrame,
    *,
    reading_minutes: Any = None,
    context: EventContext | None = None,
) -> EventDetectionResult:
    """Episodes within the 181-250 mg/dL band."""

    return detect_events(frame, categories.HYPER_LV1_EXCL, reading_minutes=reading_minutes, context=context)
