"""Per-subject engine running registered event categories."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping

import pandas as pd

from .episodes import build_episodes, markers_to_spans, subject_span_days
from .models import EventContext, EventCriteria, SubjectDetection, SubjectSlice
from .registry import CategoryRegistry
from .segmentation import SubjectSegmenter


@dataclass(frozen=True)
class EngineRun:
    """Detections for every subject and category of one run."""

    segmenter: SubjectSegmenter
    detections: Mapping[str, Mapping[str, SubjectDetection]] = field(default_factory=dict)

    def for_category(self, key: str) -> dict[str, SubjectDetection]:
        return {subject_id: by_key[key] for subject_id, by_key in self.detections.items() if key in by_key}


class EventEngine:
    """Runs every category of a registry over each subject of a readings table."""

    def __init__(
        self,
        registry: CategoryRegistry,
        *,
        context: EventContext | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._registry = registry
        self._context = context or EventContext()
        self._max_workers = max_workers

    @property
    def context(self) -> EventContext:
        return self._context

    def run(
        self,
        frame: pd.DataFrame,
        *,
        reading_minutes=None,
        category_filter: Callable[[EventCriteria], bool] | None = None,
    ) -> EngineRun:
        """Process a validated, ordered readings table."""

        if reading_minutes is None:
            reading_minutes = self._context.reading_minutes
        segmenter = SubjectSegmenter(frame, reading_minutes=reading_minutes)
        levels = {key: criteria.level.value for key, criteria in self._registry.items()}

        def _run_single(subject: SubjectSlice) -> dict[str, SubjectDetection]:
            scans = self._registry.detect_all(subject, self._context, predicate=category_filter)
            days = subject_span_days(subject)
            outputs: dict[str, SubjectDetection] = {}
            for key, scan in scans.items():
                episodes = build_episodes(segmenter, subject, markers_to_spans(scan.markers), levels[key])
                outputs[key] = SubjectDetection(
                    subject_id=subject.subject_id,
                    category=key,
                    markers=scan.markers,
                    episodes=episodes,
                    discarded=scan.discarded,
                    span_days=days,
                )
            logging.debug(
                f"Subject {subject.subject_id}: "
                + ", ".join(f"{key}={len(det.episodes)}" for key, det in outputs.items())
            )
            return outputs

        detections = segmenter.map_subjects(_run_single, max_workers=self._max_workers)
        return EngineRun(segmenter=segmenter, detections=detections)
