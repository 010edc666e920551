"""Two-phase (core duration + sustained recovery) event detector."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Final

import numpy as np

from .models import (
    DEFAULT_TOLERANCE_MINUTES,
    DiscardedEpisode,
    EndAnchor,
    EventCriteria,
    EventMarker,
    GapPolicy,
    CorePolicy,
    SubjectSlice,
)

_DISCARD_CORE_UNMET: Final[str] = "core_unmet"
_DISCARD_GAP: Final[str] = "data_gap"
_DISCARD_UNTERMINATED: Final[str] = "unterminated"
_DISCARD_BAND_EXIT: Final[str] = "band_exit"


class _State(Enum):
    OUTSIDE = "outside"
    IN_EVENT = "in_event"
    AWAITING_RECOVERY = "awaiting_recovery"


def min_reading_count(min_duration_minutes: float, interval_minutes: float, tolerance: float) -> int:
    """Valid readings needed to cover three quarters of the core duration."""

    if interval_minutes <= 0:
        return 1
    return max(1, math.ceil((min_duration_minutes - tolerance) / interval_minutes / 4 * 3))


@dataclass(frozen=True)
class CommittedSpan:
    """Start and end offsets of a committed episode within one subject."""

    start: int
    end: int


@dataclass(frozen=True)
class MarkerScan:
    markers: np.ndarray
    discarded: tuple[DiscardedEpisode, ...]


class TwoPhaseEventDetector:
    """Runs one :class:`EventCriteria` over a subject's ordered readings."""

    def __init__(self, criteria: EventCriteria, *, tolerance_minutes: float = DEFAULT_TOLERANCE_MINUTES) -> None:
        self.criteria = criteria
        self.tolerance = tolerance_minutes

    def scan(self, subject: SubjectSlice) -> MarkerScan:
        criteria = self.criteria
        times = subject.times
        glucose = subject.glucose
        n = len(times)
        markers = np.full(n, int(EventMarker.NONE), dtype=np.int64)
        discarded: list[DiscardedEpisode] = []

        max_gap = criteria.max_gap_minutes
        if max_gap is None:
            max_gap = criteria.min_recovery_minutes + self.tolerance
        gap_seconds = max_gap * 60.0

        state = _State.OUTSIDE
        start = last_core = -1
        count = 0

        def close_open_event(reason: str) -> None:
            core_met = self._core_met(subject, start, last_core, count)
            if criteria.gap_policy is GapPolicy.END_AT_CORE and core_met and last_core > start:
                self._commit(markers, start, last_core)
                return
            discarded.append(self._discard(subject, start, last_core, core_met, reason))

        def close_at_band_exit() -> None:
            # The in-band stretch stands on its own; severe readings never extend it.
            core_met = self._core_met(subject, start, last_core, count)
            if core_met and last_core > start:
                self._commit(markers, start, last_core)
                return
            discarded.append(self._discard(subject, start, last_core, core_met, _DISCARD_BAND_EXIT))

        i = 0
        while i < n:
            if state is not _State.OUTSIDE and i > 0 and times[i] - times[i - 1] > gap_seconds:
                close_open_event(_DISCARD_GAP)
                state = _State.OUTSIDE

            value = glucose[i]
            if math.isnan(value):
                i += 1
                continue

            if state is _State.OUTSIDE:
                if criteria.in_core(value):
                    state = _State.IN_EVENT
                    start = last_core = i
                    count = 1
                i += 1
                continue

            if criteria.in_core(value):
                last_core = i
                count += 1
                i += 1
                continue

            if criteria.beyond_band(value):
                close_at_band_exit()
                state = _State.OUTSIDE
                i += 1
                continue

            recovering = criteria.in_recovery(value)
            if state is _State.IN_EVENT:
                if not self._core_met(subject, start, last_core, count):
                    if recovering and criteria.core_policy is CorePolicy.CANCEL:
                        discarded.append(self._discard(subject, start, last_core, False, _DISCARD_CORE_UNMET))
                        state = _State.OUTSIDE
                    i += 1
                    continue
                state = _State.AWAITING_RECOVERY

            if recovering:
                confirmed = self._sustained_recovery(times, glucose, i)
                if confirmed is not None:
                    end = self._end_offset(glucose, start, i, confirmed)
                    self._commit(markers, start, end)
                    state = _State.OUTSIDE
                    i = max(end, i) + 1
                    continue
            i += 1

        if state is not _State.OUTSIDE:
            close_open_event(_DISCARD_UNTERMINATED)

        return MarkerScan(markers=markers, discarded=tuple(discarded))

    def core_minutes(self, subject: SubjectSlice, start: int, last_core: int) -> float:
        elapsed = (subject.times[last_core] - subject.times[start]) / 60.0
        return float(elapsed + subject.interval_minutes[start])

    def _core_met(self, subject: SubjectSlice, start: int, last_core: int, count: int) -> bool:
        criteria = self.criteria
        if self.core_minutes(subject, start, last_core) + self.tolerance < criteria.min_duration_minutes:
            return False
        required = criteria.min_valid_reading_count
        if required is None:
            required = min_reading_count(
                criteria.min_duration_minutes, float(subject.interval_minutes[start]), self.tolerance
            )
        return count >= required

    def _sustained_recovery(self, times: np.ndarray, glucose: np.ndarray, i: int) -> int | None:
        """Return the offset confirming recovery that starts at ``i``, if any."""

        criteria = self.criteria
        window = (criteria.min_recovery_minutes + self.tolerance) * 60.0
        last = i
        k = i + 1
        while k < len(times) and times[k] - times[i] <= window:
            value = glucose[k]
            if not math.isnan(value):
                if not criteria.in_recovery(value):
                    return None
                last = k
            k += 1
        if (times[last] - times[i]) / 60.0 + self.tolerance >= criteria.min_recovery_minutes:
            return last
        return None

    def _end_offset(self, glucose: np.ndarray, start: int, recovery: int, confirmed: int) -> int:
        anchor = self.criteria.end_anchor
        if anchor is EndAnchor.RECOVERY_CONFIRMED:
            return confirmed
        if anchor is EndAnchor.BEFORE_RECOVERY:
            j = recovery - 1
            while j > start and math.isnan(glucose[j]):
                j -= 1
            if j > start:
                return j
        return recovery

    @staticmethod
    def _commit(markers: np.ndarray, start: int, end: int) -> None:
        markers[start] = int(EventMarker.START)
        markers[end] = int(EventMarker.END)

    def _discard(
        self,
        subject: SubjectSlice,
        start: int,
        last_core: int,
        core_met: bool,
        reason: str,
    ) -> DiscardedEpisode:
        core_minutes = self.core_minutes(subject, start, last_core)
        logging.debug(
            f"{self.criteria.key}: discarded candidate for {subject.subject_id} "
            f"at row {int(subject.positions[start]) + 1} ({reason}, core {core_minutes:.1f} min)"
        )
        return DiscardedEpisode(
            subject_id=subject.subject_id,
            start_index=int(subject.positions[start]) + 1,
            last_core_index=int(subject.positions[last_core]) + 1,
            core_minutes=core_minutes,
            core_met=core_met,
            reason=reason,
        )
