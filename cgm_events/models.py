"""Core data models for CGM event detection."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any, Final, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

SUBJECT_COLUMN: Final[str] = "subject_id"
TIME_COLUMN: Final[str] = "timestamp"
GLUCOSE_COLUMN: Final[str] = "glucose"
REQUIRED_COLUMNS: Final[tuple[str, ...]] = (SUBJECT_COLUMN, TIME_COLUMN, GLUCOSE_COLUMN)

DEFAULT_TOLERANCE_MINUTES: Final[float] = 0.1
DEFAULT_READING_MINUTES: Final[float] = 5.0


class EventType(str, Enum):
    """Direction of a glycemic event."""

    HYPO = "hypo"
    HYPER = "hyper"


class EventLevel(str, Enum):
    """Clinical level of an event category."""

    LV1 = "lv1"
    LV2 = "lv2"
    EXTENDED = "extended"
    LV1_EXCL = "lv1_excl"


class CorePolicy(str, Enum):
    """What happens when recovery starts before the core duration is met."""

    CANCEL = "cancel"
    PEND = "pend"


class GapPolicy(str, Enum):
    """What happens to an open event at a data gap or at the end of data."""

    DISCARD = "discard"
    END_AT_CORE = "end_at_core"


class EndAnchor(str, Enum):
    """Which reading receives the end marker of a committed episode."""

    RECOVERY_START = "recovery_start"
    RECOVERY_CONFIRMED = "recovery_confirmed"
    BEFORE_RECOVERY = "before_recovery"


class EventMarker(IntEnum):
    NONE = 0
    START = 2
    END = -1


@dataclass(frozen=True, order=True)
class RowRef:
    """1-based ordinal reference into the table identified by ``table``."""

    table: str
    position: int

    @property
    def offset(self) -> int:
        return self.position - 1


@dataclass(frozen=True)
class EventContext:
    """Run-time configuration shared by every detector invocation."""

    reading_minutes: Optional[float] = None
    tolerance_minutes: float = DEFAULT_TOLERANCE_MINUTES
    thresholds: Mapping[str, Any] = field(default_factory=dict)
    category_settings: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def category_setting(self, category_key: str, key: str, default: Any) -> Any:
        """Return category-specific override, falling back to global thresholds"""

        specific = self.category_settings.get(category_key, {})
        if key in specific:
            return specific[key]
        return self.thresholds.get(key, default)


@dataclass(frozen=True)
class EventCriteria:
    """Parameters of one two-phase event category.

    ``start_threshold`` defines the core band entry, ``band_limit`` optionally
    closes the band on the severe side, and ``end_threshold`` defines the
    recovery band. Hypoglycemic cores sit below ``start_threshold``;
    hyperglycemic cores sit above it.
    """

    key: str
    event_type: EventType
    level: EventLevel
    start_threshold: float
    end_threshold: float
    min_duration_minutes: float
    min_recovery_minutes: float = 15.0
    band_limit: Optional[float] = None
    min_valid_reading_count: Optional[int] = None
    max_gap_minutes: Optional[float] = None
    core_policy: CorePolicy = CorePolicy.CANCEL
    gap_policy: GapPolicy = GapPolicy.DISCARD
    end_anchor: EndAnchor = EndAnchor.RECOVERY_CONFIRMED
    description: str = ""

    _OVERRIDABLE = (
        "start_threshold",
        "end_threshold",
        "min_duration_minutes",
        "min_recovery_minutes",
        "band_limit",
        "min_valid_reading_count",
        "max_gap_minutes",
    )

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("Event criteria must define a non-empty key")
        if self.min_duration_minutes < 0 or self.min_recovery_minutes < 0:
            raise ValueError(f"Durations for '{self.key}' must be non-negative")

    def in_core(self, value: float) -> bool:
        if self.event_type is EventType.HYPO:
            if self.band_limit is not None and value < self.band_limit:
                return False
            return value < self.start_threshold
        if self.band_limit is not None and value > self.band_limit:
            return False
        return value > self.start_threshold

    def beyond_band(self, value: float) -> bool:
        """True when ``value`` has left a banded core on the severe side."""

        if self.band_limit is None:
            return False
        if self.event_type is EventType.HYPO:
            return value < self.band_limit
        return value > self.band_limit

    def in_recovery(self, value: float) -> bool:
        if self.event_type is EventType.HYPO:
            return value >= self.end_threshold
        return value <= self.end_threshold

    def resolve(self, context: EventContext | None) -> "EventCriteria":
        """Apply category overrides from ``context``."""

        if context is None:
            return self
        changes = {}
        for name in self._OVERRIDABLE:
            current = getattr(self, name)
            value = context.category_setting(self.key, name, current)
            if value != current:
                changes[name] = value
        return replace(self, **changes) if changes else self


@dataclass(frozen=True)
class SubjectSlice:
    """One subject's readings as aligned numpy arrays."""

    subject_id: str
    positions: np.ndarray
    times: np.ndarray
    glucose: np.ndarray
    interval_minutes: np.ndarray

    def __len__(self) -> int:
        return len(self.positions)


@dataclass(frozen=True)
class Episode:
    """A committed glycemic episode."""

    subject_id: str
    start_index: int
    end_index: int
    start_time: pd.Timestamp
    end_time: pd.Timestamp
    start_glucose: float
    end_glucose: float
    duration_minutes: float
    average_glucose: float
    severity_level: str
    start_offset: int = field(default=0, repr=False, compare=False)
    end_offset: int = field(default=0, repr=False, compare=False)


@dataclass(frozen=True)
class DiscardedEpisode:
    """An event candidate that never committed."""

    subject_id: str
    start_index: int
    last_core_index: int
    core_minutes: float
    core_met: bool
    reason: str


@dataclass(frozen=True)
class SubjectDetection:
    """Outcome of one detector over one subject."""

    subject_id: str
    category: str
    markers: np.ndarray
    episodes: Sequence[Episode] = field(default_factory=tuple)
    discarded: Sequence[DiscardedEpisode] = field(default_factory=tuple)
    span_days: float = 0.0


@dataclass(frozen=True)
class SubjectStatistics:
    """Per-subject summary of a set of episodes."""

    subject_id: str
    total_events: int
    events_per_day: float
    average_duration: float
    average_glucose: float
    span_days: float
