"""CGM glycemic event detection and GRID peak analysis."""

from . import categories  # noqa: F401 - ensure category registration side-effects
from .aggregator import detect_all_events
from .events import (
    EventDetectionResult,
    detect_events,
    detect_hyperglycemic_events,
    detect_hypoglycemic_events,
    detect_level1_hyperglycemic_events,
    detect_level1_hypoglycemic_events,
)
from .grid import FlagResult, excursion, grid, mod_grid, start_finder
from .maxima import (
    detect_between_maxima,
    find_local_maxima,
    find_max_after_hours,
    find_max_before_hours,
    find_min_after_hours,
    find_min_before_hours,
    find_new_maxima,
    maxima_grid,
    transform_df,
)
from .models import (
    EventContext,
    EventCriteria,
    EventLevel,
    EventMarker,
    EventType,
    RowRef,
)
from .registry import register_category, registry
from .validation import CGMValidationError, order_readings, validate_readings

__all__ = [
    "CGMValidationError",
    "EventContext",
    "EventCriteria",
    "EventDetectionResult",
    "EventLevel",
    "EventMarker",
    "EventType",
    "FlagResult",
    "RowRef",
    "detect_all_events",
    "detect_between_maxima",
    "detect_events",
    "detect_hyperglycemic_events",
    "detect_hypoglycemic_events",
    "detect_level1_hyperglycemic_events",
    "detect_level1_hypoglycemic_events",
    "excursion",
    "find_local_maxima",
    "find_max_after_hours",
    "find_max_before_hours",
    "find_min_after_hours",
    "find_min_before_hours",
    "find_new_maxima",
    "grid",
    "maxima_grid",
    "mod_grid",
    "order_readings",
    "register_category",
    "registry",
    "start_finder",
    "transform_df",
    "validate_readings",
]
