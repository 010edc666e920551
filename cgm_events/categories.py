"""The eight clinical event categories, registered in reporting order."""
from __future__ import annotations

from typing import Final

from .models import CorePolicy, EndAnchor, EventCriteria, EventLevel, EventType, GapPolicy
from .registry import register_category

# Hyper cores only close on dropouts longer than three hours.
HYPER_MAX_GAP_MINUTES: Final[float] = 180.0

_HYPO = dict(
    event_type=EventType.HYPO,
    core_policy=CorePolicy.CANCEL,
    gap_policy=GapPolicy.DISCARD,
    end_anchor=EndAnchor.RECOVERY_CONFIRMED,
)
_HYPER = dict(
    event_type=EventType.HYPER,
    core_policy=CorePolicy.PEND,
    gap_policy=GapPolicy.END_AT_CORE,
    max_gap_minutes=HYPER_MAX_GAP_MINUTES,
    end_anchor=EndAnchor.RECOVERY_START,
)

HYPO_LV1 = register_category(
    EventCriteria(
        key="hypo_lv1",
        level=EventLevel.LV1,
        start_threshold=70.0,
        end_threshold=70.0,
        min_duration_minutes=15.0,
        description="<70 mg/dL for >=15 min",
        **_HYPO,
    )
)
HYPO_LV2 = register_category(
    EventCriteria(
        key="hypo_lv2",
        level=EventLevel.LV2,
        start_threshold=54.0,
        end_threshold=70.0,
        min_duration_minutes=15.0,
        description="<54 mg/dL for >=15 min, ending at >=70 mg/dL",
        **_HYPO,
    )
)
HYPO_EXTENDED = register_category(
    EventCriteria(
        key="hypo_extended",
        level=EventLevel.EXTENDED,
        start_threshold=70.0,
        end_threshold=70.0,
        min_duration_minutes=120.0,
        description="<70 mg/dL for >=120 min",
        **_HYPO,
    )
)
HYPO_LV1_EXCL = register_category(
    EventCriteria(
        key="hypo_lv1_excl",
        level=EventLevel.LV1_EXCL,
        start_threshold=70.0,
        end_threshold=70.0,
        band_limit=54.0,
        min_duration_minutes=15.0,
        description="54-69 mg/dL for >=15 min",
        **_HYPO,
    )
)
HYPER_LV1 = register_category(
    EventCriteria(
        key="hyper_lv1",
        level=EventLevel.LV1,
        start_threshold=180.0,
        end_threshold=180.0,
        min_duration_minutes=15.0,
        description=">180 mg/dL for >=15 min",
        **_HYPER,
    )
)
HYPER_LV2 = register_category(
    EventCriteria(
        key="hyper_lv2",
        level=EventLevel.LV2,
        start_threshold=250.0,
        end_threshold=250.0,
        min_duration_minutes=15.0,
        description=">250 mg/dL for >=15 min",
        **_HYPER,
    )
)
HYPER_EXTENDED = register_category(
    EventCriteria(
        key="hyper_extended",
        level=EventLevel.EXTENDED,
        start_threshold=250.0,
        end_threshold=180.0,
        min_duration_minutes=120.0,
        description=">250 mg/dL for >=120 min, ending at <=180 mg/dL",
        **_HYPER,
    )
)
HYPER_LV1_EXCL = register_category(
    EventCriteria(
        key="hyper_lv1_excl",
        level=EventLevel.LV1_EXCL,
        start_threshold=180.0,
        end_threshold=180.0,
        band_limit=250.0,
        min_duration_minutes=15.0,
        description="181-250 mg/dL for >=15 min",
        event_type=EventType.HYPER,
        core_policy=CorePolicy.PEND,
        gap_policy=GapPolicy.END_AT_CORE,
        end_anchor=EndAnchor.BEFORE_RECOVERY,
        max_gap_minutes=HYPER_MAX_GAP_MINUTES,
    )
)

ALL_CATEGORIES = (
    HYPO_LV1,
    HYPO_LV2,
    HYPO_EXTENDED,
    HYPO_LV1_EXCL,
    HYPER_LV1,
    HYPER_LV2,
    HYPER_EXTENDED,
    HYPER_LV1_EXCL,
)
