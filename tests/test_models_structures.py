from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from cgm_events.models import EventContext, EventCriteria, EventLevel, EventType, RowRef
from models.cgm_models import CgmAnalysisEnum, CgmBatchResponse, CgmEpisodeRecord, CgmReading


def _criteria(**overrides):
    values = dict(
        key="test",
        event_type=EventType.HYPO,
        level=EventLevel.LV1_EXCL,
        start_threshold=70.0,
        end_threshold=70.0,
        band_limit=54.0,
        min_duration_minutes=15.0,
    )
    values.update(overrides)
    return EventCriteria(**values)


def test_banded_hypo_criteria_membership():
    criteria = _criteria()

    assert criteria.in_core(60.0)
    assert criteria.in_core(54.0)
    assert not criteria.in_core(53.9)
    assert not criteria.in_core(70.0)
    assert criteria.in_recovery(70.0)
    assert not criteria.in_recovery(69.0)
    assert criteria.beyond_band(53.9)
    assert not criteria.beyond_band(54.0)
    assert not criteria.beyond_band(80.0)


def test_hyper_criteria_membership():
    criteria = _criteria(
        event_type=EventType.HYPER,
        start_threshold=250.0,
        end_threshold=180.0,
        band_limit=None,
    )

    assert criteria.in_core(251.0)
    assert not criteria.in_core(250.0)
    assert criteria.in_recovery(180.0)
    assert not criteria.in_recovery(200.0)
    assert not criteria.beyond_band(400.0)


def test_criteria_validation():
    with pytest.raises(ValueError):
        _criteria(key="")
    with pytest.raises(ValueError):
        _criteria(min_duration_minutes=-1)


def test_context_overrides_resolve_per_category():
    criteria = _criteria()
    context = EventContext(
        thresholds={"min_recovery_minutes": 20.0},
        category_settings={"test": {"min_duration_minutes": 30.0}},
    )

    resolved = criteria.resolve(context)

    assert resolved.min_duration_minutes == 30.0
    assert resolved.min_recovery_minutes == 20.0
    assert criteria.min_duration_minutes == 15.0
    assert criteria.resolve(EventContext()) is criteria


def test_row_ref_offset_is_zero_based():
    ref = RowRef("abc", 3)

    assert ref.offset == 2
    assert sorted([RowRef("abc", 5), ref])[0] == ref


def test_reading_model_parses_timestamps():
    reading = CgmReading.model_validate(
        {"subject_id": "S1", "timestamp": "2024-01-01T00:05:00Z", "glucose": 110}
    )

    assert reading.timestamp == datetime(2024, 1, 1, 0, 5, tzinfo=timezone.utc)
    assert reading.glucose == 110.0

    with pytest.raises(ValidationError):
        CgmReading.model_validate({"subject_id": "S1", "glucose": 110})


def test_batch_response_serializes_only_populated_sections():
    episode = CgmEpisodeRecord(
        subject_id="S1",
        start_time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        start_glucose=260.0,
        end_time=datetime(2024, 1, 1, 0, 25, tzinfo=timezone.utc),
        end_glucose=240.0,
        start_index=6,
        end_index=11,
        duration_minutes=25.0,
        average_glucose=273.3,
    )
    response = CgmBatchResponse(analysis=CgmAnalysisEnum.HYPER, episodes=[episode])

    payload = response.model_dump(mode="json", exclude_none=True)

    assert payload["analysis"] == "hyper"
    assert set(payload) == {"analysis", "episodes"}
    assert payload["episodes"][0]["start_index"] == 6
    assert "duration_below_54_minutes" not in payload["episodes"][0]
