import numpy as np
import pandas as pd
import pytest

from cgm_events import (
    EventContext,
    detect_events,
    detect_hyperglycemic_events,
    detect_hypoglycemic_events,
    detect_level1_hyperglycemic_events,
    detect_level1_hypoglycemic_events,
)

RISE_AND_FALL = [60, 100, 140, 180, 220, 260, 280, 300, 290, 270, 240, 220, 200, 180, 170, 160, 150, 150, 150, 150]


def _make_readings(subject_id, values, start="2024-01-01"):
    timestamps = pd.date_range(start, periods=len(values), freq="5min", tz="UTC")
    return pd.DataFrame({"subject_id": subject_id, "timestamp": timestamps, "glucose": np.asarray(values, dtype=float)})


def test_level2_hyper_episode_ends_where_recovery_starts():
    frame = _make_readings("S1", RISE_AND_FALL)

    result = detect_events(frame, "hyper_lv2")

    detailed = result.events_detailed
    assert len(detailed) == 1
    episode = detailed.iloc[0]
    assert episode["start_index"] == 6
    assert episode["end_index"] == 11
    assert episode["start_glucose"] == 260.0
    assert episode["end_glucose"] == 240.0
    assert episode["duration_minutes"] == pytest.approx(25.0)
    assert episode["start_time"] == frame["timestamp"].iloc[5]

    totals = result.events_total
    assert totals["subject_id"].tolist() == ["S1"]
    assert totals["total_events"].tolist() == [1]
    assert totals["avg_ep_duration"].tolist() == [25.0]
    assert totals["avg_ep_gl"].tolist() == [273.3]


def test_markers_line_up_with_input_rows():
    frame = _make_readings("S1", RISE_AND_FALL)

    markers = detect_events(frame, "hyper_lv2").markers

    assert markers.name == "event_marker"
    assert len(markers) == len(frame)
    assert markers[5] == 2
    assert markers[10] == -1
    assert int((markers != 0).sum()) == 2


def test_duration_is_elapsed_time_between_start_and_end():
    values = [100, 100, 50, 50, 50, 50, 80, 80, 80, 80, 100]
    frame = _make_readings("S1", values)

    result = detect_hypoglycemic_events(frame, min_duration_minutes=15)

    episode = result.events_detailed.iloc[0]
    assert (episode["end_time"] - episode["start_time"]) == pd.Timedelta(minutes=episode["duration_minutes"])
    assert episode["duration_minutes"] == pytest.approx(35.0)
    assert episode["average_glucose"] == pytest.approx(65.0)
    assert episode["duration_below_54_minutes"] == pytest.approx(20.0)


def test_prolonged_low_without_recovery_yields_no_episode():
    frame = _make_readings("S1", np.full(27, 40.0))

    result = detect_hypoglycemic_events(frame)

    assert result.events_detailed.empty
    assert result.events_total["total_events"].tolist() == [0]
    assert result.events_total["avg_ep_per_day"].tolist() == [0.0]
    discarded = result.events_discarded
    assert discarded["reason"].tolist() == ["unterminated"]
    assert bool(discarded["core_met"].iloc[0]) is True
    assert discarded["core_minutes"].iloc[0] == pytest.approx(135.0)


def test_hyperglycemic_events_default_to_extended_criteria():
    frame = _make_readings("S1", RISE_AND_FALL)

    result = detect_hyperglycemic_events(frame)

    assert result.events_detailed.empty
    assert result.events_total["total_events"].tolist() == [0]
    assert "duration_below_54_minutes" not in result.events_detailed.columns


def test_level1_exclusive_wrappers():
    hyper = detect_level1_hyperglycemic_events(_make_readings("S1", RISE_AND_FALL))
    assert hyper.events_detailed["start_index"].tolist() == [11]
    assert hyper.events_detailed["end_index"].tolist() == [13]
    assert hyper.events_detailed["average_glucose"].tolist() == [220.0]
    assert hyper.events_discarded["reason"].tolist() == ["band_exit"]

    hypo = detect_level1_hypoglycemic_events(_make_readings("S1", [100, 60, 60, 60, 50, 80, 80, 80, 80]))
    assert hypo.events_detailed["start_index"].tolist() == [2]
    assert hypo.events_detailed["end_index"].tolist() == [4]


def test_hyperglycemia_spans_short_sensor_dropout():
    minutes = list(range(0, 105, 5)) + list(range(120, 185, 5)) + list(range(185, 215, 5))
    values = [300.0] * 34 + [150.0] * 6
    frame = pd.DataFrame(
        {
            "subject_id": "S1",
            "timestamp": pd.Timestamp("2024-01-01", tz="UTC") + pd.to_timedelta(minutes, unit="min"),
            "glucose": values,
        }
    )

    result = detect_hyperglycemic_events(frame)

    detailed = result.events_detailed
    assert len(detailed) == 1
    assert detailed["start_index"].iloc[0] == 1
    assert detailed["end_index"].iloc[0] == 35
    assert detailed["duration_minutes"].iloc[0] == pytest.approx(185.0)
    assert result.events_discarded.empty


def test_subjects_are_processed_independently():
    first = _make_readings("A", RISE_AND_FALL)
    second = _make_readings("B", [100, 100, 50, 50, 50, 50, 80, 80, 80, 80, 100])
    combined = pd.concat([first, second], ignore_index=True)

    together = detect_events(combined, "hyper_lv2").events_total
    alone = detect_events(first, "hyper_lv2").events_total

    assert together["subject_id"].tolist() == ["A", "B"]
    pd.testing.assert_frame_equal(together.iloc[[0]].reset_index(drop=True), alone)
    assert together["total_events"].tolist() == [1, 0]


def test_unordered_input_is_ordered_per_subject():
    frame = _make_readings("S1", RISE_AND_FALL)
    shuffled = frame.iloc[::-1].reset_index(drop=True)

    result = detect_events(shuffled, "hyper_lv2")

    episode = result.events_detailed.iloc[0]
    assert episode["start_time"] == frame["timestamp"].iloc[5]
    assert episode["end_time"] == frame["timestamp"].iloc[10]
    assert episode["start_index"] == len(frame) - 5
    assert result.markers[len(frame) - 6] == 2


def test_context_overrides_category_settings():
    frame = _make_readings("S1", RISE_AND_FALL)
    context = EventContext(category_settings={"hyper_lv2": {"min_duration_minutes": 60}})

    result = detect_events(frame, "hyper_lv2", context=context)

    assert result.events_total["total_events"].tolist() == [0]


def test_unknown_category_is_rejected():
    with pytest.raises(ValueError):
        detect_events(_make_readings("S1", RISE_AND_FALL), "hyper_lv9")
