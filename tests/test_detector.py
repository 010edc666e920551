import numpy as np
import pytest

from cgm_events import categories
from cgm_events.detector import TwoPhaseEventDetector, min_reading_count
from cgm_events.episodes import markers_to_spans
from cgm_events.models import SubjectSlice


def _slice(values, minutes=None, interval=5.0):
    n = len(values)
    if minutes is None:
        minutes = [i * 5 for i in range(n)]
    return SubjectSlice(
        subject_id="S",
        positions=np.arange(n),
        times=np.asarray(minutes, dtype=float) * 60.0,
        glucose=np.asarray(values, dtype=float),
        interval_minutes=np.full(n, interval),
    )


def _spans(criteria, subject):
    scan = TwoPhaseEventDetector(criteria).scan(subject)
    return [(span.start, span.end) for span in markers_to_spans(scan.markers)], scan


def test_min_reading_count_covers_three_quarters_of_core():
    assert min_reading_count(15, 5, 0.1) == 3
    assert min_reading_count(120, 5, 0.1) == 18
    assert min_reading_count(15, 0, 0.1) == 1


def test_hypo_episode_ends_at_confirmed_recovery():
    subject = _slice([100, 100, 60, 60, 60, 80, 80, 80, 80, 100])

    spans, scan = _spans(categories.HYPO_LV1, subject)

    assert spans == [(2, 8)]
    assert scan.markers[2] == 2 and scan.markers[8] == -1
    assert scan.discarded == ()


def test_hypo_short_dip_is_cancelled_on_recovery():
    subject = _slice([100, 60, 60, 80, 80, 80, 80, 60, 60, 60, 80, 80, 80, 80])

    spans, scan = _spans(categories.HYPO_LV1, subject)

    assert spans == [(7, 13)]
    assert [item.reason for item in scan.discarded] == ["core_unmet"]
    assert scan.discarded[0].core_met is False


def test_hyper_short_core_pends_until_core_is_met():
    subject = _slice([150, 200, 200, 170, 200, 200, 150, 150, 150, 150])

    spans, _ = _spans(categories.HYPER_LV1, subject)

    assert spans == [(1, 6)]


def test_missing_readings_are_skipped_inside_core():
    subject = _slice([100, 60, np.nan, 60, 60, 80, 80, 80, 80])

    spans, _ = _spans(categories.HYPO_LV1, subject)

    assert spans == [(1, 8)]


def test_missing_readings_do_not_count_as_recovery():
    subject = _slice([60, 60, 60, np.nan, np.nan, np.nan, np.nan, 100])

    spans, scan = _spans(categories.HYPO_LV1, subject)

    assert spans == []
    assert [item.reason for item in scan.discarded] == ["unterminated"]
    assert scan.discarded[0].core_met is True


def test_hypo_candidate_across_data_gap_is_discarded():
    subject = _slice([60, 60, 60, 60, 100, 100, 100, 100], minutes=[0, 5, 10, 15, 45, 50, 55, 60])

    spans, scan = _spans(categories.HYPO_LV1, subject)

    assert spans == []
    assert [item.reason for item in scan.discarded] == ["data_gap"]
    assert scan.discarded[0].core_minutes == pytest.approx(20.0)


def test_hyper_candidate_across_data_gap_ends_at_last_core_reading():
    subject = _slice([200, 200, 200, 200, 150, 150, 150, 150], minutes=[0, 5, 10, 15, 255, 260, 265, 270])

    spans, scan = _spans(categories.HYPER_LV1, subject)

    assert spans == [(0, 3)]
    assert scan.discarded == ()


def test_short_dropout_does_not_split_hyper_core():
    subject = _slice(
        [200, 200, 200, 200, 200, 200, 200, 200, 150, 150, 150, 150],
        minutes=[0, 5, 10, 15, 35, 40, 45, 50, 55, 60, 65, 70],
    )

    spans, scan = _spans(categories.HYPER_LV1, subject)

    assert spans == [(0, 8)]
    assert scan.discarded == ()


def test_hyper_unterminated_event_ends_at_last_core_reading():
    subject = _slice([150, 200, 200, 200, 200])

    spans, _ = _spans(categories.HYPER_LV1, subject)

    assert spans == [(1, 4)]


def test_hypo_exclusive_band_closes_at_severe_reading():
    subject = _slice([100, 60, 60, 60, 50, 80, 80, 80, 80])

    spans, scan = _spans(categories.HYPO_LV1_EXCL, subject)

    assert spans == [(1, 3)]
    assert scan.discarded == ()


def test_short_in_band_stretch_before_severe_reading_is_discarded():
    subject = _slice([100, 60, 50, 50, 60, 60, 60, 80, 80, 80, 80])

    spans, scan = _spans(categories.HYPO_LV1_EXCL, subject)

    assert spans == [(4, 10)]
    assert [item.reason for item in scan.discarded] == ["band_exit"]
    assert scan.discarded[0].core_met is False


def test_hyper_exclusive_band_skips_readings_above_band():
    subject = _slice([60, 100, 140, 180, 220, 260, 280, 300, 290, 270, 240, 220, 200, 180, 170, 160, 150, 150, 150, 150])

    spans, scan = _spans(categories.HYPER_LV1_EXCL, subject)

    assert spans == [(10, 12)]
    assert [(item.start_index, item.reason) for item in scan.discarded] == [(5, "band_exit")]


def test_hyper_exclusive_band_ends_before_recovery():
    subject = _slice([150, 200, 200, 200, 150, 150, 150, 150])

    spans, _ = _spans(categories.HYPER_LV1_EXCL, subject)

    assert spans == [(1, 3)]


def test_constant_severe_hypo_is_reported_as_unterminated():
    subject = _slice(np.full(27, 40.0))

    spans, scan = _spans(categories.HYPO_EXTENDED, subject)

    assert spans == []
    assert len(scan.discarded) == 1
    discarded = scan.discarded[0]
    assert discarded.reason == "unterminated"
    assert discarded.core_met is True
    assert discarded.core_minutes == pytest.approx(135.0)
