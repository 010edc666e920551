import numpy as np
import pandas as pd
import pytest

from cgm_events.models import RowRef
from cgm_events.segmentation import (
    SubjectSegmenter,
    extract_subject,
    group_by_subject,
    merge_subject_results,
    resolve_positions,
    row_refs,
    table_token,
)


def _frame(subjects, minutes, glucose):
    base = pd.Timestamp("2024-01-01", tz="UTC")
    return pd.DataFrame(
        {
            "subject_id": subjects,
            "timestamp": [base + pd.Timedelta(minutes=m) for m in minutes],
            "glucose": np.asarray(glucose, dtype=float),
        }
    )


def test_group_by_subject_keeps_first_seen_order():
    groups = group_by_subject(["b", "a", "b", "c", "a"])

    assert list(groups) == ["b", "a", "c"]
    assert groups["b"].tolist() == [0, 2]
    assert groups["a"].tolist() == [1, 4]
    assert groups["c"].tolist() == [3]


def test_extract_then_merge_restores_original_layout():
    frame = _frame(["b", "a", "b", "c", "a"], [0, 0, 5, 0, 5], [10, 20, 30, 40, 50])
    groups = group_by_subject(frame["subject_id"])

    per_subject = {sid: extract_subject(frame, rows, "glucose")[0] for sid, rows in groups.items()}
    merged = merge_subject_results(groups, per_subject, len(frame))

    np.testing.assert_array_equal(merged, frame["glucose"].to_numpy())


def test_merge_fills_rows_of_subjects_without_results():
    groups = group_by_subject(["a", "b", "a"])

    merged = merge_subject_results(groups, {"a": [7, 8]}, 3, fill_value=0)

    assert merged.tolist() == [7, 0, 8]


def test_merge_rejects_length_mismatch():
    groups = group_by_subject(["a", "a"])

    with pytest.raises(ValueError):
        merge_subject_results(groups, {"a": [1]}, 2)


def test_segmenter_orders_each_subject_by_time():
    frame = _frame(["A", "A", "A", "B"], [10, 0, 5, 0], [130, 110, 120, 90])
    segmenter = SubjectSegmenter(frame)

    subject = segmenter.slice("A")

    assert subject.positions.tolist() == [1, 2, 0]
    assert subject.glucose.tolist() == [110.0, 120.0, 130.0]
    assert np.all(np.diff(subject.times) > 0)
    assert subject.interval_minutes.tolist() == [5.0, 5.0, 5.0]


def test_segmenter_scalar_reading_minutes_applies_to_every_row():
    frame = _frame(["A", "A"], [0, 15], [100, 100])

    subject = SubjectSegmenter(frame, reading_minutes=15).slice("A")

    assert subject.interval_minutes.tolist() == [15.0, 15.0]


def test_map_subjects_parallel_matches_sequential():
    frame = _frame(["a", "b", "c", "a", "b", "c"], [0, 0, 0, 5, 5, 5], [1, 2, 3, 4, 5, 6])
    segmenter = SubjectSegmenter(frame)

    def total(subject):
        return float(subject.glucose.sum())

    sequential = segmenter.map_subjects(total)
    parallel = segmenter.map_subjects(total, max_workers=3)

    assert list(parallel) == list(sequential) == ["a", "b", "c"]
    assert parallel == sequential


def test_locate_maps_rows_to_subject_offsets():
    frame = _frame(["A", "B", "A", "B"], [5, 0, 0, 5], [1, 2, 3, 4])
    segmenter = SubjectSegmenter(frame)

    located = segmenter.locate(np.asarray([0, 3]))

    assert located["A"].tolist() == [1]
    assert located["B"].tolist() == [1]


def test_table_token_identifies_copies_of_the_same_table():
    frame = _frame(["A", "A"], [0, 5], [100, 110])
    other = _frame(["A", "A"], [0, 10], [100, 110])

    assert table_token(frame) == table_token(frame.copy())
    assert table_token(frame) != table_token(other)


def test_resolve_positions_accepts_refs_and_plain_integers():
    frame = _frame(["A", "A", "A"], [0, 5, 10], [1, 2, 3])

    assert resolve_positions(frame, row_refs(frame, [3, 1])).tolist() == [0, 2]
    assert resolve_positions(frame, [2, 2]).tolist() == [1]
    assert resolve_positions(frame, pd.DataFrame({"index": [1, 3]})).tolist() == [0, 2]


def test_resolve_positions_rejects_foreign_references():
    frame = _frame(["A", "A", "A"], [0, 5, 10], [1, 2, 3])
    other = _frame(["B", "B", "B"], [0, 5, 10], [1, 2, 3])

    with pytest.raises(ValueError):
        resolve_positions(frame, row_refs(other, [1]))
    with pytest.raises(ValueError):
        resolve_positions(frame, [4])
    with pytest.raises(ValueError):
        resolve_positions(frame, [RowRef(table_token(frame), 1), 2])
