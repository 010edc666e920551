"""Input checks and ordering for CGM reading tables."""
from __future__ import annotations

import logging
from typing import Any, Final

import numpy as np
import pandas as pd

from .models import GLUCOSE_COLUMN, REQUIRED_COLUMNS, SUBJECT_COLUMN, TIME_COLUMN

READING_MINUTES_COLUMN: Final[str] = "reading_minutes"
_MIN_READING_MINUTES: Final[float] = 0.1


class CGMValidationError(ValueError):
    """Raised when a reading table cannot be analyzed."""


def validate_readings(frame: Any, reading_minutes: Any = None) -> pd.DataFrame:
    """Return a coerced copy of ``frame`` with complete subject and time columns.

    A per-row ``reading_minutes`` vector is stored in the ``reading_minutes``
    column so it stays aligned when incomplete rows are dropped.
    """

    if not isinstance(frame, pd.DataFrame):
        raise CGMValidationError(f"Readings must be a pandas DataFrame, got {type(frame).__name__}")
    missing = [column for column in REQUIRED_COLUMNS if column not in frame.columns]
    if missing:
        raise CGMValidationError(f"Readings are missing required columns: {', '.join(missing)}")

    df = frame.copy()
    df[TIME_COLUMN] = pd.to_datetime(df[TIME_COLUMN], errors="coerce")
    df[GLUCOSE_COLUMN] = pd.to_numeric(df[GLUCOSE_COLUMN], errors="coerce").astype(float)

    validate_reading_minutes(reading_minutes, len(df))
    if reading_minutes is not None and np.ndim(reading_minutes) > 0:
        df[READING_MINUTES_COLUMN] = np.asarray(reading_minutes, dtype=float)

    missing_subject = df[SUBJECT_COLUMN].isna()
    if missing_subject.any():
        logging.warning(f"Dropping {int(missing_subject.sum())} reading(s) with missing {SUBJECT_COLUMN}")
    missing_time = df[TIME_COLUMN].isna() & ~missing_subject
    if missing_time.any():
        logging.warning(f"Dropping {int(missing_time.sum())} reading(s) with missing {TIME_COLUMN}")

    df = df.loc[~(missing_subject | missing_time)].reset_index(drop=True)
    df[SUBJECT_COLUMN] = df[SUBJECT_COLUMN].astype(str)
    return df


def validate_reading_minutes(reading_minutes: Any, total_rows: int) -> None:
    """Reject reading intervals that are too small or of the wrong length."""

    if reading_minutes is None:
        return
    values = np.atleast_1d(np.asarray(reading_minutes, dtype=float))
    if np.ndim(reading_minutes) > 0 and len(values) != total_rows:
        raise CGMValidationError(
            f"reading_minutes must be a scalar or have one value per row ({total_rows}), got {len(values)}"
        )
    if np.isnan(values).any() or (values < _MIN_READING_MINUTES).any():
        raise CGMValidationError(f"reading_minutes must be >= {_MIN_READING_MINUTES}")


def prepare_readings(frame: Any, reading_minutes: Any = None) -> tuple[pd.DataFrame, Any]:
    """Validate ``frame`` and resolve the reading interval to a scalar, array or None."""

    df = validate_readings(frame, reading_minutes)
    if READING_MINUTES_COLUMN in df.columns and (reading_minutes is None or np.ndim(reading_minutes) > 0):
        per_row = pd.to_numeric(df[READING_MINUTES_COLUMN], errors="coerce").to_numpy(dtype=float)
        validate_reading_minutes(per_row, len(df))
        return df, per_row
    return df, reading_minutes


def order_readings(frame: pd.DataFrame) -> pd.DataFrame:
    """Stable sort by subject then timestamp."""

    return frame.sort_values([SUBJECT_COLUMN, TIME_COLUMN], kind="mergesort").reset_index(drop=True)
