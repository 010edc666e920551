"""Command-line utility for running CGM event detection over a readings table.

The tool reads one table holding readings for any number of subjects, either
as CSV with ``subject_id``, ``timestamp`` and ``glucose`` columns or as a JSON
list of records::

    [
        {"subject_id": "S1", "timestamp": "2025-01-01T00:00:00Z", "glucose": 110},
        ...
    ]

A Python callable (``--fetcher module:function``) returning such records or a
DataFrame may be used instead of a file. Results are written as JSON to stdout
or to ``--output`` if provided.
"""
from __future__ import annotations

import argparse
import json
import logging
from importlib import import_module
from pathlib import Path
from typing import Any, Callable, Iterable

import numpy as np
import pandas as pd

from cgm_events.aggregator import EXCLUSIVE_MODES, detect_all_events
from cgm_events.events import EventDetectionResult, detect_hyperglycemic_events, detect_hypoglycemic_events
from cgm_events.grid import grid
from cgm_events.maxima import maxima_grid
from cgm_events.models import REQUIRED_COLUMNS
from models.cgm_models import (
    CgmAnalysisEnum,
    CgmBatchResponse,
    CgmEpisodeRecord,
    CgmEventSummaryRecord,
    CgmEventTotalRecord,
    CgmGridPointRecord,
    CgmMaximaRecord,
    CgmReading,
)


def records_to_frame(records: Iterable[Any]) -> pd.DataFrame:
    """Validate reading records and return them as a readings table."""

    if isinstance(records, pd.DataFrame):
        return records.copy()
    readings = [record if isinstance(record, CgmReading) else CgmReading.model_validate(record) for record in records]
    frame = pd.DataFrame([reading.model_dump() for reading in readings], columns=list(REQUIRED_COLUMNS))
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    return frame


def load_readings(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Readings file not found: {path}")
    if path.suffix.lower() == ".csv":
        frame = pd.read_csv(path)
        frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
        return frame
    with path.open() as handle:
        return records_to_frame(json.load(handle))


def _table_records(table: pd.DataFrame, model: type) -> list:
    records = []
    for row in table.to_dict("records"):
        cleaned = {key: _plain(value) for key, value in row.items()}
        records.append(model.model_validate(cleaned))
    return records


def _plain(value: Any) -> Any:
    if value is None or value is pd.NaT or value is pd.NA:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def _event_response(analysis: CgmAnalysisEnum, result: EventDetectionResult) -> CgmBatchResponse:
    return CgmBatchResponse(
        analysis=analysis,
        totals=_table_records(result.events_total, CgmEventTotalRecord),
        episodes=_table_records(result.events_detailed, CgmEpisodeRecord),
    )


def run(
    frame: pd.DataFrame,
    analysis: CgmAnalysisEnum,
    *,
    reading_minutes: float | None = None,
    exclusive_mode: str = "banded",
    workers: int = 1,
) -> CgmBatchResponse:
    logging.info(f"Running {analysis.value} over {len(frame)} reading(s)")
    if analysis is CgmAnalysisEnum.ALL_EVENTS:
        summary = detect_all_events(
            frame,
            reading_minutes=reading_minutes,
            exclusive_mode=exclusive_mode,
            max_workers=workers,
        )
        return CgmBatchResponse(analysis=analysis, summary=_table_records(summary, CgmEventSummaryRecord))
    if analysis is CgmAnalysisEnum.HYPO:
        return _event_response(analysis, detect_hypoglycemic_events(frame, reading_minutes=reading_minutes))
    if analysis is CgmAnalysisEnum.HYPER:
        return _event_response(analysis, detect_hyperglycemic_events(frame, reading_minutes=reading_minutes))
    if analysis is CgmAnalysisEnum.GRID:
        result = grid(frame)
        return CgmBatchResponse(
            analysis=analysis,
            grid_points=_table_records(result.episode_start_total, CgmGridPointRecord),
        )
    result = maxima_grid(frame)
    return CgmBatchResponse(analysis=analysis, maxima=_table_records(result.results, CgmMaximaRecord))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run CGM event detection in batch")
    parser.add_argument("--input", type=Path, help="CSV or JSON file with subject_id, timestamp and glucose")
    parser.add_argument(
        "--fetcher",
        help="Python callable (module:function) that returns reading records or a DataFrame",
    )
    parser.add_argument(
        "--analysis",
        choices=[item.value for item in CgmAnalysisEnum],
        default=CgmAnalysisEnum.ALL_EVENTS.value,
        help="Analysis to run",
    )
    parser.add_argument("--reading-minutes", type=float, default=None, help="Sampling interval in minutes")
    parser.add_argument("--exclusive-mode", choices=EXCLUSIVE_MODES, default="banded")
    parser.add_argument("--workers", type=int, default=1, help="Subjects processed in parallel")
    parser.add_argument("--output", type=Path, help="Optional output JSON file")
    parser.add_argument("--indent", type=int, default=None, help="Pretty-print JSON with the given indent")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    return parser.parse_args(argv)


def _resolve_callable(path: str) -> Callable[[], Any]:
    try:
        module_name, func_name = path.rsplit(":", 1)
    except ValueError as exc:
        raise ValueError("Fetcher must be in 'module:function' format") from exc
    module = import_module(module_name)
    func = getattr(module, func_name, None)
    if not callable(func):
        raise TypeError(f"{path!r} is not callable")
    return func


def _build_frame(args: argparse.Namespace) -> pd.DataFrame:
    if args.fetcher:
        return records_to_frame(_resolve_callable(args.fetcher)())
    if not args.input:
        raise SystemExit("Either --input or --fetcher must be provided")
    return load_readings(args.input)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    frame = _build_frame(args)
    response = run(
        frame,
        CgmAnalysisEnum(args.analysis),
        reading_minutes=args.reading_minutes,
        exclusive_mode=args.exclusive_mode,
        workers=args.workers,
    )

    output_text = json.dumps(response.model_dump(mode="json", exclude_none=True), indent=args.indent)
    if args.output:
        args.output.write_text(output_text)
    else:
        print(output_text)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
