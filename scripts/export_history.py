#!/usr/bin/env python3
"""CLI for exporting attention history JSON into CSV."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from dwelltime.attribution.aggregate import daily_summary, history_to_frame, records_for_date, unique_dates
from dwelltime.attribution.history import HistoryStore
from dwelltime.io_utils import setup_logging


LOGGER = logging.getLogger("scripts.export_history")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Convert attention history JSON to CSV")
    parser.add_argument("history_json", type=Path, help="Path to attention history JSON")
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Optional output CSV path (defaults to same stem .csv)",
    )
    parser.add_argument("--date", type=str, default=None, help="Only export records of this YYYY-MM-DD day")
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Write one row per day (totals) instead of one row per record",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    records = HistoryStore(args.history_json).load()
    if args.date:
        records = records_for_date(records, args.date)

    if args.summary:
        df = pd.DataFrame([daily_summary(records, day).to_dict() for day in unique_dates(records)])
    else:
        df = history_to_frame(records)
    output_path = args.output or args.history_json.with_suffix(".csv")
    df.to_csv(output_path, index=False)
    LOGGER.info("Exported %d rows to %s", len(df), output_path)


if __name__ == "__main__":
    main()
