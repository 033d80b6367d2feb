"""Read-side queries over attention history: daily summaries and rankings."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

import pandas as pd

from dwelltime.types import AttentionRecord

DayLike = Union[str, date, datetime]

HISTORY_COLUMNS = [
    "id",
    "track_id",
    "identity_id",
    "identity_name",
    "is_identified",
    "gender",
    "age_group",
    "age",
    "start_time",
    "end_time",
    "duration_seconds",
    "date",
    "emotion",
    "emotion_confidence",
]


@dataclass
class DailySummary:
    date: str
    total_duration: float = 0.0
    record_count: int = 0
    average_duration: float = 0.0
    max_duration: float = 0.0
    identified_count: int = 0
    unidentified_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "total_duration": self.total_duration,
            "record_count": self.record_count,
            "average_duration": self.average_duration,
            "max_duration": self.max_duration,
            "identified_count": self.identified_count,
            "unidentified_count": self.unidentified_count,
        }


@dataclass
class AttentionGetter:
    key: str
    identity_name: Optional[str]
    is_identified: bool
    gender: str
    age: int
    total_duration: float
    sessions: int


def day_key(day: DayLike) -> str:
    """Normalise a date, datetime or YYYY-MM-DD string to YYYY-MM-DD."""
    if isinstance(day, datetime):
        return day.date().isoformat()
    if isinstance(day, date):
        return day.isoformat()
    return str(day)


def history_to_frame(records: Iterable[AttentionRecord]) -> pd.DataFrame:
    rows = [
        {
            "id": r.id,
            "track_id": r.track_id,
            "identity_id": r.identity_id,
            "identity_name": r.identity_name,
            "is_identified": r.is_identified,
            "gender": r.gender,
            "age_group": r.age_group,
            "age": r.age,
            "start_time": r.start_time,
            "end_time": r.end_time,
            "duration_seconds": r.duration_seconds,
            "date": r.date,
            "emotion": r.emotion,
            "emotion_confidence": r.emotion_confidence,
        }
        for r in records
    ]
    if not rows:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def records_for_date(records: Iterable[AttentionRecord], day: DayLike) -> List[AttentionRecord]:
    key = day_key(day)
    return [r for r in records if r.date == key]


def records_for_identity(records: Iterable[AttentionRecord], identity_id: str) -> List[AttentionRecord]:
    return [r for r in records if r.identity_id == identity_id]


def unique_dates(records: Iterable[AttentionRecord]) -> List[str]:
    """Distinct record dates, most recent first."""
    return sorted({r.date for r in records}, reverse=True)


def daily_summary(records: Iterable[AttentionRecord], day: DayLike) -> DailySummary:
    key = day_key(day)
    day_records = records_for_date(records, key)
    if not day_records:
        return DailySummary(date=key)

    df = history_to_frame(day_records)
    durations = df["duration_seconds"].astype(float)
    identified = int(df["is_identified"].astype(bool).sum())
    total = float(durations.sum())
    return DailySummary(
        date=key,
        total_duration=total,
        record_count=len(df),
        average_duration=total / len(df),
        max_duration=float(durations.max()),
        identified_count=identified,
        unidentified_count=len(df) - identified,
    )


def top_attention_getters(
    records: Sequence[AttentionRecord],
    day: DayLike,
    limit: int = 5,
) -> List[AttentionGetter]:
    """Rank people (identity id, else track id) by total attention on ``day``.

    Groups keep the order in which they first appear in ``records`` and the
    sort is stable, so ties stay in that order.
    """
    day_records = records_for_date(records, day)
    if not day_records or limit <= 0:
        return []

    df = history_to_frame(day_records)
    df["key"] = df["identity_id"].where(df["identity_id"].notna(), df["track_id"])
    grouped = df.groupby("key", sort=False).agg(
        identity_name=("identity_name", "first"),
        is_identified=("is_identified", "first"),
        gender=("gender", "first"),
        age=("age", "first"),
        total_duration=("duration_seconds", "sum"),
        sessions=("duration_seconds", "size"),
    )
    ranked = grouped.sort_values("total_duration", ascending=False, kind="stable").head(limit)

    getters: List[AttentionGetter] = []
    for key, row in ranked.iterrows():
        name = row["identity_name"]
        getters.append(
            AttentionGetter(
                key=str(key),
                identity_name=None if pd.isna(name) else str(name),
                is_identified=bool(row["is_identified"]),
                gender=str(row["gender"]),
                age=int(row["age"]),
                total_duration=float(row["total_duration"]),
                sessions=int(row["sessions"]),
            )
        )
    return getters


def format_duration(seconds: float) -> str:
    """Render a duration as ``12.5s`` under a minute, else ``3m 5s``."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    # Halves round up: 62.5s renders as "1m 3s"
    remaining = int(math.floor(seconds % 60 + 0.5))
    return f"{minutes}m {remaining}s"
