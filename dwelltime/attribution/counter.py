"""Unique-visit counter with a short de-duplication window."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, Optional

LOGGER = logging.getLogger("dwelltime.attribution.counter")


@dataclass(frozen=True)
class PeopleCount:
    total: int
    today: int
    day: Optional[str]


class PeopleCounter:
    """Counts track ids as visits unless already counted within the window.

    Only the moment a track was counted is remembered; re-sightings inside
    the window do not extend it.
    """

    def __init__(self, dedup_window_ms: float = 10000.0, purge_after_ms: float = 60000.0) -> None:
        self.dedup_window = timedelta(milliseconds=dedup_window_ms)
        self.purge_after = timedelta(milliseconds=purge_after_ms)
        self.total = 0
        self.today = 0
        self.day: Optional[date] = None
        self._counted_at: Dict[str, datetime] = {}

    def process(self, track_ids: Iterable[str], now: datetime) -> int:
        if self.day is None:
            self.day = now.date()
        new_visits = 0
        for track_id in track_ids:
            last = self._counted_at.get(track_id)
            if last is None or now - last > self.dedup_window:
                self._counted_at[track_id] = now
                new_visits += 1
        if new_visits:
            self.total += new_visits
            self.today += new_visits
            LOGGER.debug("Counted %d new visits (total=%d today=%d)", new_visits, self.total, self.today)

        expired = [tid for tid, seen in self._counted_at.items() if now - seen > self.purge_after]
        for tid in expired:
            del self._counted_at[tid]
        return new_visits

    def check_rollover(self, now: datetime) -> bool:
        """Reset the daily counter once the calendar day has changed."""
        today = now.date()
        if self.day is None:
            self.day = today
            return False
        if today == self.day:
            return False
        LOGGER.info("Day rolled over %s -> %s; resetting today's count (%d)", self.day, today, self.today)
        self.day = today
        self.today = 0
        self._counted_at.clear()
        return True

    def snapshot(self) -> PeopleCount:
        return PeopleCount(
            total=self.total,
            today=self.today,
            day=self.day.isoformat() if self.day else None,
        )

    def tracked_ids(self) -> int:
        return len(self._counted_at)
