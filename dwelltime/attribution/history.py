"""Attention history: closing evicted tracks into bounded, persisted records."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from dwelltime.io_utils import dump_json, load_json, parse_timestamp
from dwelltime.tracking.store import TrackStore
from dwelltime.types import EMOTION_NEUTRAL, AttentionRecord, Track

LOGGER = logging.getLogger("dwelltime.attribution.history")


class HistoryStore:
    """JSON file holding the newest-first record list with ISO-8601 times."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[AttentionRecord]:
        if not self.path.exists():
            return []
        try:
            payload = load_json(self.path)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unable to read attention history %s (%s); starting empty", self.path, exc)
            return []
        if not isinstance(payload, list):
            LOGGER.warning("Attention history %s is not a JSON array; starting empty", self.path)
            return []
        records: List[AttentionRecord] = []
        for idx, entry in enumerate(payload):
            try:
                records.append(_record_from_dict(entry))
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed attention record %d in %s: %s", idx, self.path, exc)
        LOGGER.info("Loaded attention history %s: %d records", self.path, len(records))
        return records

    def save(self, records: Sequence[AttentionRecord]) -> bool:
        try:
            dump_json(self.path, [record.to_dict() for record in records])
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning("Failed to persist attention history to %s: %s", self.path, exc)
            return False
        return True


def _record_from_dict(entry: Dict[str, Any]) -> AttentionRecord:
    start_time = parse_timestamp(entry["start_time"])
    end_time = parse_timestamp(entry["end_time"])
    if start_time is None or end_time is None:
        raise ValueError("record is missing start or end time")
    identity_id = entry.get("identity_id")
    return AttentionRecord(
        id=str(entry["id"]),
        track_id=str(entry["track_id"]),
        identity_id=identity_id,
        identity_name=entry.get("identity_name"),
        is_identified=bool(entry.get("is_identified", identity_id is not None)),
        gender=str(entry.get("gender", "unknown")),
        age_group=str(entry.get("age_group", "")),
        age=int(entry.get("age", 0)),
        start_time=start_time,
        end_time=end_time,
        duration_seconds=float(entry["duration_seconds"]),
        date=str(entry.get("date") or start_time.date().isoformat()),
        emotion=str(entry.get("emotion") or EMOTION_NEUTRAL),
        emotion_confidence=float(entry.get("emotion_confidence") or 0.0),
    )


class AttentionHistory:
    """Newest-first record list capped at ``max_records``."""

    def __init__(self, max_records: int = 500, store: Optional[HistoryStore] = None) -> None:
        self.max_records = max_records
        self.store = store
        self._records: List[AttentionRecord] = []
        if store is not None:
            self._records = store.load()[:max_records]

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> List[AttentionRecord]:
        return list(self._records)

    def add(self, record: AttentionRecord) -> None:
        self.add_many([record])

    def add_many(self, records: Iterable[AttentionRecord]) -> None:
        """Prepend records in the given order, so the last one ends up newest."""
        added = False
        for record in records:
            self._records.insert(0, record)
            added = True
        if not added:
            return
        if len(self._records) > self.max_records:
            del self._records[self.max_records :]
        self._persist()

    def clear(self) -> int:
        count = len(self._records)
        self._records.clear()
        self._persist()
        return count

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(self._records)


class AttentionRecorder:
    """Evicts idle tracks and turns the long-lived ones into attention records."""

    def __init__(
        self,
        history: AttentionHistory,
        timeout_ms: float = 3000.0,
        min_duration_seconds: float = 1.0,
    ) -> None:
        self.history = history
        self.timeout_ms = timeout_ms
        self.min_duration_seconds = min_duration_seconds

    def close_track(self, track: Track) -> Optional[AttentionRecord]:
        """Build the record for an evicted track, or None for detection noise."""
        duration = track.duration_seconds
        if duration < self.min_duration_seconds:
            LOGGER.debug("Dropped track %s after %.2fs (below %.2fs)", track.track_id, duration, self.min_duration_seconds)
            return None
        return AttentionRecord(
            id=f"attention_{uuid.uuid4().hex[:12]}",
            track_id=track.track_id,
            identity_id=track.identity_id,
            identity_name=track.identity_name,
            is_identified=track.is_identified,
            gender=track.gender,
            age_group=track.age_group,
            age=track.age,
            start_time=track.first_seen_at,
            end_time=track.last_seen_at,
            duration_seconds=duration,
            date=track.first_seen_at.date().isoformat(),
            emotion=track.emotion,
            emotion_confidence=track.emotion_confidence,
        )

    def sweep(self, store: TrackStore, now: datetime) -> List[AttentionRecord]:
        return self._close(store, store.stale(now, self.timeout_ms))

    def flush(self, store: TrackStore) -> List[AttentionRecord]:
        """Close every active track, e.g. on shutdown."""
        return self._close(store, list(store))

    def _close(self, store: TrackStore, tracks: Iterable[Track]) -> List[AttentionRecord]:
        emitted: List[AttentionRecord] = []
        for track in tracks:
            store.pop(track.track_id)
            record = self.close_track(track)
            if record is None:
                continue
            emitted.append(record)
            LOGGER.info(
                "Attention recorded: %s - %.1fs",
                record.identity_name or record.track_id,
                record.duration_seconds,
            )
        self.history.add_many(emitted)
        return emitted
