"""Active track bookkeeping."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from dwelltime.types import Track

LOGGER = logging.getLogger("dwelltime.tracking.store")


def new_track_id() -> str:
    return f"track_{uuid.uuid4().hex[:12]}"


class TrackStore:
    """Maintains the active tracks, keyed by track id in creation order."""

    def __init__(self) -> None:
        self.active: Dict[str, Track] = {}

    def __len__(self) -> int:
        return len(self.active)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self.active

    def __iter__(self) -> Iterator[Track]:
        return iter(list(self.active.values()))

    def get(self, track_id: str) -> Optional[Track]:
        return self.active.get(track_id)

    def add(self, track: Track) -> Track:
        if track.track_id in self.active:
            raise ValueError(f"Track {track.track_id} is already active")
        self.active[track.track_id] = track
        return track

    def pop(self, track_id: str) -> Optional[Track]:
        return self.active.pop(track_id, None)

    def stale(self, now: datetime, timeout_ms: float) -> List[Track]:
        """Tracks idle for strictly longer than ``timeout_ms``."""
        timeout = timedelta(milliseconds=timeout_ms)
        return [track for track in self.active.values() if now - track.last_seen_at > timeout]

    def snapshot(self) -> List[Track]:
        return [track.copy() for track in self.active.values()]

    def clear(self) -> List[Track]:
        dropped = list(self.active.values())
        self.active.clear()
        return dropped
