"""Replay detector fed from recorded observations (JSON lines)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from dwelltime.io_utils import parse_timestamp
from dwelltime.types import FaceObservation, GenderEstimate, as_embedding

LOGGER = logging.getLogger("dwelltime.detectors.replay")


@dataclass
class ReplayFrame:
    """All faces recorded for one detection tick."""

    timestamp: datetime
    faces: List[FaceObservation] = field(default_factory=list)


class ManualClock:
    """Clock whose time only moves when told to; used for replays and tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when

    def advance(self, milliseconds: float = 0.0, seconds: float = 0.0) -> datetime:
        self.now = self.now + timedelta(milliseconds=milliseconds, seconds=seconds)
        return self.now


def observation_from_dict(face: Dict[str, Any], timestamp: datetime) -> FaceObservation:
    bbox = face.get("bbox") or [0.0, 0.0, 0.0, 0.0]
    x1, y1, x2, y2 = [float(v) for v in bbox[:4]]
    landmarks = face.get("landmarks")
    expressions = face.get("expressions")
    return FaceObservation(
        embedding=as_embedding(face["embedding"]),
        bbox=(x1, y1, x2, y2),
        age_estimate=int(round(float(face.get("age", 0)))),
        gender=GenderEstimate(
            label=str(face.get("gender", "unknown")),
            probability=float(face.get("gender_probability", 0.0)),
        ),
        detection_score=float(face.get("score", 1.0)),
        timestamp=timestamp,
        landmarks=np.asarray(landmarks, dtype=np.float32) if landmarks is not None else None,
        expressions={str(k): float(v) for k, v in dict(expressions).items()} if expressions else None,
    )


def iter_replay(path: Path) -> Iterator[ReplayFrame]:
    """Yield frames from a JSON-lines file, skipping blank and malformed lines."""
    with Path(path).open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
                timestamp = parse_timestamp(payload["timestamp"])
                if timestamp is None:
                    raise ValueError("empty timestamp")
                faces = [observation_from_dict(face, timestamp) for face in payload.get("faces", [])]
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping replay line %d in %s: %s", lineno, path, exc)
                continue
            yield ReplayFrame(timestamp=timestamp, faces=faces)


def load_replay(path: Path) -> List[ReplayFrame]:
    frames = list(iter_replay(path))
    LOGGER.info("Loaded %d replay frames from %s", len(frames), path)
    return frames


class ReplayDetector:
    """Detector adapter whose "frames" are already :class:`ReplayFrame` objects."""

    def detect(self, frame: Optional[ReplayFrame]) -> List[FaceObservation]:
        if frame is None:
            return []
        return list(frame.faces)
