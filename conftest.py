"""Shared pytest fixtures; living at the repo root also makes ``scripts`` importable."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, Optional, Sequence

import numpy as np
import pytest

from dwelltime.detectors.replay import ManualClock
from dwelltime.types import FaceObservation, GenderEstimate

START = datetime(2024, 3, 1, 10, 0, 0)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def make_observation(clock: ManualClock) -> Callable[..., FaceObservation]:
    """Factory for observations stamped with the fixture clock's current time."""

    def _make(
        embedding: Sequence[float],
        age: int = 30,
        gender: str = "male",
        gender_probability: float = 0.9,
        landmarks: Optional[Sequence[Sequence[float]]] = None,
        timestamp: Optional[datetime] = None,
        expressions: Optional[Dict[str, float]] = None,
    ) -> FaceObservation:
        return FaceObservation(
            embedding=np.asarray(embedding, dtype=np.float32),
            bbox=(0.0, 0.0, 10.0, 10.0),
            age_estimate=age,
            gender=GenderEstimate(gender, gender_probability),
            detection_score=0.95,
            timestamp=timestamp or clock(),
            landmarks=np.asarray(landmarks, dtype=np.float32) if landmarks is not None else None,
            expressions=expressions,
        )

    return _make
