"""Common dataclasses and type aliases used across the dwelltime package."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

# Bounding box order: x1, y1, x2, y2 (pixel coordinates)
BBox = Tuple[float, float, float, float]

GENDER_MALE = "male"
GENDER_FEMALE = "female"
GENDER_UNKNOWN = "unknown"

AGE_GROUPS = ("0-12", "13-18", "19-25", "26-35", "36-50", "51+")
EMOTION_NEUTRAL = "neutral"


@dataclass(frozen=True)
class GenderEstimate:
    """Raw gender output of the detector: predicted label and its probability."""

    label: str
    probability: float


@dataclass
class FaceObservation:
    """One face returned by a detector for a single frame."""

    embedding: np.ndarray
    bbox: BBox
    age_estimate: int
    gender: GenderEstimate
    detection_score: float
    timestamp: datetime
    landmarks: Optional[np.ndarray] = None
    # Expression label -> probability, when the detector provides them
    expressions: Optional[Dict[str, float]] = None


@dataclass
class Capture:
    """Enrollment capture: one embedding plus its self-reported quality."""

    embedding: np.ndarray
    quality: float = 0.0
    portrait_ref: Optional[str] = None


@dataclass
class Track:
    """A face followed across consecutive ticks while it stays detectable.

    Unidentified tracks carry a generated id; identified tracks reuse the
    identity id for the length of one continuous presence.
    """

    track_id: str
    embedding: np.ndarray
    first_seen_at: datetime
    last_seen_at: datetime
    identity_id: Optional[str] = None
    identity_name: Optional[str] = None
    gender: str = GENDER_UNKNOWN
    age: int = 0
    age_estimates: List[int] = field(default_factory=list)
    detection_score: float = 0.0
    bbox: BBox = (0.0, 0.0, 0.0, 0.0)
    emotions: List[Tuple[str, float]] = field(default_factory=list)

    @property
    def is_identified(self) -> bool:
        return self.identity_id is not None

    @property
    def age_group(self) -> str:
        return age_group(self.age)

    @property
    def duration_seconds(self) -> float:
        return (self.last_seen_at - self.first_seen_at).total_seconds()

    @property
    def emotion(self) -> str:
        return dominant_emotion(self.emotions)[0]

    @property
    def emotion_confidence(self) -> float:
        return dominant_emotion(self.emotions)[1]

    def observe(
        self,
        observation: FaceObservation,
        embedding: Optional[np.ndarray] = None,
        age_window: int = 10,
        gender_min_probability: float = 0.7,
        emotion_window: int = 10,
    ) -> None:
        """Fold a matching observation into the track.

        The embedding is replaced outright, not smoothed. Age estimates and
        expressions are kept in sliding windows.
        """
        self.embedding = observation.embedding if embedding is None else embedding
        if observation.timestamp > self.last_seen_at:
            self.last_seen_at = observation.timestamp
        self.detection_score = float(observation.detection_score)
        self.bbox = observation.bbox
        self.age_estimates.append(int(observation.age_estimate))
        if age_window > 0 and len(self.age_estimates) > age_window:
            del self.age_estimates[: len(self.age_estimates) - age_window]
        self.age = trimmed_mean_age(self.age_estimates)
        gender = gender_label(observation.gender, gender_min_probability)
        if gender != GENDER_UNKNOWN:
            self.gender = gender
        expression = top_expression(observation.expressions)
        if expression is not None:
            self.emotions.append(expression)
            if emotion_window > 0 and len(self.emotions) > emotion_window:
                del self.emotions[: len(self.emotions) - emotion_window]

    def copy(self) -> "Track":
        return copy.deepcopy(self)


@dataclass
class Identity:
    """An enrolled person with one or more reference embeddings."""

    id: str
    display_name: str
    external_ref: str
    reference_embeddings: List[np.ndarray]
    average_embedding: np.ndarray
    enrolled_at: datetime
    last_seen_at: Optional[datetime] = None
    best_portrait_ref: Optional[str] = None
    best_quality: float = 0.0

    def copy(self) -> "Identity":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "external_ref": self.external_ref,
            "reference_embeddings": [np.asarray(e, dtype=np.float32).tolist() for e in self.reference_embeddings],
            "average_embedding": np.asarray(self.average_embedding, dtype=np.float32).tolist(),
            "enrolled_at": self.enrolled_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "best_portrait_ref": self.best_portrait_ref,
            "best_quality": self.best_quality,
        }


@dataclass(frozen=True)
class AttentionRecord:
    """Closed attention session for one evicted track."""

    id: str
    track_id: str
    identity_id: Optional[str]
    identity_name: Optional[str]
    is_identified: bool
    gender: str
    age_group: str
    age: int
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    date: str  # YYYY-MM-DD of start_time
    emotion: str = EMOTION_NEUTRAL
    emotion_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "track_id": self.track_id,
            "identity_id": self.identity_id,
            "identity_name": self.identity_name,
            "is_identified": self.is_identified,
            "gender": self.gender,
            "age_group": self.age_group,
            "age": self.age,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_seconds": self.duration_seconds,
            "date": self.date,
            "emotion": self.emotion,
            "emotion_confidence": self.emotion_confidence,
        }


def age_group(age: int) -> str:
    """Bucket an age estimate into its display group."""
    if age <= 12:
        return "0-12"
    if age <= 18:
        return "13-18"
    if age <= 25:
        return "19-25"
    if age <= 35:
        return "26-35"
    if age <= 50:
        return "36-50"
    return "51+"


def gender_label(estimate: Optional[GenderEstimate], min_probability: float = 0.7) -> str:
    """Map a raw gender estimate to male/female, or unknown when not confident."""
    if estimate is None or estimate.probability < min_probability:
        return GENDER_UNKNOWN
    label = (estimate.label or "").strip().lower()
    if label in {"male", "m"}:
        return GENDER_MALE
    if label in {"female", "f"}:
        return GENDER_FEMALE
    return GENDER_UNKNOWN


def trimmed_mean_age(estimates: Sequence[float]) -> int:
    """Mean age after trimming 20% of the estimates from each end."""
    if not estimates:
        return 0
    if len(estimates) == 1:
        return int(round(estimates[0]))
    ordered = sorted(estimates)
    trim = int(len(ordered) * 0.2)
    trimmed = ordered[trim : len(ordered) - trim]
    if not trimmed:
        return int(round(ordered[len(ordered) // 2]))
    return int(round(float(np.mean(trimmed))))


def as_embedding(raw: Any) -> np.ndarray:
    """Convert a JSON list, tuple or array into a 1D float32 vector."""
    return np.asarray(raw, dtype=np.float32).reshape(-1)


def mean_embedding(embeddings: Sequence[np.ndarray]) -> np.ndarray:
    """Component-wise arithmetic mean of a non-empty set of embeddings."""
    if not embeddings:
        raise ValueError("Cannot average an empty set of embeddings")
    stacked = np.stack([as_embedding(e) for e in embeddings], axis=0)
    return stacked.mean(axis=0).astype(np.float32)


def top_expression(expressions: Optional[Dict[str, float]]) -> Optional[Tuple[str, float]]:
    """Most probable expression of a single face, or None when none were reported."""
    if not expressions:
        return None
    label, probability = max(expressions.items(), key=lambda item: item[1])
    return str(label), float(probability)


def dominant_emotion(emotions: Sequence[Tuple[str, float]]) -> Tuple[str, float]:
    """Expression with the highest summed probability over the window.

    The confidence is that sum divided by the window length, so an emotion
    seen in half the frames at 0.8 scores 0.4.
    """
    if not emotions:
        return EMOTION_NEUTRAL, 0.0
    scores: Dict[str, float] = {}
    for label, probability in emotions:
        scores[label] = scores.get(label, 0.0) + probability
    best, best_score = EMOTION_NEUTRAL, 0.0
    for label, score in scores.items():
        if score > best_score:
            best, best_score = label, score
    return best, best_score / len(emotions)
