"""Per-tick association of face observations with active tracks."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Collection, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy.optimize import linear_sum_assignment

from dwelltime.recognition.distance import ComparisonError, euclidean_distance, validate_embedding
from dwelltime.recognition.resolver import IdentityResolver, Resolution
from dwelltime.tracking.store import TrackStore, new_track_id
from dwelltime.types import FaceObservation, Track

LOGGER = logging.getLogger("dwelltime.tracking.matcher")

IdentitySeenCallback = Callable[[Resolution, datetime], None]

# Cost assigned to pairs that may never be matched.
_GATED_COST = 1e6


@dataclass
class MatchOutcome:
    updated: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    identified: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def touched(self) -> List[str]:
        """Track ids updated or created this tick, without duplicates."""
        seen: Dict[str, None] = {}
        for track_id in self.updated + self.created:
            seen.setdefault(track_id, None)
        return list(seen)


class TrackMatcher:
    """Base class for matchers; subclasses decide which track an observation joins.

    Unmatched observations are resolved against the identity gallery: a hit
    reuses the identity id as the track id, a miss opens a fresh track.
    """

    def __init__(
        self,
        resolver: Optional[IdentityResolver],
        track_threshold: float = 0.5,
        embedding_dim: Optional[int] = 128,
        age_window: int = 10,
        gender_min_probability: float = 0.7,
        emotion_window: int = 10,
        announce_cooldown_ms: float = 5000.0,
        on_identity_seen: Optional[IdentitySeenCallback] = None,
    ) -> None:
        self.resolver = resolver
        self.track_threshold = track_threshold
        self.embedding_dim = embedding_dim
        self.age_window = age_window
        self.gender_min_probability = gender_min_probability
        self.emotion_window = emotion_window
        self.announce_cooldown = timedelta(milliseconds=announce_cooldown_ms)
        self.on_identity_seen = on_identity_seen
        self._announced: Dict[str, datetime] = {}

    def match(self, observations: Sequence[FaceObservation], store: TrackStore) -> MatchOutcome:
        raise NotImplementedError

    def _accept(self, observations: Sequence[FaceObservation], outcome: MatchOutcome) -> List[Tuple[FaceObservation, np.ndarray]]:
        accepted: List[Tuple[FaceObservation, np.ndarray]] = []
        for idx, observation in enumerate(observations):
            try:
                embedding = validate_embedding(observation.embedding, self.embedding_dim)
            except ComparisonError as exc:
                LOGGER.warning("Skipping observation %d with malformed embedding: %s", idx, exc)
                outcome.skipped += 1
                continue
            accepted.append((observation, embedding))
        return accepted

    def _distance(self, embedding: np.ndarray, track: Track) -> Optional[float]:
        try:
            return euclidean_distance(embedding, track.embedding)
        except ComparisonError as exc:
            LOGGER.warning("Comparison with track %s failed: %s", track.track_id, exc)
            return None

    def _first_match(
        self,
        embedding: np.ndarray,
        store: TrackStore,
        exclude: Collection[str] = (),
    ) -> Optional[Track]:
        for track in store:
            if track.track_id in exclude:
                continue
            distance = self._distance(embedding, track)
            if distance is not None and distance < self.track_threshold:
                LOGGER.debug("Observation joins track %s (distance %.3f)", track.track_id, distance)
                return track
        return None

    def _place(
        self,
        observation: FaceObservation,
        embedding: np.ndarray,
        store: TrackStore,
        outcome: MatchOutcome,
        exclude: Collection[str] = (),
    ) -> Track:
        track = self._first_match(embedding, store, exclude)
        if track is not None:
            self._update(track, observation, embedding, outcome)
            return track
        return self._resolve_or_create(observation, embedding, store, outcome)

    def _update(
        self,
        track: Track,
        observation: FaceObservation,
        embedding: np.ndarray,
        outcome: MatchOutcome,
    ) -> None:
        track.observe(
            observation,
            embedding=embedding,
            age_window=self.age_window,
            gender_min_probability=self.gender_min_probability,
            emotion_window=self.emotion_window,
        )
        outcome.updated.append(track.track_id)

    def _resolve_or_create(
        self,
        observation: FaceObservation,
        embedding: np.ndarray,
        store: TrackStore,
        outcome: MatchOutcome,
    ) -> Track:
        resolution = self.resolver.resolve(embedding) if self.resolver is not None else None
        if resolution is None:
            track = self._new_track(new_track_id(), observation, embedding)
            store.add(track)
            outcome.created.append(track.track_id)
            LOGGER.debug("Opened track %s", track.track_id)
            return track

        outcome.identified.append(resolution.identity_id)
        self._announce(resolution, observation.timestamp)
        track = store.get(resolution.identity_id)
        if track is not None:
            track.identity_name = resolution.display_name
            self._update(track, observation, embedding, outcome)
            return track
        track = self._new_track(resolution.identity_id, observation, embedding, resolution)
        store.add(track)
        outcome.created.append(track.track_id)
        LOGGER.debug(
            "Opened identified track %s (%s, distance %.3f)",
            track.track_id,
            resolution.display_name,
            resolution.distance,
        )
        return track

    def _new_track(
        self,
        track_id: str,
        observation: FaceObservation,
        embedding: np.ndarray,
        resolution: Optional[Resolution] = None,
    ) -> Track:
        track = Track(
            track_id=track_id,
            embedding=embedding,
            first_seen_at=observation.timestamp,
            last_seen_at=observation.timestamp,
            identity_id=resolution.identity_id if resolution else None,
            identity_name=resolution.display_name if resolution else None,
        )
        track.observe(
            observation,
            embedding=embedding,
            age_window=self.age_window,
            gender_min_probability=self.gender_min_probability,
            emotion_window=self.emotion_window,
        )
        return track

    def _announce(self, resolution: Resolution, when: datetime) -> None:
        """Report an identity at most once per cooldown window."""
        last = self._announced.get(resolution.identity_id)
        if last is not None and when - last < self.announce_cooldown:
            return
        self._announced[resolution.identity_id] = when
        LOGGER.info(
            "Identified %s (%s) confidence=%.2f",
            resolution.display_name,
            resolution.identity_id,
            resolution.confidence,
        )
        if self.on_identity_seen is not None:
            self.on_identity_seen(resolution, when)


class GreedyTrackMatcher(TrackMatcher):
    """Assigns each observation to the first active track under the threshold.

    Observations are handled in detector order and tracks in store order, so
    the chosen track is the first close enough rather than the closest, and a
    track opened earlier in the same tick can absorb later observations.
    """

    def match(self, observations: Sequence[FaceObservation], store: TrackStore) -> MatchOutcome:
        outcome = MatchOutcome()
        for observation, embedding in self._accept(observations, outcome):
            self._place(observation, embedding, store, outcome)
        return outcome


class HungarianTrackMatcher(TrackMatcher):
    """Minimum-cost assignment of observations to existing tracks.

    Pairs at or beyond the threshold are gated out. Observations left over
    fall back to the greedy path without reusing tracks claimed this tick.
    """

    def match(self, observations: Sequence[FaceObservation], store: TrackStore) -> MatchOutcome:
        outcome = MatchOutcome()
        accepted = self._accept(observations, outcome)
        tracks = list(store)
        claimed: set = set()
        leftovers = accepted

        if accepted and tracks:
            cost = np.full((len(accepted), len(tracks)), _GATED_COST, dtype=np.float64)
            for i, (_, embedding) in enumerate(accepted):
                for j, track in enumerate(tracks):
                    distance = self._distance(embedding, track)
                    if distance is not None and distance < self.track_threshold:
                        cost[i, j] = distance
            rows, cols = linear_sum_assignment(cost)
            matched_rows = set()
            for row, col in zip(rows, cols):
                if cost[row, col] >= self.track_threshold:
                    continue
                observation, embedding = accepted[row]
                self._update(tracks[col], observation, embedding, outcome)
                claimed.add(tracks[col].track_id)
                matched_rows.add(row)
            leftovers = [pair for idx, pair in enumerate(accepted) if idx not in matched_rows]

        for observation, embedding in leftovers:
            self._place(observation, embedding, store, outcome, exclude=claimed)
        return outcome


MATCHERS = {
    "greedy": GreedyTrackMatcher,
    "hungarian": HungarianTrackMatcher,
}


def build_matcher(name: str, resolver: Optional[IdentityResolver], **kwargs) -> TrackMatcher:
    try:
        matcher_cls = MATCHERS[name]
    except KeyError as exc:
        raise ValueError(f"Unknown matcher '{name}'; expected one of {sorted(MATCHERS)}") from exc
    return matcher_cls(resolver, **kwargs)
