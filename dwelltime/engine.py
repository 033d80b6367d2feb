"""Tracking engine: owns all state and exposes the tick, sweep and query API."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from dwelltime.attribution import aggregate
from dwelltime.attribution.aggregate import AttentionGetter, DailySummary, DayLike
from dwelltime.attribution.counter import PeopleCount, PeopleCounter
from dwelltime.attribution.history import AttentionHistory, AttentionRecorder, HistoryStore
from dwelltime.config import EngineConfig, load_config
from dwelltime.detectors.base import DetectorAdapter, is_facing_camera
from dwelltime.recognition.gallery import GalleryResult, GalleryStore, IdentityGallery
from dwelltime.recognition.resolver import IdentityResolver, Resolution
from dwelltime.tracking.matcher import MatchOutcome, build_matcher
from dwelltime.tracking.store import TrackStore
from dwelltime.types import AttentionRecord, Capture, FaceObservation, Identity, Track

LOGGER = logging.getLogger("dwelltime.engine")

IdentitySeenHandler = Callable[[Resolution, datetime], None]


class TrackingEngine:
    """Single owner of tracks, gallery, history and the people counter.

    Every mutation and every read snapshot happens under one re-entrant lock,
    so a detection tick and a sweep never interleave on a track. The detector
    itself runs outside the lock; its result is dropped when the engine was
    stopped or restarted while it was running.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        detector: Optional[DetectorAdapter] = None,
        clock: Optional[Callable[[], datetime]] = None,
        on_identity_seen: Optional[IdentitySeenHandler] = None,
        gallery: Optional[IdentityGallery] = None,
        history: Optional[AttentionHistory] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.detector = detector
        self.clock = clock or datetime.now
        self._on_identity_seen = on_identity_seen
        self._lock = threading.RLock()
        self._epoch = 0
        self._active = False

        cfg = self.config
        if gallery is None:
            gallery_store = GalleryStore(cfg.gallery_path) if cfg.gallery_path else None
            gallery = IdentityGallery(
                match_threshold=cfg.track_match_threshold,
                store=gallery_store,
                clock=self.clock,
                embedding_dim=cfg.embedding_dim,
            )
        if history is None:
            history_store = HistoryStore(cfg.history_path) if cfg.history_path else None
            history = AttentionHistory(max_records=cfg.max_records, store=history_store)
        self.gallery = gallery
        self.history = history
        self.tracks = TrackStore()
        self.counter = PeopleCounter(dedup_window_ms=cfg.dedup_window_ms, purge_after_ms=cfg.dedup_purge_ms)
        self.resolver = IdentityResolver(self.gallery, threshold=cfg.identity_match_threshold)
        self.matcher = build_matcher(
            cfg.matcher,
            self.resolver,
            track_threshold=cfg.track_match_threshold,
            embedding_dim=cfg.embedding_dim,
            age_window=cfg.age_window,
            gender_min_probability=cfg.gender_min_probability,
            emotion_window=cfg.emotion_window,
            announce_cooldown_ms=cfg.identity_announce_cooldown_ms,
            on_identity_seen=self._identity_seen,
        )
        self.recorder = AttentionRecorder(
            self.history,
            timeout_ms=cfg.track_timeout_ms,
            min_duration_seconds=cfg.min_attention_seconds,
        )

    @classmethod
    def from_config_file(cls, path: Optional[Path], **kwargs: Any) -> "TrackingEngine":
        return cls(config=load_config(path), **kwargs)

    # ------------------------------------------------------------------ lifecycle

    @property
    def epoch(self) -> int:
        return self._epoch

    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        with self._lock:
            self._epoch += 1
            self._active = True
            self.counter.check_rollover(self.clock())
        LOGGER.info(
            "Engine started (epoch %d, %d identities, %d records)",
            self._epoch,
            len(self.gallery),
            len(self.history),
        )

    def stop(self) -> None:
        """Deactivate; in-flight detections are discarded, active tracks are kept."""
        with self._lock:
            self._epoch += 1
            self._active = False
        LOGGER.info("Engine stopped (epoch %d, %d active tracks)", self._epoch, len(self.tracks))

    # ------------------------------------------------------------------ ticks

    def detect_tick(self, frame: Any) -> Optional[List[Track]]:
        """Run the detector on ``frame`` and apply its observations.

        Returns the active tracks after the tick, or None when the result was
        discarded because the engine is inactive or was restarted meanwhile.
        """
        if self.detector is None:
            raise RuntimeError("TrackingEngine has no detector; use apply_observations instead")
        epoch = self._epoch
        if not self._active:
            return None
        try:
            observations = self.detector.detect(frame)
        except Exception as exc:
            LOGGER.warning("Detection failed: %s", exc)
            observations = []
        with self._lock:
            if epoch != self._epoch or not self._active:
                LOGGER.debug("Discarding detection from epoch %d (now %d)", epoch, self._epoch)
                return None
            self._apply(observations)
            return self.tracks.snapshot()

    def apply_observations(self, observations: Sequence[FaceObservation]) -> List[Track]:
        """Apply one tick's observations directly, bypassing the detector."""
        with self._lock:
            self._apply(observations)
            return self.tracks.snapshot()

    def _apply(self, observations: Sequence[FaceObservation]) -> MatchOutcome:
        cfg = self.config
        usable = list(observations)
        if cfg.require_facing_camera:
            usable = [
                obs
                for obs in usable
                if obs.landmarks is None
                or is_facing_camera(obs.landmarks, cfg.facing_max_turn_ratio, cfg.facing_max_tilt_ratio)
            ]
            if len(usable) != len(observations):
                LOGGER.debug("Skipped %d faces not facing the camera", len(observations) - len(usable))
        outcome = self.matcher.match(usable, self.tracks)
        self.counter.process(outcome.touched, self.clock())
        if outcome.created or outcome.updated:
            LOGGER.debug(
                "Tick: %d updated, %d created, %d active",
                len(outcome.updated),
                len(outcome.created),
                len(self.tracks),
            )
        return outcome

    def sweep(self, now: Optional[datetime] = None) -> List[AttentionRecord]:
        """Evict idle tracks and record the attention they represent."""
        with self._lock:
            return self.recorder.sweep(self.tracks, now or self.clock())

    def flush(self) -> List[AttentionRecord]:
        """Close all active tracks into records without waiting for the timeout."""
        with self._lock:
            return self.recorder.flush(self.tracks)

    def check_rollover(self, now: Optional[datetime] = None) -> bool:
        with self._lock:
            return self.counter.check_rollover(now or self.clock())

    def _identity_seen(self, resolution: Resolution, when: datetime) -> None:
        self.gallery.mark_seen(resolution.identity_id, when)
        if self._on_identity_seen is None:
            return
        try:
            self._on_identity_seen(resolution, when)
        except Exception as exc:  # pragma: no cover - user callback
            LOGGER.warning("Identity callback failed for %s: %s", resolution.identity_id, exc)

    # ------------------------------------------------------------------ queries

    def active_tracks(self) -> List[Track]:
        with self._lock:
            return self.tracks.snapshot()

    def people_count(self) -> PeopleCount:
        with self._lock:
            return self.counter.snapshot()

    def records(self) -> List[AttentionRecord]:
        with self._lock:
            return self.history.records()

    def _today(self, day: Optional[DayLike]) -> DayLike:
        if day is not None:
            return day
        return self.clock().date()

    def daily_summary(self, day: Optional[DayLike] = None) -> DailySummary:
        return aggregate.daily_summary(self.records(), self._today(day))

    def top_attention_getters(self, day: Optional[DayLike] = None, limit: int = 5) -> List[AttentionGetter]:
        return aggregate.top_attention_getters(self.records(), self._today(day), limit)

    def records_for_identity(self, identity_id: str) -> List[AttentionRecord]:
        return aggregate.records_for_identity(self.records(), identity_id)

    def unique_dates(self) -> List[str]:
        return aggregate.unique_dates(self.records())

    def identities(self) -> List[Identity]:
        with self._lock:
            return self.gallery.identities()

    def clear_history(self) -> int:
        with self._lock:
            removed = self.history.clear()
        LOGGER.info("Cleared attention history (%d records)", removed)
        return removed

    # ------------------------------------------------------------------ enrollment

    def enroll(self, display_name: str, external_ref: str, captures: Sequence[Capture]) -> GalleryResult:
        with self._lock:
            return self.gallery.enroll(display_name, external_ref, captures)

    def augment(self, identity_id: str, captures: Sequence[Capture]) -> GalleryResult:
        with self._lock:
            return self.gallery.augment(identity_id, captures)

    def remove_identity(self, identity_id: str) -> GalleryResult:
        with self._lock:
            return self.gallery.remove(identity_id)

    def clear_gallery(self) -> GalleryResult:
        with self._lock:
            return self.gallery.clear()

