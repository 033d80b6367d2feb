"""Background loop driving detection, sweep and rollover ticks."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, List, Optional, Protocol

from dwelltime.engine import TrackingEngine
from dwelltime.types import Track

LOGGER = logging.getLogger("dwelltime.scheduler")


class FrameSource(Protocol):
    """Provides the latest frame, or None when nothing is available yet."""

    def read(self) -> Optional[Any]:
        ...


TickCallback = Callable[[List[Track]], None]


class TrackingLoop:
    """Runs the engine's periodic work on a single daemon thread.

    Detection, sweep and rollover share the thread, so they never overlap in
    time. Periods default to the engine configuration.
    """

    def __init__(
        self,
        engine: TrackingEngine,
        frame_source: FrameSource,
        detection_interval_ms: Optional[float] = None,
        sweep_interval_ms: Optional[float] = None,
        rollover_check_ms: Optional[float] = None,
        on_tick: Optional[TickCallback] = None,
    ) -> None:
        cfg = engine.config
        self.engine = engine
        self.frame_source = frame_source
        self.detection_interval = (
            detection_interval_ms if detection_interval_ms is not None else cfg.detection_interval_ms
        ) / 1000.0
        self.sweep_interval = (sweep_interval_ms if sweep_interval_ms is not None else cfg.sweep_interval_ms) / 1000.0
        self.rollover_interval = (
            rollover_check_ms if rollover_check_ms is not None else cfg.rollover_check_ms
        ) / 1000.0
        self.on_tick = on_tick
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._next_detect = 0.0
        self._next_sweep = 0.0
        self._next_rollover = 0.0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            LOGGER.warning("Tracking loop already running")
            return
        self.engine.start()
        self._stop_event.clear()
        now = time.monotonic()
        self._next_detect = now
        self._next_sweep = now + self.sweep_interval
        self._next_rollover = now + self.rollover_interval
        self._thread = threading.Thread(target=self._run, name="dwelltime-loop", daemon=True)
        self._thread.start()
        LOGGER.info(
            "Tracking loop started (detect=%.2fs sweep=%.2fs)",
            self.detection_interval,
            self.sweep_interval,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self.engine.stop()
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                LOGGER.warning("Tracking loop did not stop within %.1fs", timeout or 0.0)
        self._thread = None
        LOGGER.info("Tracking loop stopped")

    def run_once(self) -> Optional[List[Track]]:
        """Run one detection tick followed by a sweep, synchronously."""
        tracks = self._detect()
        self.engine.sweep()
        return tracks

    def _detect(self) -> Optional[List[Track]]:
        try:
            frame = self.frame_source.read()
        except Exception as exc:
            LOGGER.warning("Frame read failed: %s", exc)
            return None
        if frame is None:
            return None
        tracks = self.engine.detect_tick(frame)
        if tracks is not None and self.on_tick is not None:
            self.on_tick(tracks)
        return tracks

    def _run(self) -> None:
        while not self._stop_event.is_set():
            now = time.monotonic()
            if now >= self._next_detect:
                self._detect()
                self._next_detect = now + self.detection_interval
            if now >= self._next_sweep:
                self.engine.sweep()
                self._next_sweep = now + self.sweep_interval
            if now >= self._next_rollover:
                self.engine.check_rollover()
                self._next_rollover = now + self.rollover_interval
            wait = min(self._next_detect, self._next_sweep, self._next_rollover) - time.monotonic()
            if wait > 0:
                self._stop_event.wait(wait)
