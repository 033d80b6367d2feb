#!/usr/bin/env python3
"""CLI for live attention tracking from a webcam (OpenCV + InsightFace)."""

from __future__ import annotations

import argparse
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

import cv2
import numpy as np

from dwelltime.attribution.aggregate import format_duration
from dwelltime.config import load_config, load_detector_options
from dwelltime.detectors.face_insight import InsightFaceDetector
from dwelltime.engine import TrackingEngine
from dwelltime.io_utils import setup_logging
from dwelltime.recognition.resolver import Resolution
from dwelltime.scheduler import TrackingLoop
from dwelltime.types import Track


LOGGER = logging.getLogger("scripts.run_camera")


class CameraSource:
    """Frame source backed by ``cv2.VideoCapture``."""

    def __init__(self, device: Union[int, str], width: Optional[int] = None, height: Optional[int] = None) -> None:
        self.capture = cv2.VideoCapture(device)
        if not self.capture.isOpened():
            raise RuntimeError(f"Unable to open camera {device}")
        if width:
            self.capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self.capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    def read(self) -> Optional[np.ndarray]:
        ok, frame = self.capture.read()
        if not ok:
            return None
        return frame

    def release(self) -> None:
        self.capture.release()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Track faces from a camera and record attention time")
    parser.add_argument(
        "--device",
        type=str,
        default="0",
        help="Camera index or stream URL",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/insightface.yaml"),
        help="Engine configuration YAML",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="ONNX execution providers (overrides platform defaults)",
    )
    parser.add_argument(
        "--det-size",
        type=int,
        nargs=2,
        default=None,
        metavar=("WIDTH", "HEIGHT"),
        help="Override InsightFace detection size",
    )
    parser.add_argument(
        "--matcher",
        choices=["greedy", "hungarian"],
        default=None,
        help="Override the track matcher",
    )
    parser.add_argument("--face-det-threshold", type=float, default=None)
    parser.add_argument("--detection-interval-ms", type=float, default=None)
    parser.add_argument("--width", type=int, default=None)
    parser.add_argument("--height", type=int, default=None)
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: until Ctrl+C)",
    )
    return parser.parse_args(argv)


def _device(raw: str) -> Union[int, str]:
    return int(raw) if raw.isdigit() else raw


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    config = load_config(args.config)
    if args.matcher is not None:
        config.matcher = args.matcher
    options = load_detector_options(args.config)
    det_size = tuple(args.det_size) if args.det_size else options.det_size
    det_thresh = args.face_det_threshold if args.face_det_threshold is not None else options.det_thresh
    providers = args.providers if args.providers else options.providers

    detector = InsightFaceDetector(providers=providers, det_size=det_size, det_thresh=det_thresh)
    if config.embedding_dim is not None and config.embedding_dim != detector.embedding_dim:
        LOGGER.warning(
            "Config embedding_dim=%d does not match detector (%d); using detector value",
            config.embedding_dim,
            detector.embedding_dim,
        )
        config.embedding_dim = detector.embedding_dim

    def announce(resolution: Resolution, when) -> None:
        LOGGER.info("Welcome back %s (%s)", resolution.display_name, when.strftime("%H:%M:%S"))

    def report(tracks: List[Track]) -> None:
        if tracks:
            LOGGER.debug(
                "Active: %s",
                ", ".join(f"{t.identity_name or t.track_id} {format_duration(t.duration_seconds)}" for t in tracks),
            )

    engine = TrackingEngine(config=config, detector=detector, on_identity_seen=announce)
    source = CameraSource(_device(args.device), width=args.width, height=args.height)
    loop = TrackingLoop(engine, source, detection_interval_ms=args.detection_interval_ms, on_tick=report)

    loop.start()
    started = time.monotonic()
    try:
        while loop.running:
            if args.duration is not None and time.monotonic() - started >= args.duration:
                break
            time.sleep(0.5)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down")
    finally:
        loop.stop()
        source.release()
        engine.flush()

    summary = engine.daily_summary()
    count = engine.people_count()
    LOGGER.info(
        "Today: %d people, %d sessions, %s total attention",
        count.today,
        summary.record_count,
        format_duration(summary.total_duration),
    )


if __name__ == "__main__":
    main()
