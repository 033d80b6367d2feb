#!/usr/bin/env python3
"""CLI for enrolling a person into the identity gallery from photos."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import cv2

from dwelltime.config import load_config, load_detector_options
from dwelltime.detectors.face_insight import InsightFaceDetector
from dwelltime.io_utils import setup_logging
from dwelltime.recognition.gallery import GalleryStore, IdentityGallery
from dwelltime.types import Capture, FaceObservation


LOGGER = logging.getLogger("scripts.enroll_identity")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enroll an identity from one or more face photos")
    parser.add_argument("images", type=Path, nargs="+", help="Image files showing the person")
    parser.add_argument("--name", default="", help="Display name (required when enrolling)")
    parser.add_argument("--ref", default="", help="External reference, unique per person (required when enrolling)")
    parser.add_argument(
        "--augment",
        type=str,
        default=None,
        metavar="IDENTITY_ID",
        help="Add the photos to an existing identity instead of enrolling",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs/insightface.yaml"),
        help="Engine configuration YAML",
    )
    parser.add_argument(
        "--gallery-json",
        type=Path,
        default=None,
        help="Gallery file (overrides config gallery_path)",
    )
    parser.add_argument(
        "--providers",
        type=str,
        nargs="*",
        default=None,
        help="ONNX execution providers (overrides platform defaults)",
    )
    return parser.parse_args(argv)


def _largest_face(observations: List[FaceObservation]) -> Optional[FaceObservation]:
    if not observations:
        return None

    def area(obs: FaceObservation) -> float:
        x1, y1, x2, y2 = obs.bbox
        return max(0.0, x2 - x1) * max(0.0, y2 - y1)

    return max(observations, key=area)


def collect_captures(detector: InsightFaceDetector, images: Sequence[Path]) -> List[Capture]:
    captures: List[Capture] = []
    for path in images:
        image = cv2.imread(str(path))
        if image is None:
            LOGGER.warning("Unable to read image %s", path)
            continue
        face = _largest_face(detector.detect(image))
        if face is None:
            LOGGER.warning("No face found in %s", path)
            continue
        captures.append(Capture(embedding=face.embedding, quality=face.detection_score, portrait_ref=str(path)))
    return captures


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging()

    config = load_config(args.config)
    gallery_path = args.gallery_json if args.gallery_json is not None else config.gallery_path
    if gallery_path is None:
        LOGGER.error("No gallery path configured; pass --gallery-json")
        sys.exit(2)

    options = load_detector_options(args.config)
    detector = InsightFaceDetector(
        providers=args.providers if args.providers else options.providers,
        det_size=options.det_size,
        det_thresh=options.det_thresh,
    )
    gallery = IdentityGallery(
        match_threshold=config.track_match_threshold,
        store=GalleryStore(gallery_path),
        embedding_dim=detector.embedding_dim,
    )
    captures = collect_captures(detector, args.images)
    LOGGER.info("Collected %d captures from %d images", len(captures), len(args.images))

    if args.augment:
        result = gallery.augment(args.augment, captures)
    else:
        result = gallery.enroll(args.name, args.ref, captures)
    print(result.message)
    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
