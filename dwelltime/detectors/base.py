"""Detector adapter interface and landmark-based head pose filter."""

from __future__ import annotations

from typing import Any, List, Optional, Protocol

import numpy as np

from dwelltime.types import FaceObservation


class DetectorAdapter(Protocol):
    """Anything that turns a frame into face observations.

    Returning an empty list is the normal "no face" case; exceptions are
    reserved for real detection failures.
    """

    def detect(self, frame: Any) -> List[FaceObservation]:
        ...


def is_facing_camera(
    landmarks: Optional[np.ndarray],
    max_turn_ratio: float = 0.25,
    max_tilt_ratio: float = 0.4,
) -> bool:
    """Check whether landmarks describe a face looking at the camera.

    Accepts the 68-point layout or the 5-point layout (eyes, nose, mouth
    corners). Unknown layouts and missing landmarks pass.
    """
    if landmarks is None:
        return True
    pts = np.asarray(landmarks, dtype=np.float32).reshape(-1, 2)
    if len(pts) >= 68:
        left_eye = pts[36:42].mean(axis=0)
        right_eye = pts[42:48].mean(axis=0)
        nose = pts[30]
        tilt_dy = abs(float(pts[0, 1] - pts[16, 1]))
    elif len(pts) >= 5:
        left_eye, right_eye, nose = pts[0], pts[1], pts[2]
        tilt_dy = abs(float(left_eye[1] - right_eye[1]))
    else:
        return True

    eye_distance = abs(float(right_eye[0] - left_eye[0]))
    if eye_distance <= 1e-6:
        return False
    eyes_center_x = float(left_eye[0] + right_eye[0]) / 2.0
    turn_ratio = abs(float(nose[0]) - eyes_center_x) / eye_distance
    tilt_ratio = tilt_dy / eye_distance
    return turn_ratio < max_turn_ratio and tilt_ratio < max_tilt_ratio
