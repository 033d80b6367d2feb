"""InsightFace detector adapter producing embeddings and age/gender estimates."""

from __future__ import annotations

import logging
import os
import platform
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from dwelltime.types import FaceObservation, GenderEstimate

LOGGER = logging.getLogger("dwelltime.detectors.face")


def _default_providers() -> Tuple[str, ...]:
    """Choose default ONNX providers based on platform."""
    system = platform.system()
    machine = platform.machine().lower()
    if system == "Darwin" and machine in {"arm64", "aarch64"}:
        return ("CoreMLExecutionProvider", "CPUExecutionProvider")
    return ("CPUExecutionProvider",)


class InsightFaceDetector:
    """Wraps InsightFace ``FaceAnalysis`` (detection, recognition, genderage).

    Embeddings are the model's L2-normalised vectors (512 values for
    ``buffalo_l``), so Euclidean thresholds must be configured for that scale.
    """

    def __init__(
        self,
        providers: Optional[Sequence[str]] = None,
        det_size: Tuple[int, int] = (640, 640),
        det_thresh: float = 0.5,
        model_name: str = "buffalo_l",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        os.environ.setdefault("OMP_NUM_THREADS", "2")
        os.environ.setdefault("MKL_NUM_THREADS", "2")
        os.environ.setdefault("ORT_INTRA_OP_NUM_THREADS", "2")
        try:
            from insightface.app import FaceAnalysis
        except ImportError as exc:  # pragma: no cover - import guard
            raise RuntimeError(
                "insightface is required for InsightFaceDetector. "
                "Install it via `pip install dwelltime-engine[vision]`."
            ) from exc

        provider_list: Tuple[str, ...]
        if providers is None:
            provider_list = _default_providers()
        else:
            provider_list = tuple(providers)
        self.providers = provider_list
        self.det_size = det_size
        self.det_thresh = det_thresh
        self.clock = clock or datetime.now
        LOGGER.info("Loading InsightFace %s providers=%s det_size=%s", model_name, provider_list, det_size)
        self.app = FaceAnalysis(
            name=model_name,
            allowed_modules=["detection", "recognition", "genderage"],
            providers=list(provider_list),
        )
        self.app.prepare(ctx_id=0, det_size=det_size, det_thresh=det_thresh)

    @property
    def embedding_dim(self) -> int:
        recognition = self.app.models.get("recognition")
        shape = getattr(recognition, "output_shape", None)
        if shape:
            return int(shape[-1])
        return 512

    def detect(self, frame: np.ndarray) -> List[FaceObservation]:
        """Detect faces in a BGR frame."""
        timestamp = self.clock()
        faces = self.app.get(frame)
        observations: List[FaceObservation] = []
        for face in faces:
            embedding = getattr(face, "normed_embedding", None)
            if embedding is None:
                LOGGER.debug("Face without embedding skipped")
                continue
            observations.append(face_to_observation(face, timestamp))
        return observations


def face_to_observation(face: Any, timestamp: datetime) -> FaceObservation:
    """Convert an InsightFace ``Face`` into a :class:`FaceObservation`."""
    x1, y1, x2, y2 = [float(v) for v in np.asarray(face.bbox).reshape(-1)[:4]]
    sex = getattr(face, "sex", None)
    if sex == "M":
        gender = GenderEstimate("male", 1.0)
    elif sex == "F":
        gender = GenderEstimate("female", 1.0)
    else:
        gender = GenderEstimate("unknown", 0.0)
    age = getattr(face, "age", None)
    kps = getattr(face, "kps", None)
    return FaceObservation(
        embedding=np.asarray(face.normed_embedding, dtype=np.float32).reshape(-1),
        bbox=(x1, y1, x2, y2),
        age_estimate=int(round(float(age))) if age is not None else 0,
        gender=gender,
        detection_score=float(getattr(face, "det_score", 0.0)),
        timestamp=timestamp,
        landmarks=np.asarray(kps, dtype=np.float32) if kps is not None else None,
    )
