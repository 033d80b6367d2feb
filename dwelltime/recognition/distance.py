"""Euclidean distance between face embeddings."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np


class ComparisonError(ValueError):
    """Raised when two embeddings cannot be compared."""


def validate_embedding(raw: Any, dim: Optional[int] = None) -> np.ndarray:
    """Return ``raw`` as a finite 1D float32 vector or raise ComparisonError."""
    try:
        vec = np.asarray(raw, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise ComparisonError(f"Embedding is not numeric: {exc}") from exc
    if vec.size == 0:
        raise ComparisonError("Embedding is empty")
    if dim is not None and vec.size != dim:
        raise ComparisonError(f"Embedding has {vec.size} values, expected {dim}")
    if not np.all(np.isfinite(vec)):
        raise ComparisonError("Embedding contains non-finite values")
    return vec


def euclidean_distance(a: Any, b: Any) -> float:
    a = validate_embedding(a)
    b = validate_embedding(b)
    if a.shape != b.shape:
        raise ComparisonError(f"Embedding shapes do not match: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))
