"""Nearest-identity lookup against the enrolled gallery."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional, Tuple

import numpy as np

from dwelltime.recognition.distance import ComparisonError, euclidean_distance
from dwelltime.types import Identity

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from dwelltime.recognition.gallery import IdentityGallery

LOGGER = logging.getLogger("dwelltime.recognition.resolver")


@dataclass(frozen=True)
class Resolution:
    identity_id: str
    display_name: str
    external_ref: str
    distance: float

    @property
    def confidence(self) -> float:
        return 1.0 - self.distance


def nearest_identity(
    query: np.ndarray,
    identities: Iterable[Identity],
) -> Optional[Tuple[Identity, float]]:
    """Return the identity owning the closest reference embedding and that distance.

    Every reference embedding counts, not only the average, so one good
    capture is enough for an identity to be the nearest.
    """
    best: Optional[Tuple[Identity, float]] = None
    for identity in identities:
        for reference in identity.reference_embeddings:
            try:
                distance = euclidean_distance(query, reference)
            except ComparisonError as exc:
                LOGGER.warning("Skipping reference of %s: %s", identity.id, exc)
                continue
            if best is None or distance < best[1]:
                best = (identity, distance)
    return best


class IdentityResolver:
    """Resolves query embeddings to enrolled identities under a distance threshold."""

    def __init__(self, gallery: "IdentityGallery", threshold: float = 0.6) -> None:
        self.gallery = gallery
        self.threshold = threshold

    def resolve(self, query: np.ndarray) -> Optional[Resolution]:
        best = nearest_identity(query, self.gallery.values())
        if best is None:
            return None
        identity, distance = best
        if distance >= self.threshold:
            LOGGER.debug(
                "Nearest identity %s at %.3f is beyond threshold %.2f",
                identity.id,
                distance,
                self.threshold,
            )
            return None
        return Resolution(
            identity_id=identity.id,
            display_name=identity.display_name,
            external_ref=identity.external_ref,
            distance=distance,
        )
