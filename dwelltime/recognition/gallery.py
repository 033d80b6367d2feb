"""Identity gallery: enrollment, augmentation and JSON persistence."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dwelltime.io_utils import dump_json, load_json, parse_timestamp
from dwelltime.recognition.distance import ComparisonError, validate_embedding
from dwelltime.recognition.resolver import nearest_identity
from dwelltime.types import Capture, Identity, as_embedding, mean_embedding

LOGGER = logging.getLogger("dwelltime.recognition.gallery")


class EnrollError(Enum):
    MISSING_FIELDS = "missing_fields"
    EMPTY_CAPTURES = "empty_captures"
    INVALID_CAPTURE = "invalid_capture"
    DUPLICATE_REF = "duplicate_ref"
    DUPLICATE_FACE = "duplicate_face"
    NOT_FOUND = "not_found"


@dataclass
class GalleryResult:
    """Outcome of a gallery mutation; ``message`` is meant for display as-is."""

    success: bool
    message: str
    error: Optional[EnrollError] = None
    identity: Optional[Identity] = None
    count: int = 0


def _failure(error: EnrollError, message: str) -> GalleryResult:
    LOGGER.info("Gallery change rejected (%s): %s", error.value, message)
    return GalleryResult(success=False, message=message, error=error)


class GalleryStore:
    """JSON file holding the gallery as an array of identity objects."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[Identity]:
        if not self.path.exists():
            return []
        try:
            payload = load_json(self.path)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Unable to read gallery %s (%s); starting empty", self.path, exc)
            return []
        if not isinstance(payload, list):
            LOGGER.warning("Gallery %s is not a JSON array; starting empty", self.path)
            return []

        identities: List[Identity] = []
        migrated = 0
        for idx, entry in enumerate(payload):
            try:
                identity, legacy = _identity_from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed gallery entry %d in %s: %s", idx, self.path, exc)
                continue
            migrated += int(legacy)
            identities.append(identity)
        if migrated:
            LOGGER.warning("Migrated %d legacy single-descriptor identities from %s", migrated, self.path)
        LOGGER.info("Loaded gallery %s: %d identities", self.path, len(identities))
        return identities

    def save(self, identities: Sequence[Identity]) -> bool:
        try:
            dump_json(self.path, [identity.to_dict() for identity in identities])
        except (OSError, TypeError, ValueError) as exc:
            LOGGER.warning("Failed to persist gallery to %s: %s", self.path, exc)
            return False
        return True


def _identity_from_dict(entry: Dict[str, Any]) -> Tuple[Identity, bool]:
    """Parse one stored identity; the flag reports a legacy-schema migration."""
    if not isinstance(entry, dict):
        raise TypeError(f"expected an object, got {type(entry).__name__}")
    if "reference_embeddings" in entry:
        references = [as_embedding(e) for e in entry["reference_embeddings"]]
        if not references:
            raise ValueError("identity has no reference embeddings")
        raw_average = entry.get("average_embedding")
        average = as_embedding(raw_average) if raw_average is not None else mean_embedding(references)
        identity = Identity(
            id=str(entry["id"]),
            display_name=str(entry["display_name"]),
            external_ref=str(entry["external_ref"]),
            reference_embeddings=references,
            average_embedding=average,
            enrolled_at=parse_timestamp(entry.get("enrolled_at")) or datetime.now(),
            last_seen_at=parse_timestamp(entry.get("last_seen_at")),
            best_portrait_ref=entry.get("best_portrait_ref"),
            best_quality=float(entry.get("best_quality") or 0.0),
        )
        return identity, False

    # Legacy records: a single descriptor per person.
    raw = entry.get("faceDescriptor", entry.get("face_descriptor"))
    if raw is None:
        raise KeyError("faceDescriptor")
    descriptor = as_embedding(raw)
    identity = Identity(
        id=str(entry["id"]),
        display_name=str(entry.get("name", entry.get("display_name", ""))),
        external_ref=str(entry.get("cpf", entry.get("external_ref", ""))),
        reference_embeddings=[descriptor],
        average_embedding=descriptor.copy(),
        enrolled_at=parse_timestamp(entry.get("registeredAt", entry.get("registered_at"))) or datetime.now(),
        last_seen_at=parse_timestamp(entry.get("lastSeen", entry.get("last_seen"))),
        best_portrait_ref=entry.get("photoUrl", entry.get("photo_url")),
    )
    return identity, True


class IdentityGallery:
    """Owns the enrolled identities.

    All mutations return a :class:`GalleryResult` instead of raising, and
    persist the full gallery through the optional store after each change.
    Lookups hand out copies.
    """

    def __init__(
        self,
        match_threshold: float = 0.5,
        store: Optional[GalleryStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        embedding_dim: Optional[int] = None,
    ) -> None:
        self.match_threshold = match_threshold
        self.store = store
        self.clock = clock or datetime.now
        self.embedding_dim = embedding_dim
        self._identities: Dict[str, Identity] = {}
        if store is not None:
            for identity in store.load():
                self._identities[identity.id] = identity

    def __len__(self) -> int:
        return len(self._identities)

    def __contains__(self, identity_id: object) -> bool:
        return identity_id in self._identities

    def values(self) -> Tuple[Identity, ...]:
        """Read-only view used by the resolver; callers must not mutate the items."""
        return tuple(self._identities.values())

    def identities(self) -> List[Identity]:
        return [identity.copy() for identity in self._identities.values()]

    def get(self, identity_id: str) -> Optional[Identity]:
        identity = self._identities.get(identity_id)
        return identity.copy() if identity is not None else None

    def find_by_ref(self, external_ref: str) -> Optional[Identity]:
        for identity in self._identities.values():
            if identity.external_ref == external_ref:
                return identity.copy()
        return None

    def enroll(self, display_name: str, external_ref: str, captures: Sequence[Capture]) -> GalleryResult:
        display_name = (display_name or "").strip()
        external_ref = (external_ref or "").strip()
        if not display_name or not external_ref:
            return _failure(EnrollError.MISSING_FIELDS, "Display name and external reference are required")
        if not captures:
            return _failure(EnrollError.EMPTY_CAPTURES, "At least one face capture is required")
        embeddings, message = self._validate_captures(captures)
        if embeddings is None:
            return _failure(EnrollError.INVALID_CAPTURE, message)
        if any(identity.external_ref == external_ref for identity in self._identities.values()):
            return _failure(EnrollError.DUPLICATE_REF, f"External reference {external_ref} is already enrolled")

        average = mean_embedding(embeddings)
        nearest = nearest_identity(average, self._identities.values())
        if nearest is not None and nearest[1] < self.match_threshold:
            existing, distance = nearest
            LOGGER.debug("New face is %.3f from %s (%s)", distance, existing.id, existing.display_name)
            return _failure(EnrollError.DUPLICATE_FACE, f"Face already enrolled for {existing.display_name}")

        best = max(captures, key=lambda c: c.quality)
        identity = Identity(
            id=f"person_{uuid.uuid4().hex[:12]}",
            display_name=display_name,
            external_ref=external_ref,
            reference_embeddings=embeddings,
            average_embedding=average,
            enrolled_at=self.clock(),
            best_portrait_ref=best.portrait_ref,
            best_quality=float(best.quality),
        )
        self._identities[identity.id] = identity
        self._persist()
        LOGGER.info(
            "Enrolled %s (%s) ref=%s with %d captures",
            identity.display_name,
            identity.id,
            identity.external_ref,
            len(embeddings),
        )
        return GalleryResult(
            success=True,
            message=f"{display_name} enrolled successfully",
            identity=identity.copy(),
            count=len(embeddings),
        )

    def augment(self, identity_id: str, captures: Sequence[Capture]) -> GalleryResult:
        identity = self._identities.get(identity_id)
        if identity is None:
            return _failure(EnrollError.NOT_FOUND, f"Identity {identity_id} not found")
        if not captures:
            return _failure(EnrollError.EMPTY_CAPTURES, "At least one face capture is required")
        embeddings, message = self._validate_captures(captures)
        if embeddings is None:
            return _failure(EnrollError.INVALID_CAPTURE, message)
        stored = identity.reference_embeddings[0].size
        if embeddings[0].size != stored:
            return _failure(
                EnrollError.INVALID_CAPTURE,
                f"Captures have {embeddings[0].size}-value embeddings but {identity.display_name} has {stored}",
            )

        references = identity.reference_embeddings + embeddings
        identity.average_embedding = mean_embedding(references)
        identity.reference_embeddings = references
        best = max(captures, key=lambda c: c.quality)
        if best.quality > identity.best_quality:
            identity.best_quality = float(best.quality)
            identity.best_portrait_ref = best.portrait_ref
        self._persist()
        LOGGER.info(
            "Added %d captures to %s (%d references)",
            len(embeddings),
            identity.display_name,
            len(identity.reference_embeddings),
        )
        return GalleryResult(
            success=True,
            message=f"Added {len(embeddings)} captures to {identity.display_name}",
            identity=identity.copy(),
            count=len(embeddings),
        )

    def remove(self, identity_id: str) -> GalleryResult:
        identity = self._identities.pop(identity_id, None)
        if identity is None:
            return _failure(EnrollError.NOT_FOUND, f"Identity {identity_id} not found")
        self._persist()
        LOGGER.info("Removed identity %s (%s)", identity.display_name, identity.id)
        return GalleryResult(success=True, message=f"{identity.display_name} removed", identity=identity, count=1)

    def clear(self) -> GalleryResult:
        count = len(self._identities)
        self._identities.clear()
        self._persist()
        LOGGER.info("Cleared gallery (%d identities)", count)
        return GalleryResult(success=True, message=f"Removed {count} identities", count=count)

    def mark_seen(self, identity_id: str, when: datetime) -> bool:
        identity = self._identities.get(identity_id)
        if identity is None:
            return False
        identity.last_seen_at = when
        self._persist()
        return True

    def _validate_captures(self, captures: Sequence[Capture]) -> Tuple[Optional[List], str]:
        embeddings = []
        for idx, capture in enumerate(captures):
            try:
                embeddings.append(validate_embedding(capture.embedding, self.embedding_dim))
            except ComparisonError as exc:
                return None, f"Capture {idx + 1} has an unusable embedding: {exc}"
        dims = {e.size for e in embeddings}
        if len(dims) > 1:
            return None, "Captures have embeddings of different lengths"
        return embeddings, ""

    def _persist(self) -> None:
        if self.store is None:
            return
        self.store.save(list(self._identities.values()))
