import numpy as np
import pytest

from dwelltime.recognition.gallery import IdentityGallery
from dwelltime.recognition.resolver import IdentityResolver, nearest_identity
from dwelltime.types import Capture


@pytest.fixture
def gallery(clock):
    gallery = IdentityGallery(clock=clock)
    gallery.enroll("Ana", "111", [Capture(np.array([0.0, 0.0])), Capture(np.array([2.0, 0.0]))])
    gallery.enroll("Bruno", "222", [Capture(np.array([10.0, 10.0]))])
    return gallery


def test_any_reference_embedding_can_match(gallery):
    resolver = IdentityResolver(gallery, threshold=0.6)
    # far from Ana's average (1, 0) but close to her second capture
    resolution = resolver.resolve(np.array([2.1, 0.0], dtype=np.float32))
    assert resolution is not None
    assert resolution.display_name == "Ana"
    assert resolution.external_ref == "111"
    assert resolution.distance == pytest.approx(0.1, abs=1e-6)
    assert resolution.confidence == pytest.approx(0.9, abs=1e-6)


def test_threshold_is_exclusive(gallery):
    resolver = IdentityResolver(gallery, threshold=0.5)
    assert resolver.resolve(np.array([10.0, 10.5], dtype=np.float32)) is None
    assert resolver.resolve(np.array([10.0, 10.4], dtype=np.float32)).display_name == "Bruno"


def test_empty_gallery_resolves_nothing(clock):
    resolver = IdentityResolver(IdentityGallery(clock=clock))
    assert resolver.resolve(np.zeros(2, dtype=np.float32)) is None


def test_nearest_identity_skips_incomparable_references(gallery):
    best = nearest_identity(np.zeros(3, dtype=np.float32), gallery.values())
    assert best is None
