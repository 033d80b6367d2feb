import numpy as np
import pytest

from dwelltime.recognition.gallery import IdentityGallery
from dwelltime.recognition.resolver import IdentityResolver
from dwelltime.tracking.matcher import (
    GreedyTrackMatcher,
    HungarianTrackMatcher,
    build_matcher,
)
from dwelltime.tracking.store import TrackStore
from dwelltime.types import Capture


def _matcher(cls=GreedyTrackMatcher, gallery=None, **kwargs):
    resolver = IdentityResolver(gallery, threshold=0.6) if gallery is not None else None
    return cls(resolver, track_threshold=0.5, embedding_dim=None, **kwargs)


def test_observation_within_threshold_updates_existing_track(make_observation, clock):
    store = TrackStore()
    matcher = _matcher()
    first = matcher.match([make_observation([1.0, 1.0])], store)
    assert len(first.created) == 1
    track_id = first.created[0]

    clock.advance(milliseconds=500)
    second = matcher.match([make_observation([1.0, 1.49])], store)

    assert second.created == []
    assert second.updated == [track_id]
    assert len(store) == 1
    track = store.get(track_id)
    np.testing.assert_allclose(track.embedding, [1.0, 1.49])
    assert track.last_seen_at == clock()


@pytest.mark.parametrize("cls", [GreedyTrackMatcher, HungarianTrackMatcher])
def test_close_observations_in_one_tick_share_a_track(make_observation, cls):
    store = TrackStore()
    outcome = _matcher(cls).match([make_observation([0.0, 0.0]), make_observation([0.3, 0.0])], store)
    assert len(outcome.created) == 1
    assert outcome.updated == outcome.created
    assert len(store) == 1


def test_distance_at_threshold_opens_new_track(make_observation):
    store = TrackStore()
    matcher = _matcher()
    matcher.match([make_observation([0.0, 0.0])], store)
    outcome = matcher.match([make_observation([0.0, 0.5])], store)
    assert len(outcome.created) == 1
    assert len(store) == 2


def test_greedy_takes_first_track_under_threshold_not_closest(make_observation):
    store = TrackStore()
    matcher = _matcher()
    a = matcher.match([make_observation([0.0, 0.0])], store).created[0]
    b = matcher.match([make_observation([0.8, 0.0])], store).created[0]
    assert a != b

    outcome = matcher.match([make_observation([0.45, 0.0])], store)
    assert outcome.updated == [a]


def test_hungarian_assigns_globally_cheapest_pairs(make_observation):
    greedy_store = TrackStore()
    hungarian_store = TrackStore()
    greedy = _matcher()
    hungarian = _matcher(HungarianTrackMatcher)
    for matcher, store in ((greedy, greedy_store), (hungarian, hungarian_store)):
        matcher.match([make_observation([0.0, 0.0])], store)
        matcher.match([make_observation([0.6, 0.0])], store)

    batch = [make_observation([0.35, 0.0]), make_observation([0.1, 0.0])]
    track_a, track_b = [t.track_id for t in hungarian_store]
    outcome = hungarian.match(batch, hungarian_store)
    assert sorted(outcome.updated) == sorted([track_a, track_b])
    np.testing.assert_allclose(hungarian_store.get(track_b).embedding, [0.35, 0.0])
    np.testing.assert_allclose(hungarian_store.get(track_a).embedding, [0.1, 0.0])

    greedy_a = list(greedy_store)[0].track_id
    greedy_outcome = greedy.match(batch, greedy_store)
    assert greedy_outcome.updated == [greedy_a, greedy_a]


def test_unmatched_observation_resolves_to_identity(make_observation, clock):
    gallery = IdentityGallery(clock=clock)
    enrolled = gallery.enroll("Ana", "111", [Capture(np.array([5.0, 5.0]))]).identity
    seen = []
    store = TrackStore()
    matcher = _matcher(gallery=gallery, on_identity_seen=lambda res, when: seen.append(res.identity_id))

    outcome = matcher.match([make_observation([5.2, 5.0])], store)

    assert outcome.created == [enrolled.id]
    track = store.get(enrolled.id)
    assert track.is_identified
    assert track.identity_name == "Ana"
    assert seen == [enrolled.id]


def test_identified_track_absorbs_drifted_observation(make_observation, clock):
    gallery = IdentityGallery(clock=clock)
    enrolled = gallery.enroll("Ana", "111", [Capture(np.array([5.0, 5.0]))]).identity
    store = TrackStore()
    seen = []
    matcher = _matcher(gallery=gallery, on_identity_seen=lambda res, when: seen.append(when))
    matcher.match([make_observation([5.5, 5.0])], store)

    clock.advance(milliseconds=1000)
    # 0.55 from the track embedding but 0.05 from the enrolled reference
    outcome = matcher.match([make_observation([4.95, 5.0])], store)

    assert outcome.created == []
    assert outcome.updated == [enrolled.id]
    assert len(store) == 1
    # announcements are debounced within the cooldown
    assert len(seen) == 1


def test_malformed_embedding_is_skipped(make_observation):
    store = TrackStore()
    matcher = GreedyTrackMatcher(None, track_threshold=0.5, embedding_dim=2)
    outcome = matcher.match(
        [make_observation([1.0, 2.0, 3.0]), make_observation([float("nan"), 1.0]), make_observation([1.0, 2.0])],
        store,
    )
    assert outcome.skipped == 2
    assert len(outcome.created) == 1


def test_build_matcher_rejects_unknown_name():
    assert isinstance(build_matcher("hungarian", None), HungarianTrackMatcher)
    with pytest.raises(ValueError, match="Unknown matcher"):
        build_matcher("nearest", None)
