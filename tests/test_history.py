import json
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pytest

from dwelltime.attribution.history import AttentionHistory, AttentionRecorder, HistoryStore
from dwelltime.tracking.store import TrackStore
from dwelltime.types import AttentionRecord, Track

START = datetime(2024, 3, 1, 10, 0, 0)


def _track(track_id: str, lived_ms: float, identity_id=None, name=None) -> Track:
    return Track(
        track_id=track_id,
        embedding=np.zeros(2, dtype=np.float32),
        first_seen_at=START,
        last_seen_at=START + timedelta(milliseconds=lived_ms),
        identity_id=identity_id,
        identity_name=name,
        gender="female",
        age=28,
    )


def _record(idx: int, day: str = "2024-03-01") -> AttentionRecord:
    start = datetime.fromisoformat(f"{day}T10:00:00") + timedelta(seconds=idx)
    return AttentionRecord(
        id=f"attention_{idx}",
        track_id=f"track_{idx}",
        identity_id=None,
        identity_name=None,
        is_identified=False,
        gender="unknown",
        age_group="26-35",
        age=30,
        start_time=start,
        end_time=start + timedelta(seconds=2),
        duration_seconds=2.0,
        date=day,
    )


def test_sweep_evicts_only_after_timeout():
    store = TrackStore()
    store.add(_track("track_a", lived_ms=2000))
    recorder = AttentionRecorder(AttentionHistory(), timeout_ms=3000)
    last_seen = START + timedelta(milliseconds=2000)

    assert recorder.sweep(store, last_seen + timedelta(milliseconds=2999)) == []
    assert "track_a" in store
    assert recorder.sweep(store, last_seen + timedelta(milliseconds=3000)) == []
    assert "track_a" in store

    emitted = recorder.sweep(store, last_seen + timedelta(milliseconds=3001))
    assert len(emitted) == 1
    assert "track_a" not in store


def test_short_tracks_are_evicted_without_record():
    store = TrackStore()
    store.add(_track("track_short", lived_ms=900))
    history = AttentionHistory()
    recorder = AttentionRecorder(history, timeout_ms=3000, min_duration_seconds=1.0)

    emitted = recorder.sweep(store, START + timedelta(seconds=10))

    assert emitted == []
    assert len(store) == 0
    assert len(history) == 0


def test_record_fields_for_one_second_track():
    store = TrackStore()
    store.add(_track("person_ana", lived_ms=1000, identity_id="person_ana", name="Ana"))
    history = AttentionHistory()
    recorder = AttentionRecorder(history, timeout_ms=3000, min_duration_seconds=1.0)

    (record,) = recorder.sweep(store, START + timedelta(seconds=10))

    assert record.id.startswith("attention_")
    assert record.track_id == "person_ana"
    assert record.identity_id == "person_ana"
    assert record.identity_name == "Ana"
    assert record.is_identified
    assert record.gender == "female"
    assert record.age == 28
    assert record.age_group == "26-35"
    assert record.start_time == START
    assert record.end_time == START + timedelta(seconds=1)
    assert record.duration_seconds == pytest.approx(1.0)
    assert record.date == "2024-03-01"
    assert history.records() == [record]


def test_history_is_bounded_newest_first():
    history = AttentionHistory(max_records=500)
    for idx in range(600):
        history.add(_record(idx))

    records = history.records()
    assert len(records) == 500
    assert records[0].id == "attention_599"
    assert records[-1].id == "attention_100"


def test_flush_closes_every_active_track():
    store = TrackStore()
    store.add(_track("track_a", lived_ms=1500))
    store.add(_track("track_b", lived_ms=200))
    history = AttentionHistory()
    emitted = AttentionRecorder(history).flush(store)
    assert [r.track_id for r in emitted] == ["track_a"]
    assert len(store) == 0


def test_record_carries_dominant_emotion(tmp_path: Path):
    track = _track("track_e", lived_ms=2000)
    track.emotions = [("happy", 0.9), ("happy", 0.7), ("neutral", 0.6), ("happy", 0.8)]
    store = TrackStore()
    store.add(track)
    path = tmp_path / "history.json"
    history = AttentionHistory(store=HistoryStore(path))

    (record,) = AttentionRecorder(history).flush(store)

    assert record.emotion == "happy"
    assert record.emotion_confidence == pytest.approx(0.6)
    (restored,) = HistoryStore(path).load()
    assert restored.emotion == "happy"
    assert restored.emotion_confidence == pytest.approx(0.6)


def test_record_without_emotion_fields_loads_as_neutral(tmp_path: Path):
    path = tmp_path / "history.json"
    payload = _record(1).to_dict()
    del payload["emotion"]
    del payload["emotion_confidence"]
    path.write_text(json.dumps([payload]), encoding="utf-8")
    (restored,) = HistoryStore(path).load()
    assert restored.emotion == "neutral"
    assert restored.emotion_confidence == 0.0


def test_history_store_round_trip(tmp_path: Path):
    path = tmp_path / "history.json"
    history = AttentionHistory(max_records=10, store=HistoryStore(path))
    history.add_many([_record(1), _record(2, day="2024-03-02")])

    reloaded = AttentionHistory(max_records=10, store=HistoryStore(path))

    assert reloaded.records() == history.records()
    assert reloaded.records()[0].id == "attention_2"


def test_history_store_skips_malformed_entries(tmp_path: Path):
    path = tmp_path / "history.json"
    path.write_text('[{"id": "broken"}, 5]', encoding="utf-8")
    assert HistoryStore(path).load() == []


def test_clear_history_persists(tmp_path: Path):
    path = tmp_path / "history.json"
    history = AttentionHistory(store=HistoryStore(path))
    history.add(_record(1))
    assert history.clear() == 1
    assert HistoryStore(path).load() == []
