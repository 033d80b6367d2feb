from datetime import datetime, timedelta

from dwelltime.attribution.counter import PeopleCounter

START = datetime(2024, 3, 1, 10, 0, 0)


def _at(ms: float) -> datetime:
    return START + timedelta(milliseconds=ms)


def test_track_counted_once_within_dedup_window():
    counter = PeopleCounter(dedup_window_ms=10000)
    assert counter.process(["track_a"], _at(0)) == 1
    assert counter.process(["track_a"], _at(9999)) == 0
    assert counter.snapshot().total == 1

    assert counter.process(["track_a"], _at(10001)) == 1
    count = counter.snapshot()
    assert count.total == 2
    assert count.today == 2
    assert count.day == "2024-03-01"


def test_resighting_does_not_extend_window():
    counter = PeopleCounter(dedup_window_ms=10000)
    counter.process(["track_a"], _at(0))
    counter.process(["track_a"], _at(6000))
    assert counter.process(["track_a"], _at(10500)) == 1


def test_distinct_tracks_counted_separately():
    counter = PeopleCounter()
    assert counter.process(["track_a", "track_b"], _at(0)) == 2
    assert counter.process(["track_b", "track_c"], _at(100)) == 1


def test_old_entries_are_purged():
    counter = PeopleCounter(dedup_window_ms=10000, purge_after_ms=60000)
    counter.process(["track_a"], _at(0))
    counter.process(["track_b"], _at(60001))
    assert counter.tracked_ids() == 1


def test_rollover_resets_today_only():
    counter = PeopleCounter()
    counter.process(["track_a", "track_b"], datetime(2024, 3, 1, 23, 59, 0))
    assert not counter.check_rollover(datetime(2024, 3, 1, 23, 59, 59))

    assert counter.check_rollover(datetime(2024, 3, 2, 0, 0, 1))
    count = counter.snapshot()
    assert count.today == 0
    assert count.total == 2
    assert count.day == "2024-03-02"
    assert counter.tracked_ids() == 0
