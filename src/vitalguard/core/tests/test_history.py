"""
Tests for the bounded reading history.
"""

import random

import pytest

from vitalguard.core.history import MAX_HISTORY_POINTS, HistoryBuffer


class TestAppend:

    def test_append_stores_in_arrival_order(self, make_reading):
        buffer = HistoryBuffer()
        readings = [make_reading() for _ in range(3)]

        for r in readings:
            buffer.append(r)

        assert buffer.snapshot() == tuple(readings)
        assert buffer.latest == readings[-1]

    def test_same_reading_twice_stored_once(self, make_reading):
        buffer = HistoryBuffer()
        reading = make_reading()

        assert buffer.append(reading) is True
        assert buffer.append(reading) is False

        assert len(buffer) == 1

    def test_same_timestamp_different_values_dropped(self, make_reading):
        buffer = HistoryBuffer()
        buffer.append(make_reading(timestamp=1000, heart_rate=70))

        buffer.append(make_reading(timestamp=1000, heart_rate=99))

        assert len(buffer) == 1
        assert buffer.latest.heart_rate == 70

    def test_non_adjacent_equal_timestamps_allowed(self, make_reading):
        """Only the newest entry is compared."""
        buffer = HistoryBuffer()
        buffer.append(make_reading(timestamp=1000))
        buffer.append(make_reading(timestamp=2000))
        buffer.append(make_reading(timestamp=1000))

        assert len(buffer) == 3


class TestCapacity:

    def test_default_capacity_is_50(self):
        assert HistoryBuffer().max_points == MAX_HISTORY_POINTS == 50

    def test_oldest_evicted_first(self, make_reading):
        buffer = HistoryBuffer()
        readings = [make_reading() for _ in range(60)]

        for r in readings:
            buffer.append(r)

        assert len(buffer) == 50
        assert buffer.snapshot() == tuple(readings[10:])

    def test_random_sequences_respect_cap_and_adjacency(self, make_reading):
        rng = random.Random(42)
        buffer = HistoryBuffer()

        for _ in range(500):
            buffer.append(make_reading(timestamp=rng.randint(0, 20)))

            contents = buffer.snapshot()
            assert len(contents) <= 50
            for a, b in zip(contents, contents[1:]):
                assert a.timestamp != b.timestamp

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            HistoryBuffer(max_points=0)


class TestSnapshot:

    def test_snapshot_not_affected_by_later_appends(self, make_reading):
        buffer = HistoryBuffer()
        buffer.append(make_reading())

        snap = buffer.snapshot()
        buffer.append(make_reading())

        assert len(snap) == 1
        assert len(buffer) == 2

    def test_load_replaces_contents(self, make_reading):
        buffer = HistoryBuffer(max_points=3)
        buffer.append(make_reading())

        kept = buffer.load([make_reading() for _ in range(5)])

        assert kept == 3
        assert len(buffer) == 3

    def test_clear(self, make_reading):
        buffer = HistoryBuffer()
        buffer.append(make_reading())

        buffer.clear()

        assert len(buffer) == 0
        assert buffer.latest is None
