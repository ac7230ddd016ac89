from __future__ import annotations

from datetime import timedelta

import pytest

from timeflip2.exceptions import OrderingError
from timeflip2.models import ActivityInterval, FacetReading
from timeflip2.tracking import FacetTracker

from conftest import T0


def at(seconds: int):
    return T0 + timedelta(seconds=seconds)


def reading(facet: int, seconds: int) -> FacetReading:
    return FacetReading(facet_id=facet, observed_at=at(seconds))


def test_debounce_and_transitions() -> None:
    tracker = FacetTracker()
    emitted = []
    for facet, seconds in [(1, 0), (1, 10), (2, 20), (2, 30), (1, 40)]:
        closed = tracker.feed(reading(facet, seconds))
        if closed is not None:
            emitted.append(closed)

    assert emitted == [
        ActivityInterval(facet_id=1, start_time=at(0), end_time=at(20)),
        ActivityInterval(facet_id=2, start_time=at(20), end_time=at(40)),
    ]
    assert tracker.open_interval == ActivityInterval(facet_id=1, start_time=at(40))


def test_repeated_facet_emits_nothing() -> None:
    tracker = FacetTracker()
    assert tracker.feed(reading(4, 0)) is None
    assert tracker.feed(reading(4, 5)) is None
    assert tracker.open_interval.start_time == at(0)


def test_close_emits_once() -> None:
    tracker = FacetTracker()
    tracker.feed(reading(3, 0))

    closed = tracker.close(at(90))
    assert closed == ActivityInterval(facet_id=3, start_time=at(0), end_time=at(90))
    assert closed.duration == timedelta(seconds=90)
    assert tracker.open_interval is None
    assert tracker.close(at(100)) is None


def test_reading_after_close_opens_new_interval() -> None:
    tracker = FacetTracker()
    tracker.feed(reading(3, 0))
    tracker.close(at(10))

    assert tracker.feed(reading(3, 20)) is None
    assert tracker.open_interval == ActivityInterval(facet_id=3, start_time=at(20))


def test_regressing_timestamp_raises() -> None:
    tracker = FacetTracker()
    tracker.feed(reading(1, 10))
    with pytest.raises(OrderingError):
        tracker.feed(reading(2, 5))
    assert tracker.open_interval.facet_id == 1

    with pytest.raises(OrderingError):
        tracker.close(at(5))


def test_closed_intervals_are_immutable() -> None:
    tracker = FacetTracker()
    tracker.feed(reading(1, 0))
    closed = tracker.feed(reading(2, 10))
    assert not closed.is_open
    with pytest.raises(AttributeError):
        closed.end_time = at(20)
