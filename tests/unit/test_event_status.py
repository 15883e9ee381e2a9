"""Unit tests for status classification."""

import datetime as dt

import pytest

from timely_sync import (
    EventStatus,
    ItineraryItemRecord,
    TimelineModuleRecord,
    classify,
    classify_timeline,
    compose_timeline,
    next_upcoming,
    status_counts,
)

from conftest import DAY, make_item, make_module

UTC = dt.timezone.utc


def at(hour: int, minute: int = 0, second: int = 0) -> dt.datetime:
    return dt.datetime.combine(DAY, dt.time(hour, minute, second), tzinfo=UTC)


@pytest.fixture
def meeting():
    item = ItineraryItemRecord.model_validate(make_item(start_time="09:00", end_time="10:00"))
    return compose_timeline([item], [], DAY).events[0]


@pytest.fixture
def poll():
    module = TimelineModuleRecord.model_validate(make_module(time="09:30"))
    return compose_timeline([], [module], DAY).events[0]


class TestBoundaries:
    @pytest.mark.parametrize(
        "now,expected",
        [
            (at(8, 59), EventStatus.UPCOMING),
            (at(9, 0), EventStatus.CURRENT),
            (at(9, 30), EventStatus.CURRENT),
            (at(10, 0), EventStatus.CURRENT),
            (at(10, 1), EventStatus.PAST),
        ],
    )
    def test_interval(self, meeting, now: dt.datetime, expected: EventStatus) -> None:
        assert classify(meeting, now) is expected

    def test_instant_is_current_only_at_its_tick(self, poll) -> None:
        assert classify(poll, at(9, 29)) is EventStatus.UPCOMING
        assert classify(poll, at(9, 30)) is EventStatus.CURRENT
        assert classify(poll, at(9, 30, 1)) is EventStatus.PAST
        assert classify(poll, at(9, 31)) is EventStatus.PAST

    def test_compares_across_zones(self, meeting) -> None:
        tokyo = dt.timezone(dt.timedelta(hours=9))
        now = dt.datetime.combine(DAY, dt.time(18, 30), tzinfo=tokyo)  # 09:30 UTC
        assert classify(meeting, now) is EventStatus.CURRENT

    def test_naive_now_rejected(self, meeting) -> None:
        with pytest.raises(TypeError):
            classify(meeting, dt.datetime(2024, 5, 1, 9, 30))


class TestTimelineHelpers:
    def test_classify_timeline_preserves_order(self, meeting, poll) -> None:
        classified = classify_timeline([meeting, poll], at(9, 45))
        assert [(e.id, s) for e, s in classified] == [
            (meeting.id, EventStatus.CURRENT),
            (poll.id, EventStatus.PAST),
        ]

    def test_status_counts(self, meeting, poll) -> None:
        counts = status_counts(classify_timeline([meeting, poll], at(8)))
        assert counts == {EventStatus.PAST: 0, EventStatus.CURRENT: 0, EventStatus.UPCOMING: 2}

    def test_next_upcoming(self, meeting, poll) -> None:
        assert next_upcoming(classify_timeline([meeting, poll], at(9, 15))) == poll
        assert next_upcoming(classify_timeline([meeting, poll], at(11))) is None
