"""Unit tests for ChangeFeedSubscription."""

import logging
from typing import Any, List

import pytest

from timely_sync import (
    ChangeEvent,
    ChangeFeedSubscription,
    ChangeKind,
    FeedFilter,
    InMemoryRecordSource,
    SubscriptionClosedError,
)

from conftest import EVENT_ID, make_guest

FILTER = FeedFilter("event_id", EVENT_ID)


def _subscription(source: InMemoryRecordSource, received: List[ChangeEvent], **kwargs: Any) -> ChangeFeedSubscription:
    return ChangeFeedSubscription(source, "guests", FILTER, received.append, **kwargs)


class TestFeedFilter:
    def test_expression(self) -> None:
        assert FILTER.to_expr() == "event_id=eq.event-001"

    def test_matches_on_string_value(self) -> None:
        assert FeedFilter("event_id", "5").matches({"event_id": 5})
        assert not FILTER.matches({"event_id": "event-002"})
        assert not FILTER.matches({})


class TestDelivery:
    def test_delivers_typed_events(self, source: InMemoryRecordSource) -> None:
        received: List[ChangeEvent] = []
        _subscription(source, received).open()
        row = source.insert("guests", make_guest(id="g1"))
        source.update("guests", "g1", first_name="Bea")
        source.delete("guests", "g1")

        assert [e.kind for e in received] == [ChangeKind.INSERT, ChangeKind.UPDATE, ChangeKind.DELETE]
        assert received[0].record == row
        assert received[1].record["first_name"] == "Bea"
        assert received[2].record_id == "g1"
        assert all(e.table == "guests" for e in received)

    def test_filter_and_topic_respected(self, source: InMemoryRecordSource) -> None:
        received: List[ChangeEvent] = []
        _subscription(source, received).open()
        source.insert("guests", make_guest(event_id="event-002"))
        source.insert("itineraries", {"id": "i1", "event_id": EVENT_ID})
        assert received == []

    def test_open_is_idempotent(self, source: InMemoryRecordSource) -> None:
        received: List[ChangeEvent] = []
        sub = _subscription(source, received)
        sub.open()
        sub.open()
        assert source.open_channels == 1

    def test_unparseable_payload_reported(self, source: InMemoryRecordSource) -> None:
        received: List[ChangeEvent] = []
        invalid: List[Any] = []
        _subscription(source, received, on_invalid=lambda p, e: invalid.append(p)).open()
        source.emit("guests", {"eventType": "TRUNCATE", "new": {"event_id": EVENT_ID}})
        assert received == []
        assert len(invalid) == 1


class TestClose:
    def test_close_stops_delivery(self, source: InMemoryRecordSource) -> None:
        received: List[ChangeEvent] = []
        sub = _subscription(source, received).open()
        sub.close()
        source.insert("guests", make_guest())
        assert received == []
        assert source.open_channels == 0
        assert sub.closed and not sub.is_open

    def test_close_twice_is_safe(self, source: InMemoryRecordSource) -> None:
        sub = _subscription(source, []).open()
        sub.close()
        sub.close()

    def test_close_before_open_is_safe(self, source: InMemoryRecordSource) -> None:
        sub = _subscription(source, [])
        sub.close()
        assert sub.closed

    def test_reopen_after_close_raises(self, source: InMemoryRecordSource) -> None:
        sub = _subscription(source, []).open()
        sub.close()
        with pytest.raises(SubscriptionClosedError):
            sub.open()

    def test_late_delivery_after_close_is_dropped(self, source: InMemoryRecordSource) -> None:
        received: List[ChangeEvent] = []
        sub = _subscription(source, received).open()
        sub.close()
        # A transport that still holds the callback delivers late.
        sub._dispatch({"eventType": "INSERT", "new": make_guest(), "old": {}})
        assert received == []

    def test_failing_unsubscribe_never_raises(
        self, source: InMemoryRecordSource, caplog: pytest.LogCaptureFixture
    ) -> None:
        def boom(handle: object) -> None:
            raise RuntimeError("socket already gone")

        sub = _subscription(source, []).open()
        source.unsubscribe = boom  # type: ignore[method-assign]
        with caplog.at_level(logging.WARNING, logger="timely_sync.feed"):
            sub.close()
        assert sub.closed
        assert "Unsubscribe from guests failed" in caplog.text


class TestConnectionLoss:
    def test_on_lost_fires_once_and_allows_reopen(self, source: InMemoryRecordSource) -> None:
        lost: List[bool] = []
        received: List[ChangeEvent] = []
        sub = _subscription(source, received, on_lost=lambda: lost.append(True)).open()

        source.drop_connection()
        assert lost == [True]
        assert not sub.is_open and not sub.closed

        source.insert("guests", make_guest(id="missed"))
        assert received == []

        sub.open()
        source.insert("guests", make_guest(id="seen"))
        assert [e.record_id for e in received] == ["seen"]

    def test_drop_after_close_is_silent(self, source: InMemoryRecordSource) -> None:
        lost: List[bool] = []
        sub = _subscription(source, [], on_lost=lambda: lost.append(True)).open()
        sub.close()
        source.drop_connection()
        assert lost == []
