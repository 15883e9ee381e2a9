"""Status classification of timeline entries against a moving "now"."""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from timely_sync.timeline import CompositeEvent


class EventStatus(str, Enum):
    """Where an entry sits relative to the current time."""

    PAST = "past"
    CURRENT = "current"
    UPCOMING = "upcoming"


def classify(event: CompositeEvent, now: dt.datetime) -> EventStatus:
    """Classify ``event`` at ``now``.

    Both bounds are inclusive: an instantaneous module is CURRENT only at
    its exact instant and PAST immediately after.

    Raises:
        TypeError: If ``now`` is naive (event instants are always aware).
    """
    if now.tzinfo is None:
        raise TypeError("now must be timezone-aware")
    if event.start <= now <= event.end:
        return EventStatus.CURRENT
    if now > event.end:
        return EventStatus.PAST
    return EventStatus.UPCOMING


def classify_timeline(
    events: Iterable[CompositeEvent], now: dt.datetime
) -> Tuple[Tuple[CompositeEvent, EventStatus], ...]:
    """Pair every event with its status, preserving order."""
    return tuple((event, classify(event, now)) for event in events)


def status_counts(
    classified: Iterable[Tuple[CompositeEvent, EventStatus]],
) -> Dict[EventStatus, int]:
    counts = {status: 0 for status in EventStatus}
    for _, status in classified:
        counts[status] += 1
    return counts


def next_upcoming(
    classified: Iterable[Tuple[CompositeEvent, EventStatus]],
) -> Optional[CompositeEvent]:
    """First UPCOMING entry in timeline order, if any."""
    for event, status in classified:
        if status is EventStatus.UPCOMING:
            return event
    return None
