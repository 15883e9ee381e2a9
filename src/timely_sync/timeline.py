"""Timeline composition: itinerary items and modules merged for one day.

Pipeline: filter(selected day, non-draft) -> combine date + time -> concat
-> stable sort by start. Pure functions; no I/O. Rows lacking a time field
are reported as anomalies instead of aborting composition.
"""
from __future__ import annotations

import datetime as dt
import logging
from enum import Enum
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from timely_sync.models import ItineraryItemRecord, TimelineModuleRecord

logger = logging.getLogger("timely_sync.timeline")

ONE_DAY = dt.timedelta(days=1)
DEFAULT_ITEM_DURATION = dt.timedelta(hours=1)
DEFAULT_SCALE_STEP = dt.timedelta(minutes=15)
MODULE_ID_PREFIX = "module-"


class CompositeKind(str, Enum):
    ITINERARY = "itinerary"
    MODULE = "module"


class CompositeEvent(BaseModel):
    """One timeline entry derived from an itinerary item or a module."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str
    date: dt.date
    start: dt.datetime = Field(..., description="Timezone-aware start instant")
    end: dt.datetime = Field(..., description="Timezone-aware end instant (== start for modules)")
    kind: CompositeKind
    source: Union[ItineraryItemRecord, TimelineModuleRecord]

    @model_validator(mode="after")
    def _check_interval(self) -> "CompositeEvent":
        if self.end < self.start:
            raise ValueError("end must not precede start")
        return self

    @property
    def is_instant(self) -> bool:
        return self.start == self.end

    @property
    def duration(self) -> dt.timedelta:
        return self.end - self.start


class TimelineAnomaly(BaseModel):
    """Row excluded from composition.

    Valid kind values: "missing_time_field".
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    source_kind: CompositeKind
    record_id: str
    message: str


class ComposedTimeline(BaseModel):
    """Deterministic output of compose_timeline()."""

    model_config = ConfigDict(frozen=True)

    selected_date: dt.date
    events: Tuple[CompositeEvent, ...] = ()
    anomalies: Tuple[TimelineAnomaly, ...] = ()


class TimeScaleMark(NamedTuple):
    label: str
    at: dt.datetime
    position: float


def day_bounds(selected_date: dt.date, tz: dt.tzinfo) -> Tuple[dt.datetime, dt.datetime]:
    """Local midnight of ``selected_date`` and of the following day."""
    start = dt.datetime.combine(selected_date, dt.time.min, tzinfo=tz)
    return start, start + ONE_DAY


def combine_instant(day: dt.date, time_of_day: dt.time, tz: dt.tzinfo) -> dt.datetime:
    return dt.datetime.combine(day, time_of_day.replace(tzinfo=None), tzinfo=tz)


def timeline_position(instant: dt.datetime, selected_date: dt.date, tz: dt.tzinfo) -> float:
    """Percentage (0-100) of the selected day elapsed at ``instant``.

    Instants outside the day are pinned to its boundaries. Arithmetic is
    wall-clock in ``tz``; DST-transition days are not special-cased.
    """
    start, _ = day_bounds(selected_date, tz)
    if instant.tzinfo is None:
        local = instant.replace(tzinfo=tz)
    else:
        local = instant.astimezone(tz)
    ratio = (local.replace(tzinfo=None) - start.replace(tzinfo=None)) / ONE_DAY
    return max(0.0, min(1.0, ratio)) * 100.0


def compose_timeline(
    items: Iterable[ItineraryItemRecord],
    modules: Iterable[TimelineModuleRecord],
    selected_date: dt.date,
    tz: dt.tzinfo = dt.timezone.utc,
    default_duration: dt.timedelta = DEFAULT_ITEM_DURATION,
) -> ComposedTimeline:
    """Merge itinerary items and modules of ``selected_date`` into one ordered sequence.

    Items without ``end_time`` last ``default_duration``; an ``end_time``
    earlier than ``start_time`` ends on the following day. Ties on start keep
    concatenation order (items before modules, then source order).
    """
    events: List[CompositeEvent] = []
    anomalies: List[TimelineAnomaly] = []

    for item in items:
        if item.is_draft or item.date != selected_date:
            continue
        if item.start_time is None:
            anomalies.append(_missing_time(CompositeKind.ITINERARY, item.id, "start_time"))
            continue
        start = combine_instant(selected_date, item.start_time, tz)
        if item.end_time is None:
            end = start + default_duration
        else:
            end = combine_instant(selected_date, item.end_time, tz)
            if end < start:
                end += ONE_DAY
        events.append(CompositeEvent(
            id=item.id,
            title=item.title,
            date=selected_date,
            start=start,
            end=end,
            kind=CompositeKind.ITINERARY,
            source=item,
        ))

    for module in modules:
        if module.date != selected_date:
            continue
        if module.time is None:
            anomalies.append(_missing_time(CompositeKind.MODULE, module.id, "time"))
            continue
        start = combine_instant(selected_date, module.time, tz)
        events.append(CompositeEvent(
            id=f"{MODULE_ID_PREFIX}{module.id}",
            title=module.display_text,
            date=selected_date,
            start=start,
            end=start,
            kind=CompositeKind.MODULE,
            source=module,
        ))

    # list.sort is stable
    events.sort(key=lambda e: e.start)
    return ComposedTimeline(
        selected_date=selected_date,
        events=tuple(events),
        anomalies=tuple(anomalies),
    )


def _missing_time(kind: CompositeKind, record_id: str, field_name: str) -> TimelineAnomaly:
    logger.warning("Excluding %s %s from timeline: no %s", kind.value, record_id, field_name)
    return TimelineAnomaly(
        kind="missing_time_field",
        source_kind=kind,
        record_id=record_id,
        message=f"{field_name} is required for timeline placement",
    )


# ---------------------------------------------------------------------------
# Day navigation and axis
# ---------------------------------------------------------------------------


def event_dates(items: Iterable[ItineraryItemRecord]) -> Tuple[dt.date, ...]:
    """Sorted distinct days that have at least one published itinerary item."""
    return tuple(sorted({item.date for item in items if item.date is not None and not item.is_draft}))


def shift_date(day: dt.date, direction: str) -> dt.date:
    """Previous or next calendar day.

    Raises:
        ValueError: If direction is not "prev" or "next".
    """
    if direction == "prev":
        return day - ONE_DAY
    if direction == "next":
        return day + ONE_DAY
    raise ValueError(f"direction must be 'prev' or 'next'; got {direction!r}")


def nearest_event_date(dates: Sequence[dt.date], today: dt.date) -> Optional[dt.date]:
    """``today`` if it is an event day, else the next event day, else the last one."""
    if not dates:
        return None
    for day in sorted(dates):
        if day >= today:
            return day
    return max(dates)


def time_scale(
    selected_date: dt.date,
    tz: dt.tzinfo = dt.timezone.utc,
    step: dt.timedelta = DEFAULT_SCALE_STEP,
) -> Tuple[TimeScaleMark, ...]:
    """Axis marks every ``step`` from local midnight, labelled ``HH:MM``.

    Raises:
        ValueError: If step is not positive.
    """
    if step <= dt.timedelta(0):
        raise ValueError("step must be positive")
    start, _ = day_bounds(selected_date, tz)
    marks: List[TimeScaleMark] = []
    offset = dt.timedelta(0)
    while offset < ONE_DAY:
        at = start + offset
        marks.append(TimeScaleMark(at.strftime("%H:%M"), at, timeline_position(at, selected_date, tz)))
        offset += step
    return tuple(marks)
