"""Live timeline: two stores, a selected day and a ticker fanned into one view.

The composition is recomputed whenever either store changes or the selected
day moves; statuses and positions are recomputed on every tick. Nothing here
mutates the stores it reads.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from timely_sync.config import SyncSettings
from timely_sync.models import ItineraryItemRecord, TimelineModuleRecord
from timely_sync.status import EventStatus, classify
from timely_sync.store import EntityStore, StoreStatus
from timely_sync.ticker import Clock, CurrentTimeTicker, utc_now
from timely_sync.timeline import (
    ComposedTimeline,
    CompositeEvent,
    TimelineAnomaly,
    compose_timeline,
    event_dates,
    nearest_event_date,
    shift_date,
    timeline_position,
)

logger = logging.getLogger("timely_sync.live")

ViewListener = Callable[["TimelineView"], None]


class TimelineEntry(BaseModel):
    """A composite event annotated for rendering."""

    model_config = ConfigDict(frozen=True)

    event: CompositeEvent
    status: EventStatus
    start_position: float
    end_position: float


class TimelineView(BaseModel):
    """Everything a timeline screen needs for one render."""

    model_config = ConfigDict(frozen=True)

    selected_date: dt.date
    now: dt.datetime
    now_position: float
    entries: Tuple[TimelineEntry, ...] = ()
    anomalies: Tuple[TimelineAnomaly, ...] = ()
    store_statuses: Dict[str, StoreStatus]

    @property
    def is_stale(self) -> bool:
        return StoreStatus.STALE in self.store_statuses.values()

    @property
    def has_errors(self) -> bool:
        return StoreStatus.FAILED in self.store_statuses.values()

    @property
    def is_loading(self) -> bool:
        return StoreStatus.LOADING in self.store_statuses.values()

    @property
    def is_disposed(self) -> bool:
        return StoreStatus.DISPOSED in self.store_statuses.values()


class LiveTimeline:
    """Keeps a TimelineView current for one event."""

    def __init__(
        self,
        itineraries: EntityStore[ItineraryItemRecord],
        modules: EntityStore[TimelineModuleRecord],
        *,
        selected_date: Optional[dt.date] = None,
        settings: Optional[SyncSettings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or SyncSettings()
        self._tz = self.settings.tzinfo
        self._itineraries = itineraries
        self._modules = modules
        self._listeners: List[ViewListener] = []
        self._ticker = CurrentTimeTicker(
            self._on_tick, interval=self.settings.tick_interval_seconds, clock=clock
        )
        self._selected = selected_date or self._local_today(self._ticker.now)
        self._closed = False
        self._unlisten: List[Callable[[], None]] = []
        self._attach()
        self._timeline = self._compose()
        self._view = self._build_view(self._ticker.now)

    # -- read side -----------------------------------------------------------

    @property
    def selected_date(self) -> dt.date:
        return self._selected

    @property
    def timeline(self) -> ComposedTimeline:
        return self._timeline

    @property
    def view(self) -> TimelineView:
        return self._view

    @property
    def now(self) -> dt.datetime:
        return self._ticker.now

    @property
    def ticker(self) -> CurrentTimeTicker:
        return self._ticker

    def available_dates(self) -> Tuple[dt.date, ...]:
        return event_dates(self._itineraries.records)

    def listen(self, callback: ViewListener) -> Callable[[], None]:
        """Call ``callback(view)`` after every recompute; returns an unlisten function."""
        self._listeners.append(callback)

        def unlisten() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unlisten

    # -- navigation ----------------------------------------------------------

    def select_date(self, day: dt.date) -> TimelineView:
        """Move to ``day``: recompose, then refresh "now" on demand."""
        if day != self._selected:
            self._selected = day
            self._timeline = self._compose()
            logger.debug("Selected %s (%d entries)", day, len(self._timeline.events))
        self._ticker.tick()
        return self._view

    def next_day(self) -> TimelineView:
        return self.select_date(shift_date(self._selected, "next"))

    def previous_day(self) -> TimelineView:
        return self.select_date(shift_date(self._selected, "prev"))

    def select_nearest_event_day(self) -> TimelineView:
        """Jump to today if it has items, else the next (or last) day that does."""
        day = nearest_event_date(self.available_dates(), self._local_today(self._ticker.now))
        return self.select_date(day if day is not None else self._selected)

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the per-minute ticker on the running event loop."""
        self._ticker.start()

    async def stop(self) -> None:
        await self._ticker.stop()

    def rebind(
        self,
        itineraries: EntityStore[ItineraryItemRecord],
        modules: EntityStore[TimelineModuleRecord],
    ) -> None:
        """Switch to another pair of stores and publish a fresh view.

        The selected day is kept. No-op once the timeline is closed.
        """
        if self._closed:
            return
        self._detach()
        self._itineraries = itineraries
        self._modules = modules
        self._attach()
        logger.debug("Rebound to %r and %r", itineraries, modules)
        self._on_store_change(itineraries)

    async def close(self) -> None:
        """Stop ticking and detach from the stores."""
        await self.stop()
        self._closed = True
        self._detach()
        self._listeners.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    # -- internals -----------------------------------------------------------

    def _attach(self) -> None:
        self._unlisten = [
            self._itineraries.listen(self._on_store_change),
            self._modules.listen(self._on_store_change),
        ]

    def _detach(self) -> None:
        for unlisten in self._unlisten:
            unlisten()
        self._unlisten = []

    def _local_today(self, now: dt.datetime) -> dt.date:
        return now.astimezone(self._tz).date()

    def _compose(self) -> ComposedTimeline:
        return compose_timeline(
            self._itineraries.records,
            self._modules.records,
            self._selected,
            tz=self._tz,
            default_duration=self.settings.default_item_duration,
        )

    def _build_view(self, now: dt.datetime) -> TimelineView:
        entries = tuple(
            TimelineEntry(
                event=event,
                status=classify(event, now),
                start_position=timeline_position(event.start, self._selected, self._tz),
                end_position=timeline_position(event.end, self._selected, self._tz),
            )
            for event in self._timeline.events
        )
        return TimelineView(
            selected_date=self._selected,
            now=now,
            now_position=timeline_position(now, self._selected, self._tz),
            entries=entries,
            anomalies=self._timeline.anomalies,
            store_statuses={
                self._itineraries.entity.name: self._itineraries.status,
                self._modules.entity.name: self._modules.status,
            },
        )

    def _on_store_change(self, store: EntityStore) -> None:
        self._timeline = self._compose()
        self._publish(self._build_view(self._ticker.now))

    def _on_tick(self, now: dt.datetime) -> None:
        self._publish(self._build_view(now))

    def _publish(self, view: TimelineView) -> None:
        self._view = view
        for callback in list(self._listeners):
            callback(view)
