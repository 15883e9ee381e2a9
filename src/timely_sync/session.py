"""Scoped ownership of the stores for one event.

A session acquires the guest, itinerary and module stores for one ScopeKey
and releases them exactly once, on dispose, on a failed start or when the
scope changes. Live timelines built from the session follow it across scope
switches.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import logging
import weakref
from typing import Any, Optional, Tuple

from timely_sync.config import SyncSettings
from timely_sync.entities import GUESTS, ITINERARIES, TIMELINE_MODULES
from timely_sync.live import LiveTimeline
from timely_sync.models import (
    GuestRecord,
    ItineraryItemRecord,
    ScopeKey,
    ScopeUnavailableError,
    TimelineModuleRecord,
    TimelySyncError,
)
from timely_sync.source import RecordSource
from timely_sync.store import EntityStore, StoreStatus
from timely_sync.ticker import Clock, utc_now

logger = logging.getLogger("timely_sync.session")


class EventSession:
    """The live data of one event: guests, itinerary items and modules."""

    def __init__(
        self,
        source: RecordSource,
        scope: Optional[ScopeKey],
        settings: Optional[SyncSettings] = None,
    ) -> None:
        self._source = source
        self.settings = settings or SyncSettings()
        self._disposed = False
        self._timelines: "weakref.WeakSet[LiveTimeline]" = weakref.WeakSet()
        self._bind(scope)

    def _bind(self, scope: Optional[ScopeKey]) -> None:
        self.scope = scope
        self.guests: EntityStore[GuestRecord] = EntityStore(GUESTS, scope)
        self.itineraries: EntityStore[ItineraryItemRecord] = EntityStore(ITINERARIES, scope)
        self.modules: EntityStore[TimelineModuleRecord] = EntityStore(TIMELINE_MODULES, scope)
        for live in list(self._timelines):
            live.rebind(self.itineraries, self.modules)

    @classmethod
    async def open(
        cls,
        source: RecordSource,
        scope: Optional[ScopeKey],
        settings: Optional[SyncSettings] = None,
    ) -> "EventSession":
        """Create and start a session. A failed start disposes it before re-raising."""
        session = cls(source, scope, settings)
        try:
            await session.start()
        except BaseException:
            session.dispose()
            raise
        return session

    @property
    def disposed(self) -> bool:
        return self._disposed

    async def start(self) -> None:
        """Subscribe and fetch all three stores concurrently.

        A failed fetch leaves that store FAILED without affecting the others.
        If any store cannot subscribe, all three stores are released once
        every start has settled, and the first error is re-raised.
        """
        if self._disposed:
            raise TimelySyncError("session is disposed")
        scope = self.scope
        stores = (self.guests, self.itineraries, self.modules)
        try:
            results = await asyncio.gather(
                *(store.start(self._source) for store in stores),
                return_exceptions=True,
            )
        except BaseException:
            self._release(stores)
            raise
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            logger.error(
                "Session start for event %s failed: %s",
                scope.event_id if scope else None, errors[0],
            )
            self._release(stores)
            raise errors[0]
        logger.info("Session ready for event %s", scope.event_id if scope else None)

    async def switch_scope(self, scope: Optional[ScopeKey]) -> None:
        """Release the current stores and open fresh ones for ``scope``.

        The old stores are disposed before the new fetches start, so a late
        response for the previous event is discarded. Open live timelines are
        rebound to the new stores.
        """
        if self._disposed:
            raise TimelySyncError("session is disposed")
        if scope == self.scope and self.guests.status is not StoreStatus.DISPOSED:
            return
        self._release()
        self._bind(scope)
        await self.start()

    async def refetch(self) -> None:
        await asyncio.gather(
            self.guests.refetch(), self.itineraries.refetch(), self.modules.refetch()
        )

    async def recover(self) -> None:
        """Resubscribe and refetch every store whose feed was lost."""
        await asyncio.gather(
            self.guests.recover(), self.itineraries.recover(), self.modules.recover()
        )

    def timeline(
        self,
        clock: Clock = utc_now,
        selected_date: Optional[dt.date] = None,
    ) -> LiveTimeline:
        """Build a LiveTimeline over this session's itinerary and module stores.

        The timeline is rebound to the new stores on every scope switch.

        Raises:
            ScopeUnavailableError: If the session has no event selected.
        """
        if self.scope is None:
            raise ScopeUnavailableError("no event selected")
        live = LiveTimeline(
            self.itineraries,
            self.modules,
            selected_date=selected_date,
            settings=self.settings,
            clock=clock,
        )
        self._timelines.add(live)
        return live

    def dispose(self) -> None:
        """Release every subscription. Further calls are no-ops."""
        if self._disposed:
            return
        self._disposed = True
        self._release()

    def _release(self, stores: Optional[Tuple[EntityStore[Any], ...]] = None) -> None:
        if stores is None:
            stores = (self.guests, self.itineraries, self.modules)
        if all(store.status is StoreStatus.DISPOSED for store in stores):
            return
        for store in stores:
            store.dispose()
        event_id = stores[0].scope.event_id if stores[0].scope else None
        logger.info("Released stores for event %s", event_id)
