"""Backend record source abstractions.

A RecordSource is the hosted backend as seen by the core: a bulk query by
scope and a change feed filtered by an equality predicate. Implementations
must be swappable; the in-memory source mirrors the behaviour of the hosted
service closely enough for tests and demos.
"""
from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional

from ulid import ULID

from timely_sync.models import ChangeKind, ScopeKey, normalize_record_id

logger = logging.getLogger("timely_sync.source")

ChangeCallback = Callable[[Mapping[str, Any]], None]
LostCallback = Callable[[], None]


class OrderBy(NamedTuple):
    """Server-side ordering of a bulk fetch."""

    column: str
    ascending: bool = True


class FeedFilter(NamedTuple):
    """Equality predicate restricting a change feed to one scope."""

    column: str
    value: str

    def to_expr(self) -> str:
        """Render as the backend's filter expression, e.g. ``event_id=eq.42``."""
        return f"{self.column}=eq.{self.value}"

    def matches(self, row: Mapping[str, Any]) -> bool:
        raw = row.get(self.column)
        return raw is not None and str(raw) == self.value


class RecordSource(ABC):
    """Interface for the hosted backend the stores mirror."""

    @abstractmethod
    async def list_records(
        self, table: str, scope: ScopeKey, order_by: OrderBy
    ) -> List[Dict[str, Any]]:
        """Return all rows of ``table`` in ``scope``, ordered by ``order_by``."""
        ...

    @abstractmethod
    def subscribe(
        self,
        table: str,
        feed_filter: FeedFilter,
        on_change: ChangeCallback,
        on_lost: Optional[LostCallback] = None,
    ) -> object:
        """Start delivering ``{eventType, new, old}`` payloads; return an opaque handle."""
        ...

    @abstractmethod
    def unsubscribe(self, handle: object) -> None:
        """Stop delivery for ``handle``. Must tolerate unknown or released handles."""
        ...


@dataclass
class _Channel:
    handle: int
    table: str
    feed_filter: FeedFilter
    on_change: ChangeCallback
    on_lost: Optional[LostCallback]


@dataclass
class _Table:
    rows: Dict[str, Dict[str, Any]] = field(default_factory=dict)


class InMemoryRecordSource(RecordSource):
    """In-memory backend with a synchronous change feed.

    Mutations notify every open channel whose filter matches the row before
    returning. Fetches can be paused (to interleave live changes with an
    in-flight load) or made to fail.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, _Table] = {}
        self._channels: Dict[int, _Channel] = {}
        self._handles = itertools.count(1)
        self._fetch_gate: Optional[asyncio.Event] = None
        self._fetch_error: Optional[BaseException] = None
        self.fetch_count = 0

    # -- query ---------------------------------------------------------------

    async def list_records(
        self, table: str, scope: ScopeKey, order_by: OrderBy
    ) -> List[Dict[str, Any]]:
        self.fetch_count += 1
        # Snapshot before suspending so the result reflects the moment the
        # query ran, as a real round trip would.
        rows = [
            copy.deepcopy(row)
            for row in self._table(table).rows.values()
            if str(row.get("event_id")) == scope.event_id
            and (row.get("company_id") is None or str(row.get("company_id")) == scope.company_id)
        ]
        error = self._fetch_error
        if self._fetch_gate is not None:
            await self._fetch_gate.wait()
        if error is not None:
            raise error
        present = [r for r in rows if r.get(order_by.column) is not None]
        missing = [r for r in rows if r.get(order_by.column) is None]
        present.sort(key=lambda r: r[order_by.column], reverse=not order_by.ascending)
        return present + missing

    def pause_fetches(self) -> None:
        """Hold every subsequent fetch until :meth:`resume_fetches`."""
        if self._fetch_gate is None:
            self._fetch_gate = asyncio.Event()

    def resume_fetches(self) -> None:
        gate, self._fetch_gate = self._fetch_gate, None
        if gate is not None:
            gate.set()

    def fail_fetches(self, error: Optional[BaseException]) -> None:
        """Make subsequent fetches raise ``error``; pass None to stop failing."""
        self._fetch_error = error

    # -- change feed ---------------------------------------------------------

    def subscribe(
        self,
        table: str,
        feed_filter: FeedFilter,
        on_change: ChangeCallback,
        on_lost: Optional[LostCallback] = None,
    ) -> object:
        handle = next(self._handles)
        self._channels[handle] = _Channel(handle, table, feed_filter, on_change, on_lost)
        logger.debug("Opened channel %s on %s (%s)", handle, table, feed_filter.to_expr())
        return handle

    def unsubscribe(self, handle: object) -> None:
        if self._channels.pop(handle, None) is not None:  # type: ignore[call-overload]
            logger.debug("Closed channel %s", handle)

    @property
    def open_channels(self) -> int:
        return len(self._channels)

    def drop_connection(self, table: Optional[str] = None) -> None:
        """Simulate a transport drop: close channels and report them lost."""
        for handle, channel in list(self._channels.items()):
            if table is not None and channel.table != table:
                continue
            del self._channels[handle]
            if channel.on_lost is not None:
                channel.on_lost()

    def emit(self, table: str, payload: Mapping[str, Any]) -> None:
        """Deliver a raw payload to matching channels without touching rows."""
        row = payload.get("old") if payload.get("eventType") == ChangeKind.DELETE.value else payload.get("new")
        for channel in list(self._channels.values()):
            if channel.table != table:
                continue
            if isinstance(row, Mapping) and not channel.feed_filter.matches(row):
                continue
            channel.on_change(payload)

    # -- mutations -----------------------------------------------------------

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Store ``row`` and notify subscribers; assigns a ULID id if none is given."""
        stored = dict(row)
        if stored.get("id") is None:
            stored["id"] = str(ULID())
        key = normalize_record_id(stored["id"])
        self._table(table).rows[key] = stored
        self.emit(table, {"eventType": ChangeKind.INSERT.value, "table": table,
                          "new": copy.deepcopy(stored), "old": {}})
        return stored

    def update(self, table: str, row_id: object, **changes: Any) -> Dict[str, Any]:
        key = normalize_record_id(row_id)
        rows = self._table(table).rows
        old = rows[key]
        new = {**old, **changes}
        rows[key] = new
        self.emit(table, {"eventType": ChangeKind.UPDATE.value, "table": table,
                          "new": copy.deepcopy(new), "old": {"id": old["id"]}})
        return new

    def delete(self, table: str, row_id: object) -> None:
        key = normalize_record_id(row_id)
        old = self._table(table).rows.pop(key)
        # The hosted feed only includes the primary key and filter column in
        # the old image of a deleted row.
        image = {"id": old["id"], "event_id": old.get("event_id")}
        self.emit(table, {"eventType": ChangeKind.DELETE.value, "table": table,
                          "new": {}, "old": image})

    def _table(self, table: str) -> _Table:
        return self._tables.setdefault(table, _Table())
