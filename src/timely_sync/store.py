"""Entity store: a live, deduplicated, ordered mirror of one table for one scope.

The store combines a bulk fetch with a change feed started alongside it.
Because the two race, the store tolerates:

- an INSERT arriving before the fetch resolves (kept when the fetch lands),
- an INSERT for a row that is also in the fetch (no duplicate),
- an UPDATE/DELETE for a row not yet present (no-op).

An id-keyed map is the source of truth; the ordered view is derived from it
and the store's ordering policy. ``reset`` merges the fetch into the map and
never blindly overwrites it.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from timely_sync.entities import EntitySpec, OrderingPolicy, R
from timely_sync.feed import ChangeFeedSubscription
from timely_sync.models import (
    ChangeEvent,
    ChangeKind,
    FetchFailedError,
    MalformedRecordError,
    ScopeKey,
    StoreAnomaly,
    TimelySyncError,
    normalize_record_id,
)
from timely_sync.source import RecordSource

logger = logging.getLogger("timely_sync.store")

MAX_ANOMALIES = 200

RawRecord = Union[Mapping[str, Any], BaseModel]
StoreListener = Callable[["EntityStore[Any]"], None]


class StoreStatus(str, Enum):
    """Load/connection state of a store as shown to consumers."""

    IDLE = "idle"          # no active scope; empty and not an error
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"      # bulk fetch rejected; live rows kept
    STALE = "stale"        # change feed lost; rows may lag the server
    DISPOSED = "disposed"


@dataclass(frozen=True)
class StoreSnapshot(Generic[R]):
    """Immutable view of a store at one point in time."""

    table: str
    status: StoreStatus
    records: Tuple[R, ...]
    error: Optional[FetchFailedError] = None
    anomalies: Tuple[StoreAnomaly, ...] = ()


def _raw_id(raw: RawRecord) -> Optional[str]:
    value = getattr(raw, "id", None) if isinstance(raw, BaseModel) else raw.get("id")
    if value is None:
        return None
    try:
        return normalize_record_id(value)
    except ValueError:
        return None


def parse_record(entity: EntitySpec[R], raw: RawRecord) -> R:
    """Validate one row against the entity schema.

    Raises:
        MalformedRecordError: If the row does not satisfy the schema.
    """
    if isinstance(raw, entity.record_type):
        return raw
    data = raw.model_dump() if isinstance(raw, BaseModel) else raw
    try:
        return entity.record_type.model_validate(data)
    except PydanticValidationError as exc:
        detail = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<row>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise MalformedRecordError(entity.table, _raw_id(raw), detail) from exc


class EntityStore(Generic[R]):
    """Ordered, id-keyed mirror of one entity type for one ScopeKey.

    Single-threaded: every mutation runs to completion on the event loop
    before the next starts. The ordering policy is fixed for the store's
    lifetime.
    """

    def __init__(self, entity: EntitySpec[R], scope: Optional[ScopeKey]) -> None:
        self.entity = entity
        self.scope = scope
        self._records: Dict[str, R] = {}
        self._order: List[str] = []
        # Ids written or deleted live since the current load began.
        self._touched: Set[str] = set()
        self._deleted: Set[str] = set()
        self._generation = 0
        self._status = StoreStatus.IDLE if scope is None else StoreStatus.LOADING
        self._error: Optional[FetchFailedError] = None
        self._anomalies: Deque[StoreAnomaly] = deque(maxlen=MAX_ANOMALIES)
        self._listeners: List[StoreListener] = []
        self._source: Optional[RecordSource] = None
        self._subscription: Optional[ChangeFeedSubscription] = None

    def __repr__(self) -> str:
        return (
            f"EntityStore(table={self.entity.table}, "
            f"event={self.scope.event_id if self.scope else None}, "
            f"status={self._status.value}, size={len(self._order)})"
        )

    # -- read side -----------------------------------------------------------

    @property
    def records(self) -> Tuple[R, ...]:
        return tuple(self._records[record_id] for record_id in self._order)

    @property
    def status(self) -> StoreStatus:
        return self._status

    @property
    def error(self) -> Optional[FetchFailedError]:
        return self._error

    @property
    def anomalies(self) -> Tuple[StoreAnomaly, ...]:
        return tuple(self._anomalies)

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, record_id: str) -> Optional[R]:
        return self._records.get(record_id)

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[R]:
        return iter(self.records)

    def snapshot(self) -> StoreSnapshot[R]:
        return StoreSnapshot(
            table=self.entity.table,
            status=self._status,
            records=self.records,
            error=self._error,
            anomalies=self.anomalies,
        )

    def listen(self, callback: StoreListener) -> Callable[[], None]:
        """Call ``callback(store)`` after every change; returns an unlisten function."""
        self._listeners.append(callback)

        def unlisten() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unlisten

    # -- write side ----------------------------------------------------------

    def begin_load(self) -> int:
        """Mark the start of a bulk fetch and return its generation token.

        Results carrying an older token are discarded by :meth:`reset` and
        :meth:`fail_load`.
        """
        self._generation += 1
        self._touched.clear()
        self._deleted.clear()
        if self._status is not StoreStatus.DISPOSED and self.scope is not None:
            self._status = StoreStatus.LOADING
            self._error = None
            self._notify()
        return self._generation

    def reset(self, rows: Iterable[RawRecord], *, generation: Optional[int] = None) -> bool:
        """Merge a bulk-fetch result into the store.

        Rows touched by live events since the load began keep their live
        version, rows deleted live are not resurrected, and everything else is
        taken from ``rows`` in fetch order. Returns False if the result was
        discarded (disposed store, no scope, or outdated generation).
        """
        if not self._accepts_load(generation):
            return False

        fetched: Dict[str, R] = {}
        fetched_order: List[str] = []
        for raw in rows:
            record = self._ingest(raw)
            if record is None or record.id in self._deleted or record.id in fetched:
                continue
            fetched[record.id] = record
            fetched_order.append(record.id)

        live_only = [
            record_id
            for record_id in self._order
            if record_id in self._touched and record_id not in fetched
        ]
        merged: Dict[str, R] = {}
        for record_id in fetched_order:
            if record_id in self._touched and record_id in self._records:
                merged[record_id] = self._records[record_id]
            else:
                merged[record_id] = fetched[record_id]
        for record_id in live_only:
            merged[record_id] = self._records[record_id]

        if self.entity.ordering is OrderingPolicy.MOST_RECENT_FIRST:
            order = live_only + fetched_order
        else:
            order = fetched_order + live_only

        self._records = merged
        self._order = order
        self._touched.clear()
        self._deleted.clear()
        self._error = None
        self._status = self._settled_status()
        logger.info(
            "Loaded %d %s (%d fetched, %d live-only) for event %s",
            len(order), self.entity.name, len(fetched_order), len(live_only),
            self.scope.event_id if self.scope else None,
        )
        self._notify()
        return True

    def fail_load(self, error: BaseException, *, generation: Optional[int] = None) -> bool:
        """Record a rejected bulk fetch. Rows already applied stay in place."""
        if not self._accepts_load(generation):
            return False
        if isinstance(error, FetchFailedError):
            self._error = error
        else:
            self._error = FetchFailedError(self.entity.table, error)
        self._status = StoreStatus.FAILED
        logger.warning("%s", self._error)
        self._notify()
        return True

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one change event; return True if the collection changed."""
        if self._status is StoreStatus.DISPOSED or self.scope is None:
            logger.debug("Ignoring %r on inactive %s store", event, self.entity.name)
            return False

        if event.kind is ChangeKind.DELETE:
            return self._apply_delete(event.record)

        record = self._ingest(event.record)
        if record is None:
            return False

        existing = self._records.get(record.id)
        if existing is None and event.kind is ChangeKind.UPDATE:
            logger.debug("UPDATE for unknown %s %s ignored", self.entity.name, record.id)
            return False

        self._touched.add(record.id)
        self._deleted.discard(record.id)
        if existing is not None:
            if existing == record:
                return False
            self._records[record.id] = record
        else:
            self._records[record.id] = record
            if self.entity.ordering is OrderingPolicy.MOST_RECENT_FIRST:
                self._order.insert(0, record.id)
            else:
                self._order.append(record.id)
        logger.debug("Applied %s to %s %s", event.kind.value, self.entity.name, record.id)
        self._notify()
        return True

    def mark_stale(self) -> None:
        """Flag that the change feed dropped and rows may lag the server."""
        if self._status in (StoreStatus.DISPOSED, StoreStatus.IDLE, StoreStatus.FAILED):
            return
        if self._status is StoreStatus.STALE:
            return
        self._status = StoreStatus.STALE
        logger.warning("%s store for event %s is stale", self.entity.name,
                       self.scope.event_id if self.scope else None)
        self._notify()

    # -- lifecycle -----------------------------------------------------------

    @classmethod
    async def open(
        cls, source: RecordSource, entity: EntitySpec[R], scope: Optional[ScopeKey]
    ) -> "EntityStore[R]":
        """Construct a store, subscribe to its feed and run the initial fetch."""
        store = cls(entity, scope)
        await store.start(source)
        return store

    async def start(self, source: RecordSource) -> None:
        """Subscribe, then fetch. Without a scope the store stays IDLE.

        A subscribe failure leaves the store FAILED and is re-raised; the
        fetch is not attempted.

        Raises:
            TimelySyncError: If the store was already started or disposed.
        """
        if self._source is not None or self._status is StoreStatus.DISPOSED:
            raise TimelySyncError(f"{self!r} cannot be started twice")
        self._source = source
        if self.scope is None:
            logger.info("No active event; %s store stays empty", self.entity.name)
            return
        generation = self.begin_load()
        try:
            self._subscription = self._subscribe(source, self.scope)
        except Exception as exc:
            self.fail_load(exc, generation=generation)
            raise
        await self._load(generation)

    async def refetch(self) -> None:
        """Run a fresh bulk fetch and merge it in."""
        if self._source is None or self.scope is None or self._status is StoreStatus.DISPOSED:
            return
        await self._load(self.begin_load())

    async def recover(self) -> None:
        """Resubscribe after the feed was lost, then refetch to catch up."""
        if self._source is None or self.scope is None or self._status is StoreStatus.DISPOSED:
            return
        generation = self.begin_load()
        try:
            if self._subscription is None or self._subscription.closed:
                self._subscription = self._subscribe(self._source, self.scope)
            else:
                self._subscription.open()
        except Exception as exc:
            self.fail_load(exc, generation=generation)
            raise
        await self._load(generation)

    def dispose(self) -> None:
        """Release the subscription. Further calls are no-ops."""
        if self._status is StoreStatus.DISPOSED:
            return
        self._status = StoreStatus.DISPOSED
        self._generation += 1
        if self._subscription is not None:
            self._subscription.close()
        logger.info("Disposed %s store for event %s", self.entity.name,
                    self.scope.event_id if self.scope else None)
        self._notify()
        self._listeners.clear()

    # -- internals -----------------------------------------------------------

    def _subscribe(self, source: RecordSource, scope: ScopeKey) -> ChangeFeedSubscription:
        return ChangeFeedSubscription(
            source,
            self.entity.table,
            self.entity.feed_filter(scope),
            self.apply,
            on_lost=self.mark_stale,
            on_invalid=self._invalid_payload,
        ).open()

    async def _load(self, generation: int) -> None:
        assert self._source is not None and self.scope is not None
        try:
            rows = await self._source.list_records(
                self.entity.table, self.scope, self.entity.order_by
            )
        except Exception as exc:
            self.fail_load(exc, generation=generation)
            return
        self.reset(rows, generation=generation)

    def _accepts_load(self, generation: Optional[int]) -> bool:
        if self._status is StoreStatus.DISPOSED or self.scope is None:
            return False
        if generation is not None and generation != self._generation:
            logger.info(
                "Discarding outdated %s load (generation %d, current %d)",
                self.entity.name, generation, self._generation,
            )
            return False
        return True

    def _settled_status(self) -> StoreStatus:
        if self._subscription is not None and not self._subscription.is_open:
            return StoreStatus.STALE
        return StoreStatus.READY

    def _ingest(self, raw: RawRecord) -> Optional[R]:
        try:
            record = parse_record(self.entity, raw)
        except MalformedRecordError as exc:
            self._anomaly("malformed_record", exc.record_id, exc.detail)
            return None
        if self.scope is None or not self.scope.admits(record):
            self._anomaly(
                "scope_mismatch",
                record.id,
                f"row belongs to event {record.event_id!r} / company {record.company_id!r}",
            )
            return None
        return record

    def _apply_delete(self, raw: Mapping[str, Any]) -> bool:
        record_id = _raw_id(raw)
        if record_id is None:
            self._anomaly("malformed_record", None, "DELETE without a usable id")
            return False
        event_id = raw.get("event_id")
        if event_id is not None and self.scope is not None and str(event_id) != self.scope.event_id:
            self._anomaly("scope_mismatch", record_id, f"row belongs to event {event_id!r}")
            return False
        self._touched.discard(record_id)
        self._deleted.add(record_id)
        if record_id not in self._records:
            logger.debug("DELETE for unknown %s %s ignored", self.entity.name, record_id)
            return False
        del self._records[record_id]
        self._order.remove(record_id)
        logger.debug("Applied DELETE to %s %s", self.entity.name, record_id)
        self._notify()
        return True

    def _invalid_payload(self, payload: Mapping[str, Any], exc: Exception) -> None:
        self._anomaly("malformed_record", None, f"unparseable change payload: {exc}")

    def _anomaly(self, kind: str, record_id: Optional[str], message: str) -> None:
        anomaly = StoreAnomaly(kind=kind, table=self.entity.table, record_id=record_id, message=message)
        self._anomalies.append(anomaly)
        logger.warning("%s %s %s: %s", self.entity.table, kind, record_id, message)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)
