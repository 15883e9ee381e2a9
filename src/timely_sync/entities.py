"""Entity definitions: which table, schema and ordering each store uses."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Type, TypeVar

from timely_sync.models import (
    EntityRecord,
    GuestRecord,
    ItineraryItemRecord,
    ScopeKey,
    TimelineModuleRecord,
)
from timely_sync.source import FeedFilter, OrderBy

R = TypeVar("R", bound=EntityRecord)


class OrderingPolicy(str, Enum):
    """Where a live INSERT for a new id lands in a store."""

    MOST_RECENT_FIRST = "most_recent_first"
    APPEND = "append"


@dataclass(frozen=True)
class EntitySpec(Generic[R]):
    """Static description of one mirrored entity type."""

    name: str
    table: str
    record_type: Type[R]
    order_by: OrderBy
    ordering: OrderingPolicy
    scope_column: str = "event_id"

    def feed_filter(self, scope: ScopeKey) -> FeedFilter:
        return FeedFilter(self.scope_column, scope.event_id)


GUESTS: EntitySpec[GuestRecord] = EntitySpec(
    name="guests",
    table="guests",
    record_type=GuestRecord,
    order_by=OrderBy("created_at", ascending=False),
    ordering=OrderingPolicy.MOST_RECENT_FIRST,
)

ITINERARIES: EntitySpec[ItineraryItemRecord] = EntitySpec(
    name="itineraries",
    table="itineraries",
    record_type=ItineraryItemRecord,
    order_by=OrderBy("date", ascending=True),
    ordering=OrderingPolicy.APPEND,
)

TIMELINE_MODULES: EntitySpec[TimelineModuleRecord] = EntitySpec(
    name="timeline_modules",
    table="timeline_modules",
    record_type=TimelineModuleRecord,
    order_by=OrderBy("created_at", ascending=True),
    ordering=OrderingPolicy.APPEND,
)
