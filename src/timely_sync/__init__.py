"""
timely-sync: live entity mirrors and timeline composition for event data.

This library keeps local copies of server-owned collections (guests,
itinerary items, timeline modules) current by consuming a per-table change
feed, and merges itinerary items and modules into one chronologically
ordered, status-annotated timeline for a selected day.

Example:
    >>> import datetime as dt
    >>> from timely_sync import ItineraryItemRecord, compose_timeline
    >>> item = ItineraryItemRecord(
    ...     id="i1", event_id="e1", date="2024-05-01",
    ...     start_time="09:00", end_time="10:00", title="Welcome",
    ... )
    >>> timeline = compose_timeline([item], [], dt.date(2024, 5, 1))
    >>> [e.title for e in timeline.events]
    ['Welcome']
"""

__version__ = "0.3.0"

# Core data models
from timely_sync.models import (
    ScopeKey,
    ChangeKind,
    ChangeEvent,
    EntityRecord,
    GuestRecord,
    ItineraryItemRecord,
    TimelineModuleRecord,
    ModuleType,
    StoreAnomaly,
    TimelySyncError,
    ScopeUnavailableError,
    FetchFailedError,
    MalformedRecordError,
    SubscriptionClosedError,
    normalize_record_id,
    parse_time_of_day,
)

# Settings
from timely_sync.config import SyncSettings

# Backend source abstractions
from timely_sync.source import (
    RecordSource,
    InMemoryRecordSource,
    FeedFilter,
    OrderBy,
)

# Change feed
from timely_sync.feed import ChangeFeedSubscription

# Entity definitions
from timely_sync.entities import (
    EntitySpec,
    OrderingPolicy,
    GUESTS,
    ITINERARIES,
    TIMELINE_MODULES,
)

# Entity stores
from timely_sync.store import (
    EntityStore,
    StoreSnapshot,
    StoreStatus,
    parse_record,
)

# Timeline composition
from timely_sync.timeline import (
    CompositeEvent,
    CompositeKind,
    ComposedTimeline,
    TimelineAnomaly,
    TimeScaleMark,
    compose_timeline,
    timeline_position,
    day_bounds,
    event_dates,
    shift_date,
    nearest_event_date,
    time_scale,
)

# Status classification
from timely_sync.status import (
    EventStatus,
    classify,
    classify_timeline,
    status_counts,
    next_upcoming,
)

# Current-time ticker
from timely_sync.ticker import CurrentTimeTicker, utc_now

# Live timeline and sessions
from timely_sync.live import LiveTimeline, TimelineEntry, TimelineView
from timely_sync.session import EventSession

__all__ = [
    # Version
    "__version__",
    # Core models
    "ScopeKey",
    "ChangeKind",
    "ChangeEvent",
    "EntityRecord",
    "GuestRecord",
    "ItineraryItemRecord",
    "TimelineModuleRecord",
    "ModuleType",
    "StoreAnomaly",
    "normalize_record_id",
    "parse_time_of_day",
    # Exceptions
    "TimelySyncError",
    "ScopeUnavailableError",
    "FetchFailedError",
    "MalformedRecordError",
    "SubscriptionClosedError",
    # Settings
    "SyncSettings",
    # Sources
    "RecordSource",
    "InMemoryRecordSource",
    "FeedFilter",
    "OrderBy",
    # Change feed
    "ChangeFeedSubscription",
    # Entities
    "EntitySpec",
    "OrderingPolicy",
    "GUESTS",
    "ITINERARIES",
    "TIMELINE_MODULES",
    # Stores
    "EntityStore",
    "StoreSnapshot",
    "StoreStatus",
    "parse_record",
    # Timeline
    "CompositeEvent",
    "CompositeKind",
    "ComposedTimeline",
    "TimelineAnomaly",
    "TimeScaleMark",
    "compose_timeline",
    "timeline_position",
    "day_bounds",
    "event_dates",
    "shift_date",
    "nearest_event_date",
    "time_scale",
    # Status
    "EventStatus",
    "classify",
    "classify_timeline",
    "status_counts",
    "next_upcoming",
    # Ticker
    "CurrentTimeTicker",
    "utc_now",
    # Live timeline
    "LiveTimeline",
    "TimelineEntry",
    "TimelineView",
    "EventSession",
]
