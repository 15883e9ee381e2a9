"""Shared pytest fixtures for all tests."""
import datetime as dt
from typing import Any, Dict

import pytest
from ulid import ULID

from timely_sync import (
    GUESTS,
    ITINERARIES,
    TIMELINE_MODULES,
    ChangeEvent,
    ChangeKind,
    EntityStore,
    InMemoryRecordSource,
    ScopeKey,
)

COMPANY_ID = "company-001"
EVENT_ID = "event-001"
SCOPE = ScopeKey(company_id=COMPANY_ID, event_id=EVENT_ID)
DAY = dt.date(2024, 5, 1)


def make_guest(**overrides: Any) -> Dict[str, Any]:
    """Build a guests row with defaults for all required columns."""
    defaults: Dict[str, Any] = {
        "id": str(ULID()),
        "event_id": EVENT_ID,
        "company_id": COMPANY_ID,
        "first_name": "Ada",
        "created_at": "2024-04-01T10:00:00+00:00",
    }
    defaults.update(overrides)
    return defaults


def make_item(**overrides: Any) -> Dict[str, Any]:
    """Build an itineraries row on DAY, 09:00-10:00."""
    defaults: Dict[str, Any] = {
        "id": str(ULID()),
        "event_id": EVENT_ID,
        "company_id": COMPANY_ID,
        "date": DAY.isoformat(),
        "start_time": "09:00",
        "end_time": "10:00",
        "title": "Welcome",
        "is_draft": False,
    }
    defaults.update(overrides)
    return defaults


def make_module(**overrides: Any) -> Dict[str, Any]:
    """Build a timeline_modules row on DAY at 09:30."""
    defaults: Dict[str, Any] = {
        "id": str(ULID()),
        "event_id": EVENT_ID,
        "date": DAY.isoformat(),
        "time": "09:30",
        "module_type": "question",
        "title": "Poll",
    }
    defaults.update(overrides)
    return defaults


def change(kind: str, row: Dict[str, Any]) -> ChangeEvent:
    return ChangeEvent(kind=ChangeKind(kind), record=row)


@pytest.fixture
def source() -> InMemoryRecordSource:
    return InMemoryRecordSource()


@pytest.fixture
def guest_store() -> EntityStore:
    return EntityStore(GUESTS, SCOPE)


@pytest.fixture
def itinerary_store() -> EntityStore:
    return EntityStore(ITINERARIES, SCOPE)


@pytest.fixture
def module_store() -> EntityStore:
    return EntityStore(TIMELINE_MODULES, SCOPE)
