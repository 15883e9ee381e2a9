"""Core data models for the timely-sync library."""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Dict, Mapping, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_record_id(v: object) -> str:
    """Normalize a record ID to its canonical string form.

    Accepts:
    - non-empty strings, stripped of surrounding whitespace
    - integers (serial primary keys), rendered in decimal

    Raises:
        ValueError: If the input is neither, or is empty after stripping.
    """
    if isinstance(v, bool):
        raise ValueError("id must be a string or integer; got bool")
    if isinstance(v, int):
        return str(v)
    if not isinstance(v, str):
        raise ValueError(f"id must be a string or integer; got {type(v).__name__}")
    stripped = v.strip()
    if not stripped:
        raise ValueError("id must not be empty")
    return stripped


def parse_time_of_day(v: object) -> Optional[dt.time]:
    """Parse a time-of-day column value.

    Accepts ``dt.time`` instances, ``"HH:MM"`` and ``"HH:MM:SS"`` strings
    (the latter is how Postgres ``time`` columns are serialized). Empty
    strings and None map to None. Any UTC offset is dropped; times are
    interpreted in the configured event timezone.
    """
    if v is None:
        return None
    if isinstance(v, dt.time):
        return v.replace(tzinfo=None)
    if isinstance(v, str):
        text = v.strip()
        if not text:
            return None
        try:
            return dt.time.fromisoformat(text).replace(tzinfo=None)
        except ValueError:
            raise ValueError(f"invalid time of day: {v!r}") from None
    raise ValueError(f"time of day must be a string; got {type(v).__name__}")


class ScopeKey(NamedTuple):
    """The (company_id, event_id) pair bounding what a store may contain."""

    company_id: str
    event_id: str

    def admits(self, record: "EntityRecord") -> bool:
        """Return True if ``record`` belongs to this scope.

        Records without a company column are matched on event_id only.
        """
        if record.event_id != self.event_id:
            return False
        return record.company_id is None or record.company_id == self.company_id


class ChangeKind(str, Enum):
    """Kinds of row change delivered by the change feed."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A typed change notification for one row of one table."""

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind = Field(..., description="INSERT, UPDATE or DELETE")
    record: Dict[str, Any] = Field(
        ...,
        description="Row image: the new row for INSERT/UPDATE, the old row for DELETE",
    )
    table: Optional[str] = Field(None, description="Source table, when known")

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, v: object) -> object:
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def record_id(self) -> Optional[str]:
        raw = self.record.get("id")
        if raw is None:
            return None
        try:
            return normalize_record_id(raw)
        except ValueError:
            return None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChangeEvent":
        """Build a ChangeEvent from a raw ``{eventType, new, old}`` feed payload.

        Raises:
            pydantic.ValidationError: If the event type is unknown or the row
                image is missing.
        """
        kind = payload.get("eventType", payload.get("kind"))
        if isinstance(kind, str) and kind.upper() == ChangeKind.DELETE.value:
            record = payload.get("old")
        else:
            record = payload.get("new")
        return cls(kind=kind, record=record, table=payload.get("table"))

    def __repr__(self) -> str:
        return f"ChangeEvent(kind={self.kind.value}, table={self.table}, id={self.record_id})"


# ---------------------------------------------------------------------------
# Record schemas
# ---------------------------------------------------------------------------


class EntityRecord(BaseModel):
    """Common shape of every server-owned row mirrored by a store.

    Columns the core does not read are kept as extra fields so that consumers
    see the full row.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str = Field(..., description="Primary key")
    event_id: str = Field(..., min_length=1, description="Owning event")
    company_id: Optional[str] = Field(None, description="Owning company, if the table has one")
    created_at: Optional[dt.datetime] = Field(None, description="Row creation time")

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, v: object) -> str:
        return normalize_record_id(v)

    @field_validator("event_id", "company_id", mode="before")
    @classmethod
    def _stringify_scope(cls, v: object) -> object:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class GuestRecord(EntityRecord):
    """A guest of an event. Ordered newest first by ``created_at``."""


class ItineraryItemRecord(EntityRecord):
    """A scheduled item of an event's itinerary."""

    date: Optional[dt.date] = Field(None, description="Calendar day of the item")
    start_time: Optional[dt.time] = Field(None, description="Local start time")
    end_time: Optional[dt.time] = Field(None, description="Local end time")
    title: str = Field("", description="Display title")
    location: Optional[str] = None
    description: Optional[str] = None
    is_draft: bool = Field(False, description="Drafts never appear on the timeline")

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _parse_time(cls, v: object) -> Optional[dt.time]:
        return parse_time_of_day(v)

    @field_validator("title", mode="before")
    @classmethod
    def _null_title(cls, v: object) -> object:
        return "" if v is None else v

    @field_validator("is_draft", mode="before")
    @classmethod
    def _null_draft(cls, v: object) -> object:
        return False if v is None else v


class ModuleType(str, Enum):
    """Closed set of interactive timeline module kinds created by the apps."""

    QUESTION = "question"
    FEEDBACK = "feedback"
    MULTIPLE_CHOICE = "multiple_choice"
    PHOTO_VIDEO = "photo_video"
    QRCODE = "qrcode"
    SURVEY = "survey"


class TimelineModuleRecord(EntityRecord):
    """An ad-hoc interactive module pinned to a point in time.

    The backend stores ``module_type`` as free text. Values outside
    :class:`ModuleType` (after trimming and lower-casing) fail validation, so
    a store records such rows as ``malformed_record`` anomalies.
    """

    date: Optional[dt.date] = Field(None, description="Calendar day of the module")
    time: Optional[dt.time] = Field(None, description="Local time the module fires")
    module_type: ModuleType = Field(..., description="Module kind")
    question: Optional[str] = None
    title: Optional[str] = None
    label: Optional[str] = None

    @field_validator("time", mode="before")
    @classmethod
    def _parse_time(cls, v: object) -> Optional[dt.time]:
        return parse_time_of_day(v)

    @field_validator("module_type", mode="before")
    @classmethod
    def _normalize_module_type(cls, v: object) -> object:
        if isinstance(v, str) and not isinstance(v, ModuleType):
            return v.strip().lower()
        return v

    @property
    def type_name(self) -> str:
        return self.module_type.value

    @property
    def display_text(self) -> str:
        """First non-empty of question, title, label; else the module type."""
        for text in (self.question, self.title, self.label):
            if text and text.strip():
                return text
        return self.type_name


# ---------------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------------


class StoreAnomaly(BaseModel):
    """Non-fatal issue recorded while ingesting rows into a store.

    Valid kind values: "malformed_record", "scope_mismatch".
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    table: str
    record_id: Optional[str] = None
    message: str


# Custom Exceptions
class TimelySyncError(Exception):
    """Base exception for all library errors."""
    pass


class ScopeUnavailableError(TimelySyncError):
    """An operation needed an active scope but none is selected."""
    pass


class FetchFailedError(TimelySyncError):
    """The bulk fetch for a store was rejected by the backend."""

    def __init__(self, table: str, cause: BaseException) -> None:
        self.table = table
        self.cause = cause
        super().__init__(f"Failed to load {table}: {cause}")


class MalformedRecordError(TimelySyncError):
    """A row does not match its entity schema."""

    def __init__(self, table: str, record_id: Optional[str], detail: str) -> None:
        self.table = table
        self.record_id = record_id
        self.detail = detail
        super().__init__(f"Malformed {table} record {record_id!r}: {detail}")


class SubscriptionClosedError(TimelySyncError):
    """A closed change-feed subscription cannot be reopened."""
    pass
