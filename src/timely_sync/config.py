"""Runtime settings for timely-sync.

Settings are a frozen pydantic model. Defaults match the behaviour of the
mobile timeline: UTC, a one-minute "now" cadence, one-hour default itinerary
duration and a 15-minute time axis.
"""
from __future__ import annotations

import datetime as dt
import os
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "TIMELY_SYNC_"

_ENV_FIELDS = {
    "TIMEZONE": "timezone",
    "TICK_INTERVAL": "tick_interval_seconds",
    "DEFAULT_DURATION": "default_item_duration_minutes",
    "SCALE_STEP": "time_scale_step_minutes",
}


class SyncSettings(BaseModel):
    """Settings shared by the composer, the ticker and the live timeline."""

    model_config = ConfigDict(frozen=True)

    timezone: str = Field(
        "UTC",
        min_length=1,
        description="IANA timezone in which event dates and times are interpreted",
    )
    tick_interval_seconds: float = Field(
        60.0,
        gt=0,
        description="Cadence of the current-time ticker",
    )
    default_item_duration_minutes: int = Field(
        60,
        gt=0,
        description="Duration assumed for itinerary items without an end time",
    )
    time_scale_step_minutes: int = Field(
        15,
        ge=1,
        le=720,
        description="Spacing of time-axis marks",
    )

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v!r}") from None
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def default_item_duration(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.default_item_duration_minutes)

    @property
    def time_scale_step(self) -> dt.timedelta:
        return dt.timedelta(minutes=self.time_scale_step_minutes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SyncSettings":
        """Build settings from ``TIMELY_SYNC_*`` environment variables.

        Unset or empty variables fall back to the defaults.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        values = {}
        for suffix, field_name in _ENV_FIELDS.items():
            raw = env.get(ENV_PREFIX + suffix, "").strip()
            if raw:
                values[field_name] = raw
        return cls.model_validate(values)
