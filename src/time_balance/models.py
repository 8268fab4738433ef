"""Domain models for meters, activation events and the time account."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from .errors import RangeError

MIN_FACTOR = -10.0
MAX_FACTOR = 10.0
DEFAULT_TIMELINE_PERIOD = timedelta(hours=24)


class CatalogVariant(str, Enum):
    """Factor policy shared by a catalog and the events it produces.

    ``meter`` catalogs carry a free factor in [-10, 10]; ``activity`` catalogs
    pin every factor to 1.0 and require a comment when an activity starts.
    """

    METER = "meter"
    ACTIVITY = "activity"

    @property
    def fixed_factor(self) -> bool:
        return self is CatalogVariant.ACTIVITY

    @property
    def requires_comment(self) -> bool:
        return self is CatalogVariant.ACTIVITY

    @property
    def event_name_field(self) -> str:
        return "activityName" if self is CatalogVariant.ACTIVITY else "meterName"

    @property
    def storage_prefix(self) -> str:
        return "kairos" if self is CatalogVariant.ACTIVITY else "budgetr"

    def normalize_factor(self, factor: Optional[float]) -> float:
        if self.fixed_factor or factor is None:
            return 1.0
        value = float(factor)
        if value < MIN_FACTOR or value > MAX_FACTOR:
            raise RangeError(
                f"Factor must be between {MIN_FACTOR:g} and {MAX_FACTOR:g}, got {value:g}."
            )
        return value


@dataclass(slots=True)
class Meter:
    """A named category whose active time is weighted by ``factor``."""

    name: str
    factor: float = 1.0
    display_order: int = 0
    id: UUID = field(default_factory=uuid4)


@dataclass(slots=True)
class MeterEvent:
    """One open or closed interval during which a meter was active.

    ``meter_name`` and ``factor`` are copied from the meter when the event
    starts, so later edits to the meter do not rewrite history.
    """

    start_time: datetime
    factor: float
    meter_name: str
    end_time: Optional[datetime] = None
    comment: str = ""
    meter_id: Optional[UUID] = None
    id: UUID = field(default_factory=uuid4)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    def duration(self, now: datetime) -> timedelta:
        end = self.end_time if self.end_time is not None else now
        return end - self.start_time

    def time_contribution(self, now: datetime) -> timedelta:
        return self.duration(now) * self.factor


@dataclass(slots=True)
class TimeAccount:
    """Aggregate root persisted as a single snapshot."""

    events: list[MeterEvent] = field(default_factory=list)
    meters: list[Meter] = field(default_factory=list)
    timeline_period: timedelta = DEFAULT_TIMELINE_PERIOD


@dataclass(slots=True, frozen=True)
class TimelineDataPoint:
    timestamp: datetime
    balance_hours: float
