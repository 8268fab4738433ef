"""JSON encoding for account snapshots and export files."""

from __future__ import annotations

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError as PydanticValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .errors import FormatError
from .models import CatalogVariant, Meter, MeterEvent, TimeAccount

# .NET-style "[-][d.]hh:mm:ss[.fffffff]", as written by earlier versions.
_TIMESPAN_PATTERN = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})"
    r"(?:\.(?P<fraction>\d{1,7}))?$"
)
_TIMEDELTA_ADAPTER = TypeAdapter(timedelta)


def format_duration(value: timedelta) -> str:
    total_us = (value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds
    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)
    total_seconds, micros = divmod(total_us, 1_000_000)
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)
    text = f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    if days:
        text = f"{days}.{text}"
    if micros:
        text = f"{text}.{micros:06d}0"
    return sign + text


def parse_duration(value: Any) -> timedelta:
    """Parse a stored timeline period; ISO-8601 and plain seconds also work."""
    if isinstance(value, timedelta):
        return value
    if value is None or value == "":
        return timedelta()
    if isinstance(value, str):
        match = _TIMESPAN_PATTERN.match(value.strip())
        if match:
            fraction = (match["fraction"] or "").ljust(7, "0")
            parsed = timedelta(
                days=int(match["days"] or 0),
                hours=int(match["hours"]),
                minutes=int(match["minutes"]),
                seconds=int(match["seconds"]),
                microseconds=int(fraction) // 10,
            )
            return -parsed if match["sign"] else parsed
    try:
        return _TIMEDELTA_ADAPTER.validate_python(value)
    except PydanticValidationError as exc:
        raise ValueError(f"Invalid duration: {value!r}") from exc


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _accept_pascal_case(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                (key[:1].lower() + key[1:] if isinstance(key, str) else key): value
                for key, value in data.items()
            }
        return data


class MeterPayload(_Payload):
    id: UUID = Field(default_factory=uuid4)
    name: str
    factor: float = 1.0
    display_order: int = 0


class EventPayload(_Payload):
    id: UUID = Field(default_factory=uuid4)
    start_time: datetime
    end_time: Optional[datetime] = None
    factor: float = 1.0
    meter_name: str = Field(
        default="", validation_alias=AliasChoices("meterName", "activityName", "meter_name")
    )
    comment: Optional[str] = ""
    meter_id: Optional[UUID] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class SnapshotPayload(_Payload):
    events: list[EventPayload] = Field(default_factory=list)
    meters: list[MeterPayload] = Field(default_factory=list)
    timeline_period: timedelta = timedelta()

    @field_validator("timeline_period", mode="before")
    @classmethod
    def _parse_period(cls, value: Any) -> timedelta:
        return parse_duration(value)


class ExportPayload(_Payload):
    exported_at: Optional[datetime] = None
    language: Optional[str] = ""
    tutorial_completed: bool = False
    meters: Optional[list[MeterPayload]] = None
    events: Optional[list[EventPayload]] = None


def meter_from_payload(payload: MeterPayload) -> Meter:
    return Meter(
        id=payload.id,
        name=payload.name,
        factor=payload.factor,
        display_order=payload.display_order,
    )


def event_from_payload(payload: EventPayload) -> MeterEvent:
    return MeterEvent(
        id=payload.id,
        start_time=payload.start_time,
        end_time=payload.end_time,
        factor=payload.factor,
        meter_name=payload.meter_name,
        comment=payload.comment or "",
        meter_id=payload.meter_id,
    )


def meter_to_dict(meter: Meter) -> dict[str, Any]:
    return {
        "id": str(meter.id),
        "name": meter.name,
        "factor": meter.factor,
        "displayOrder": meter.display_order,
    }


def event_to_dict(event: MeterEvent, variant: CatalogVariant) -> dict[str, Any]:
    return {
        "id": str(event.id),
        "startTime": event.start_time.isoformat(),
        "endTime": event.end_time.isoformat() if event.end_time is not None else None,
        "factor": event.factor,
        variant.event_name_field: event.meter_name,
        "comment": event.comment,
        "meterId": str(event.meter_id) if event.meter_id is not None else None,
    }


def encode_snapshot(account: TimeAccount, variant: CatalogVariant) -> str:
    return json.dumps(
        {
            "events": [event_to_dict(event, variant) for event in account.events],
            "meters": [meter_to_dict(meter) for meter in account.meters],
            "timelinePeriod": format_duration(account.timeline_period),
        }
    )


def decode_snapshot(text: str) -> TimeAccount:
    try:
        payload = SnapshotPayload.model_validate_json(text)
    except PydanticValidationError as exc:
        raise FormatError(f"Stored account snapshot is invalid: {exc}") from exc
    return TimeAccount(
        events=[event_from_payload(item) for item in payload.events],
        meters=[meter_from_payload(item) for item in payload.meters],
        timeline_period=payload.timeline_period,
    )


def encode_export(
    account: TimeAccount,
    variant: CatalogVariant,
    *,
    exported_at: datetime,
    language: str,
    tutorial_completed: bool,
) -> str:
    return json.dumps(
        {
            "exportedAt": exported_at.isoformat(),
            "language": language,
            "tutorialCompleted": tutorial_completed,
            "meters": [meter_to_dict(meter) for meter in account.meters],
            "events": [event_to_dict(event, variant) for event in account.events],
        },
        indent=2,
    )


def decode_export(text: str) -> ExportPayload:
    try:
        return ExportPayload.model_validate_json(text)
    except PydanticValidationError as exc:
        raise FormatError(f"Invalid import data format: {exc}") from exc
