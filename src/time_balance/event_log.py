"""Ordered log of meter activation intervals."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Collection, Iterable, Iterator, Optional
from uuid import UUID

from .catalog import MeterCatalog, originates_from
from .config import AccountSettings
from .errors import NotFoundError, StateError, ValidationError
from .models import Meter, MeterEvent
from .normalization import validate_comment

logger = logging.getLogger(__name__)


class EventLog:
    """Append-mostly event log that keeps at most one event open."""

    def __init__(self, events: list[MeterEvent], settings: AccountSettings) -> None:
        self._events = events
        self.settings = settings

    def __iter__(self) -> Iterator[MeterEvent]:
        return iter(self._events)

    def __len__(self) -> int:
        return len(self._events)

    def active(self) -> Optional[MeterEvent]:
        return next((event for event in self._events if event.is_active), None)

    def get(self, event_id: UUID) -> MeterEvent:
        for event in self._events:
            if event.id == event_id:
                return event
        raise NotFoundError(f"No event found for id={event_id}")

    def activate(
        self, meter: Meter, now: datetime, comment: Optional[str] = None
    ) -> MeterEvent:
        """Start ``meter``, closing whichever event is currently open."""
        clean_comment = validate_comment(
            comment,
            required=self.settings.variant.requires_comment,
            max_length=self.settings.max_comment_length,
        )
        self._close_open_events(now)
        event = MeterEvent(
            start_time=now,
            factor=meter.factor,
            meter_name=meter.name,
            comment=clean_comment,
            meter_id=meter.id,
        )
        self._events.append(event)
        logger.debug("Activated %s at %s", meter.name, now.isoformat())
        return event

    def deactivate(self, now: datetime) -> Optional[MeterEvent]:
        active = self.active()
        self._close_open_events(now)
        return active

    def delete(self, event_id: UUID) -> MeterEvent:
        event = self.get(event_id)
        self._events.remove(event)
        return event

    def update_times(
        self,
        event_id: UUID,
        new_start: datetime,
        new_end: datetime,
        now: datetime,
    ) -> MeterEvent:
        event = self.get(event_id)
        if event.is_active:
            raise StateError("Cannot edit times of an active event.")
        if new_start >= new_end:
            raise ValidationError("Start time must be before end time.")
        if new_end > now:
            raise ValidationError("End time cannot be in the future.")
        event.start_time = new_start
        event.end_time = new_end
        return event

    def auto_stop_orphans(
        self,
        catalog: MeterCatalog,
        now: datetime,
        valid_meter_ids: Optional[Collection[UUID]] = None,
    ) -> list[MeterEvent]:
        """Close active events whose originating meter is no longer in ``catalog``."""
        valid = set(valid_meter_ids) if valid_meter_ids is not None else catalog.ids()
        stopped: list[MeterEvent] = []
        for event in self._events:
            if not event.is_active:
                continue
            if event.meter_id is None:
                self._bind_legacy_event(event, catalog)
            if event.meter_id is None or event.meter_id not in valid:
                event.end_time = now
                stopped.append(event)
                logger.info("Auto-stopped event for removed meter %s", event.meter_name)
        return stopped

    def replace(self, events: Iterable[MeterEvent]) -> None:
        self._events[:] = list(events)
        if self.settings.variant.fixed_factor:
            for event in self._events:
                event.factor = 1.0

    def enforce_single_open(self, now: datetime) -> list[MeterEvent]:
        """Close every open event except the most recently started one."""
        open_events = sorted(
            (event for event in self._events if event.is_active),
            key=lambda event: event.start_time,
        )
        for event in open_events[:-1]:
            event.end_time = max(now, event.start_time)
            logger.warning("Closed extra open event %s started at %s", event.id, event.start_time)
        return open_events[:-1]

    def clear(self) -> None:
        self._events.clear()

    def _close_open_events(self, now: datetime) -> None:
        # Loaded data may carry more than one open event; close them all.
        for event in self._events:
            if event.is_active:
                event.end_time = max(now, event.start_time)

    @staticmethod
    def _bind_legacy_event(event: MeterEvent, catalog: MeterCatalog) -> None:
        for meter in catalog:
            if originates_from(event, meter):
                event.meter_id = meter.id
                return
