"""Account controller: the single writer for meters, events and the timeline period."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence
from uuid import UUID

from .balance import BalanceEngine
from .catalog import MeterCatalog
from .codec import (
    decode_export,
    decode_snapshot,
    encode_export,
    encode_snapshot,
    event_from_payload,
    meter_from_payload,
)
from .config import AccountSettings
from .errors import FormatError, ValidationError
from .event_log import EventLog
from .meter_config import MeterConfigurationLoader
from .models import Meter, MeterEvent, TimeAccount, TimelineDataPoint
from .normalization import validate_name
from .notifications import NotificationSink, event_message
from .settings import SettingsProvider, resolve_language
from .storage import KeyValueStore
from .writer import SnapshotWriter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AccountController:
    """Owns the ``TimeAccount`` and applies every mutation to it.

    Each successful mutation updates memory, then calls the subscribers
    synchronously, then queues a snapshot for the background writer. The
    in-memory state is authoritative as soon as a call returns; use
    :meth:`save` or :meth:`flush` when durability matters.

    Public queries and mutations hold one re-entrant lock, so callers on
    different threads never see a half-applied change.
    """

    def __init__(
        self,
        store: KeyValueStore,
        meter_config: MeterConfigurationLoader,
        settings: SettingsProvider,
        notifier: Optional[NotificationSink] = None,
        *,
        config: Optional[AccountSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config or AccountSettings()
        self._store = store
        self._meter_config = meter_config
        self._settings = settings
        self._notifier = notifier
        self._clock = clock or utc_now
        self.account = TimeAccount(timeline_period=self.config.default_timeline_period)
        self.catalog = MeterCatalog(self.account.meters, self.config)
        self.events = EventLog(self.account.events, self.config)
        self.engine = BalanceEngine(self.account.events, self._clock)
        self._writer = SnapshotWriter(store, self.config.account_key)
        self._subscribers: list[Callable[[], None]] = []
        self._lock = threading.RLock()

    # -- queries -----------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def active_event(self) -> Optional[MeterEvent]:
        with self._lock:
            return self.events.active()

    def ordered_meters(self) -> list[Meter]:
        with self._lock:
            return self.catalog.ordered()

    def current_balance(self) -> timedelta:
        with self._lock:
            return self.engine.current_balance()

    def timeline(self, period: Optional[timedelta] = None) -> list[TimelineDataPoint]:
        with self._lock:
            return self.engine.timeline(
                period if period is not None else self.account.timeline_period
            )

    @property
    def timeline_period(self) -> timedelta:
        with self._lock:
            return self.account.timeline_period

    @timeline_period.setter
    def timeline_period(self, value: timedelta) -> None:
        if value <= timedelta():
            raise ValidationError("Timeline period must be positive.")
        with self._lock:
            if value != self.account.timeline_period:
                self.account.timeline_period = value
                self._commit()

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    # -- event operations --------------------------------------------------

    def activate(self, meter_id: UUID, comment: Optional[str] = None) -> MeterEvent:
        with self._lock:
            meter = self.catalog.get(meter_id)
            event = self.events.activate(meter, self.now(), comment)
            self._commit()
        self._send_notification(*event_message(self.config.variant, "started", meter.name))
        return event

    def deactivate(self) -> Optional[MeterEvent]:
        with self._lock:
            closed = self.events.deactivate(self.now())
            if closed is None:
                return None
            self._commit()
        self._send_notification(*event_message(self.config.variant, "stopped", closed.meter_name))
        return closed

    def delete_event(self, event_id: UUID) -> MeterEvent:
        with self._lock:
            event = self.events.delete(event_id)
            self._commit()
        return event

    def update_event_times(
        self, event_id: UUID, new_start: datetime, new_end: datetime
    ) -> MeterEvent:
        with self._lock:
            event = self.events.update_times(event_id, new_start, new_end, self.now())
            self._commit()
        return event

    # -- catalog operations ------------------------------------------------

    def add_meter(self, name: str, factor: Optional[float] = None) -> Meter:
        with self._lock:
            meter = self.catalog.add(name, factor)
            self._commit()
        return meter

    def rename_meter(self, meter_id: UUID, new_name: str) -> Meter:
        with self._lock:
            meter = self.catalog.rename(meter_id, new_name, self.events.active())
            self._commit()
        return meter

    def delete_meter(self, meter_id: UUID) -> Meter:
        with self._lock:
            meter = self.catalog.remove(meter_id, self.events.active())
            self._commit()
        return meter

    def reorder_meters(self, ordered_ids: Sequence[UUID]) -> bool:
        with self._lock:
            changed = self.catalog.reorder(ordered_ids)
            if changed:
                self._commit()
        return changed

    # -- lifecycle ---------------------------------------------------------

    def load(self) -> None:
        """Restore the persisted account, filling in defaults where needed."""
        with self._lock:
            stored = self._read_snapshot()
            if stored is not None:
                self.events.replace(stored.events)
                self.catalog.replace(stored.meters)
                self.account.timeline_period = (
                    stored.timeline_period
                    if stored.timeline_period > timedelta()
                    else self.config.default_timeline_period
                )

            if len(self.catalog) == 0:
                self.catalog.replace(self._meter_config.load_defaults())

            self.catalog.enforce_capacity()
            self._reconcile()
            self.save()
            self._emit()
            logger.info(
                "Loaded account with %d meters and %d events.",
                len(self.catalog),
                len(self.events),
            )

    def export_data(self) -> str:
        with self._lock:
            return encode_export(
                self.account,
                self.config.variant,
                exported_at=self.now(),
                language=self._settings.language,
                tutorial_completed=self._settings.tutorial_completed,
            )

    def import_data(self, payload: str) -> None:
        """Replace meters and events wholesale with the contents of an export."""
        data = decode_export(payload)
        if not data.meters:
            raise ValidationError("Import data must contain at least one meter.")

        meters = [meter_from_payload(item) for item in data.meters]
        for position, meter in enumerate(meters):
            meter.name = validate_name(meter.name, self.config.max_name_length)
            meter.factor = self.config.variant.normalize_factor(meter.factor)
            meter.display_order = position
        events = [event_from_payload(item) for item in data.events or []]

        with self._lock:
            self._settings.language = resolve_language(data.language)
            self._settings.tutorial_completed = data.tutorial_completed

            self.catalog.replace(meters[: self.config.max_meters])
            self.events.replace(events)
            self._reconcile()
            self.save()
            self._emit()
            logger.info("Imported %d meters and %d events.", len(self.catalog), len(self.events))

    def reset_data(self) -> None:
        defaults = self._meter_config.load_defaults()
        with self._lock:
            self.events.clear()
            self.catalog.replace(defaults)
            self.account.timeline_period = self.config.default_timeline_period
            self.save()
            self._emit()
            logger.info("Account reset to %d default meters.", len(self.catalog))

    def save(self) -> bool:
        """Persist the current state on the calling thread."""
        with self._lock:
            return self._writer.write_now(self._snapshot())

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self._writer.flush(timeout=timeout)

    def close(self) -> None:
        self._writer.close()

    # -- internals ---------------------------------------------------------

    def _read_snapshot(self) -> Optional[TimeAccount]:
        try:
            raw = self._store.get(self.config.account_key)
        except Exception:
            logger.exception("Failed to read stored account; starting empty.")
            return None
        if not raw:
            return None
        try:
            stored = decode_snapshot(raw)
            for meter in stored.meters:
                meter.factor = self.config.variant.normalize_factor(meter.factor)
        except (FormatError, ValidationError):
            logger.warning("Stored account is unreadable; starting empty.", exc_info=True)
            return None
        return stored

    def _reconcile(self) -> None:
        now = self.now()
        self.events.auto_stop_orphans(self.catalog, now)
        self.events.enforce_single_open(now)

    def _snapshot(self) -> str:
        return encode_snapshot(self.account, self.config.variant)

    def _commit(self) -> None:
        self._emit()
        self._writer.submit(self._snapshot())

    def _emit(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback()
            except Exception:
                logger.exception("State change subscriber failed")

    def _send_notification(self, title: str, body: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(title, body)
        except Exception:
            logger.exception("Notification sink failed for %r", title)
