"""Maps events from a face-switching tracking device onto the account."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .catalog import originates_from
from .controller import AccountController
from .notifications import NotificationSink, device_message

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class FaceChange:
    """A raw event emitted by the device (``orientation``, ``connected`` or ``disconnected``)."""

    event_type: str
    face: Optional[int] = None
    raw_hex: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(slots=True, frozen=True)
class DeviceLogEntry:
    at: datetime
    message: str


class DeviceEventRouter:
    """Face ``n`` starts the n-th meter by display order; other faces stop tracking."""

    def __init__(
        self,
        controller: AccountController,
        notifier: Optional[NotificationSink] = None,
        device_name: str = "Tracker",
        history: int = 4,
        comment: str = "Started from tracking device",
    ) -> None:
        self._controller = controller
        self._notifier = notifier
        self.device_name = device_name
        self.comment = comment
        self.is_connected = False
        self._log: deque[DeviceLogEntry] = deque(maxlen=history)

    @property
    def change_log(self) -> list[DeviceLogEntry]:
        """Most recent entries first."""
        return list(self._log)

    def handle(self, change: FaceChange) -> str:
        if change.event_type == "connected":
            self.is_connected = True
            self._record(f"Connected to {self.device_name}", change.timestamp)
            self._notify("connected")
            return "connected"
        if change.event_type == "disconnected":
            self.is_connected = False
            self._record("Device disconnected", change.timestamp)
            self._notify("disconnected")
            return "disconnected"
        if change.event_type == "orientation":
            action = self.apply_face(change.face)
            face_label = f"Face {change.face}" if change.face is not None else "Face ?"
            raw_label = f" ({change.raw_hex})" if change.raw_hex else ""
            suffix = f" -> {action}" if action else ""
            self._record(f"{face_label}{raw_label}{suffix}", change.timestamp)
            return action
        self._record("Received a device event", change.timestamp)
        return ""

    def apply_face(self, face: Optional[int]) -> str:
        target = self._controller.catalog.nth(face) if face is not None and face > 0 else None
        active = self._controller.active_event()
        if target is None:
            if active is not None:
                self._controller.deactivate()
                return "deactivated"
            return ""
        if originates_from(active, target):
            return "already active"
        comment = self.comment if self._controller.config.variant.requires_comment else None
        self._controller.activate(target.id, comment)
        position = self._controller.ordered_meters().index(target) + 1
        return f"activated #{position}"

    def _record(self, message: str, timestamp: Optional[datetime]) -> None:
        self._log.appendleft(DeviceLogEntry(at=timestamp or datetime.now(timezone.utc), message=message))
        logger.debug("Device: %s", message)

    def _notify(self, kind: str) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(*device_message(kind, self.device_name))
        except Exception:
            logger.exception("Device notification failed")
