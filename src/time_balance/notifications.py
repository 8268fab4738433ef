"""In-process notification fan-out with an optional desktop hook."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from .models import CatalogVariant
from .settings import SettingsProvider

logger = logging.getLogger(__name__)

_MESSAGES: dict[CatalogVariant, dict[str, tuple[str, str]]] = {
    CatalogVariant.METER: {
        "started": ("Meter started", "{name} is now running."),
        "stopped": ("Meter stopped", "{name} was stopped."),
    },
    CatalogVariant.ACTIVITY: {
        "started": ("Activity started", "{name} is now being tracked."),
        "stopped": ("Activity stopped", "{name} is no longer being tracked."),
    },
}
_DEVICE_MESSAGES: dict[str, tuple[str, str]] = {
    "connected": ("Device connected", "{name} is connected and ready."),
    "disconnected": ("Device disconnected", "{name} was disconnected."),
}


def event_message(variant: CatalogVariant, kind: str, name: str) -> tuple[str, str]:
    title, body = _MESSAGES[variant][kind]
    return title, body.format(name=name)


def device_message(kind: str, name: str) -> tuple[str, str]:
    title, body = _DEVICE_MESSAGES[kind]
    return title, body.format(name=name)


class NotificationSink(Protocol):
    def notify(self, title: str, body: str) -> None: ...


@dataclass(slots=True, frozen=True)
class ToastMessage:
    title: str
    body: str
    created_at: datetime


class NotificationCenter:
    """Keeps recent toasts and forwards them to listeners.

    When the user enabled system notifications, ``desktop_hook`` is called as
    well. Failures of listeners or the hook are logged and never raised.
    """

    def __init__(
        self,
        settings: Optional[SettingsProvider] = None,
        desktop_hook: Optional[Callable[[str, str], None]] = None,
        history: int = 50,
    ) -> None:
        self._settings = settings
        self._desktop_hook = desktop_hook
        self._toasts: deque[ToastMessage] = deque(maxlen=history)
        self._listeners: list[Callable[[ToastMessage], None]] = []

    @property
    def toasts(self) -> list[ToastMessage]:
        return list(self._toasts)

    def subscribe(self, listener: Callable[[ToastMessage], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def notify(self, title: str, body: str) -> None:
        toast = ToastMessage(title=title, body=body, created_at=datetime.now(timezone.utc))
        self._toasts.append(toast)
        logger.info("%s: %s", title, body)
        for listener in list(self._listeners):
            try:
                listener(toast)
            except Exception:
                logger.exception("Notification listener failed")

        if self._desktop_hook and self._settings and self._settings.browser_notifications_enabled:
            try:
                self._desktop_hook(title, body)
            except Exception:
                logger.exception("Desktop notification failed for %r", title)
