"""User preferences persisted next to the account snapshot."""

from __future__ import annotations

import json
import logging
from typing import Callable, Optional, Protocol

from .storage import KeyValueStore

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"


class SettingsProvider(Protocol):
    language: str
    tutorial_completed: bool
    browser_notifications_enabled: bool


class SettingsService:
    """Holds language and onboarding flags; every change is saved immediately."""

    def __init__(self, store: KeyValueStore, key: str = "budgetr_settings") -> None:
        self._store = store
        self._key = key
        self._language = DEFAULT_LANGUAGE
        self._tutorial_completed = False
        self._browser_notifications_enabled = False
        self._listeners: list[Callable[[], None]] = []

    @property
    def language(self) -> str:
        return self._language

    @language.setter
    def language(self, value: str) -> None:
        self._update("_language", value or DEFAULT_LANGUAGE)

    @property
    def tutorial_completed(self) -> bool:
        return self._tutorial_completed

    @tutorial_completed.setter
    def tutorial_completed(self, value: bool) -> None:
        self._update("_tutorial_completed", bool(value))

    @property
    def browser_notifications_enabled(self) -> bool:
        return self._browser_notifications_enabled

    @browser_notifications_enabled.setter
    def browser_notifications_enabled(self, value: bool) -> None:
        self._update("_browser_notifications_enabled", bool(value))

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def load(self) -> None:
        raw = self._store.get(self._key)
        if raw:
            try:
                data = json.loads(raw)
                self._language = data.get("language") or DEFAULT_LANGUAGE
                self._tutorial_completed = bool(data.get("tutorialCompleted", False))
                self._browser_notifications_enabled = bool(
                    data.get("browserNotificationsEnabled", False)
                )
            except (json.JSONDecodeError, AttributeError, TypeError):
                logger.warning("Stored settings are unreadable; using defaults.", exc_info=True)
                self._language = DEFAULT_LANGUAGE
                self._tutorial_completed = False
                self._browser_notifications_enabled = False
        self._emit()

    def save(self) -> None:
        payload = json.dumps(
            {
                "language": self._language,
                "tutorialCompleted": self._tutorial_completed,
                "browserNotificationsEnabled": self._browser_notifications_enabled,
            }
        )
        try:
            self._store.set(self._key, payload)
        except Exception:
            logger.exception("Failed to persist settings under %s", self._key)

    def _update(self, attribute: str, value: object) -> None:
        if getattr(self, attribute) == value:
            return
        setattr(self, attribute, value)
        self._emit()
        self.save()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Settings listener failed")


def resolve_language(value: Optional[str]) -> str:
    return value or DEFAULT_LANGUAGE
