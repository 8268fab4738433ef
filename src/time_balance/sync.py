"""Best-effort backup of the account to a pluggable remote provider.

Uploads are debounced after local changes; a polling thread restores the
account when the remote copy becomes newer than the last one seen. Neither
path is part of the account's correctness: failures are logged and only
reflected in :attr:`AutoSyncService.status`.
"""

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional, Protocol

from .config import AccountSettings
from .controller import AccountController
from .errors import NotFoundError, StateError
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

_REMOTE_CLOCK_TOLERANCE = timedelta(seconds=1)


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    FAILED = "failed"


class SyncProvider(Protocol):
    name: str

    def is_authenticated(self) -> bool: ...

    def download(self) -> Optional[str]: ...

    def upload(self, data: str) -> None: ...

    def last_modified_time(self) -> Optional[datetime]: ...


class FolderSyncProvider:
    """Keeps the export file in a directory, e.g. one mirrored by a cloud client."""

    def __init__(
        self,
        directory: Path,
        *,
        name: str = "Folder",
        filename: str = "time-balance-backup.json",
    ) -> None:
        self.name = name
        self.directory = Path(directory)
        self.path = self.directory / filename

    def is_authenticated(self) -> bool:
        return self.directory.is_dir()

    def download(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def upload(self, data: str) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(data, encoding="utf-8")
        os.replace(tmp_path, self.path)

    def last_modified_time(self) -> Optional[datetime]:
        if not self.path.exists():
            return None
        return datetime.fromtimestamp(self.path.stat().st_mtime, tz=timezone.utc)


class AutoSyncService:
    def __init__(
        self,
        controller: AccountController,
        store: KeyValueStore,
        providers: Iterable[SyncProvider],
        config: Optional[AccountSettings] = None,
    ) -> None:
        self._controller = controller
        self._store = store
        self._providers = {provider.name: provider for provider in providers}
        self.config = config or controller.config
        self._lock = threading.Lock()
        self._debounce_timer: Optional[threading.Timer] = None
        self._poll_thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._active: Optional[SyncProvider] = None
        self._restoring = False
        self._last_sync_time: Optional[datetime] = None
        self._last_known_remote_time: Optional[datetime] = None
        self._status = SyncStatus.IDLE
        self._status_listeners: list[Callable[[SyncStatus], None]] = []
        self._unsubscribe = controller.subscribe(self._on_data_changed)

    @property
    def is_enabled(self) -> bool:
        return self._active is not None

    @property
    def active_provider_name(self) -> Optional[str]:
        return self._active.name if self._active else None

    @property
    def last_sync_time(self) -> Optional[datetime]:
        return self._last_sync_time

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_restoring(self) -> bool:
        return self._restoring

    def subscribe_status(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        self._status_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return _unsubscribe

    def enable(self, provider_name: str, *, start_polling: bool = True) -> None:
        if self._active is not None and self._active.name != provider_name:
            self.disable()
        if self._active is not None:
            return

        provider = self._providers.get(provider_name)
        if provider is None:
            raise NotFoundError(f"Sync provider '{provider_name}' not found.")
        if not provider.is_authenticated():
            raise StateError(f"Please sign in to {provider_name} first.")

        self._active = provider
        self._store.set(self.config.autosync_provider_key, provider_name)
        self._last_sync_time = self._load_last_sync_time(provider_name)
        if self._last_sync_time is not None:
            self._last_known_remote_time = self._last_sync_time
        else:
            self._last_known_remote_time = provider.last_modified_time()

        if start_polling:
            self._start_polling()
        logger.info("Auto-sync enabled with provider %s", provider_name)
        self._update_status(SyncStatus.IDLE)

    def enable_saved(self) -> bool:
        """Re-enable the provider remembered from a previous run, if any."""
        provider_name = self._store.get(self.config.autosync_provider_key)
        if not provider_name:
            return False
        try:
            self.enable(provider_name)
        except (NotFoundError, StateError):
            logger.warning("Could not re-enable auto-sync with %s", provider_name, exc_info=True)
            return False
        return True

    def disable(self) -> None:
        if self._active is None:
            return
        self._active = None
        self._store.set(self.config.autosync_provider_key, "")
        self._cancel_debounce()
        self._stop_polling()
        logger.info("Auto-sync disabled.")
        self._update_status(SyncStatus.IDLE)

    def close(self) -> None:
        self._cancel_debounce()
        self._stop_polling()
        self._unsubscribe()

    def sync_now(self) -> None:
        provider = self._active
        if provider is None or self._restoring:
            return
        try:
            self._update_status(SyncStatus.SYNCING)
            if not provider.is_authenticated():
                logger.warning("Auto-sync: not signed in to %s, disabling.", provider.name)
                self.disable()
                self._update_status(SyncStatus.FAILED)
                return

            provider.upload(self._controller.export_data())
            self._last_sync_time = datetime.now(timezone.utc)
            modified = provider.last_modified_time()
            if modified is not None:
                self._last_known_remote_time = modified
            self._store_last_sync_time(provider.name)
            self._update_status(SyncStatus.SUCCESS)
            logger.info("Auto-sync (%s): backup completed.", provider.name)
        except Exception:
            logger.exception("Auto-sync (%s) failed", provider.name)
            self._update_status(SyncStatus.FAILED)

    def check_for_remote_changes(self) -> bool:
        """Restore from the provider when its copy is newer; returns True on restore."""
        provider = self._active
        if provider is None or self._restoring:
            return False
        try:
            if not provider.is_authenticated():
                return False
            remote_modified = provider.last_modified_time()
        except Exception:
            logger.exception("Auto-sync (%s) polling failed", provider.name)
            return False

        known = self._last_known_remote_time
        if remote_modified is None:
            return False
        if known is not None and remote_modified <= known + _REMOTE_CLOCK_TOLERANCE:
            return False
        logger.info(
            "Auto-sync (%s): remote change detected (local %s, remote %s)",
            provider.name,
            known,
            remote_modified,
        )
        return self._restore(provider, remote_modified)

    def _restore(self, provider: SyncProvider, remote_modified: datetime) -> bool:
        self._restoring = True
        try:
            self._update_status(SyncStatus.SYNCING)
            content = provider.download()
            if not content:
                logger.warning("Auto-sync (%s): remote copy is empty.", provider.name)
                self._update_status(SyncStatus.IDLE)
                return False
            self._controller.import_data(content)
            self._last_known_remote_time = remote_modified
            self._last_sync_time = datetime.now(timezone.utc)
            self._store_last_sync_time(provider.name)
            self._update_status(SyncStatus.SUCCESS)
            logger.info("Auto-sync (%s): data restored.", provider.name)
            return True
        except Exception:
            logger.exception("Auto-sync (%s) restore failed", provider.name)
            self._update_status(SyncStatus.FAILED)
            return False
        finally:
            self._restoring = False

    def _on_data_changed(self) -> None:
        if self._active is None or self._restoring:
            return
        with self._lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
            timer = threading.Timer(self.config.sync_debounce.total_seconds(), self.sync_now)
            timer.daemon = True
            self._debounce_timer = timer
            timer.start()

    def _cancel_debounce(self) -> None:
        with self._lock:
            if self._debounce_timer is not None:
                self._debounce_timer.cancel()
                self._debounce_timer = None

    def _start_polling(self) -> None:
        stop_event = threading.Event()
        thread = threading.Thread(target=self._poll_loop, args=(stop_event,), daemon=True)
        self._stop_event = stop_event
        self._poll_thread = thread
        thread.start()

    def _stop_polling(self) -> None:
        stop_event, thread = self._stop_event, self._poll_thread
        self._stop_event = None
        self._poll_thread = None
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=10)

    def _poll_loop(self, stop_event: threading.Event) -> None:
        interval = self.config.sync_poll_interval.total_seconds()
        # Sleep in an interruptible manner.
        while not stop_event.wait(interval):
            self.check_for_remote_changes()

    def _load_last_sync_time(self, provider_name: str) -> Optional[datetime]:
        raw = self._store.get(self.config.autosync_last_sync_prefix + provider_name)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unreadable last sync time %r", raw)
            return None

    def _store_last_sync_time(self, provider_name: str) -> None:
        if self._last_sync_time is None:
            return
        self._store.set(
            self.config.autosync_last_sync_prefix + provider_name,
            self._last_sync_time.isoformat(),
        )

    def _update_status(self, status: SyncStatus) -> None:
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Sync status listener failed")
