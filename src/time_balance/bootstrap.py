"""Wiring of the account controller and its collaborators."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import AccountSettings
from .controller import AccountController, Clock
from .device import DeviceEventRouter
from .meter_config import JsonMeterConfiguration
from .models import CatalogVariant
from .notifications import NotificationCenter
from .paths import get_db_path, get_defaults_override_path, get_sync_dir
from .settings import SettingsService
from .storage import KeyValueStore, SqliteKeyValueStore
from .sync import AutoSyncService, FolderSyncProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AppServices:
    config: AccountSettings
    store: KeyValueStore
    settings: SettingsService
    notifications: NotificationCenter
    controller: AccountController
    sync: AutoSyncService
    device: DeviceEventRouter

    def close(self) -> None:
        self.sync.close()
        self.controller.close()


def create_services(
    *,
    db_path: Optional[Path] = None,
    variant: str | CatalogVariant = CatalogVariant.METER,
    store: Optional[KeyValueStore] = None,
    sync_dir: Optional[Path] = None,
    clock: Optional[Clock] = None,
    load: bool = True,
) -> AppServices:
    """Build every service around one store and optionally load the account."""
    config = AccountSettings.for_variant(variant)
    resolved_store = store or SqliteKeyValueStore(db_path or get_db_path())
    settings = SettingsService(resolved_store, key=config.settings_key)
    notifications = NotificationCenter(settings=settings)
    meter_config = JsonMeterConfiguration(
        config.variant, override_path=get_defaults_override_path(config.variant.value)
    )
    controller = AccountController(
        resolved_store,
        meter_config,
        settings,
        notifications,
        config=config,
        clock=clock,
    )
    sync = AutoSyncService(
        controller,
        resolved_store,
        [FolderSyncProvider(sync_dir or get_sync_dir())],
        config=config,
    )
    device = DeviceEventRouter(controller, notifications)

    if load:
        settings.load()
        controller.load()
        sync.enable_saved()
    logger.debug("Services ready for the %s account", config.variant.value)
    return AppServices(
        config=config,
        store=resolved_store,
        settings=settings,
        notifications=notifications,
        controller=controller,
        sync=sync,
        device=device,
    )
