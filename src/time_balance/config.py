"""Configuration models and helpers for the time balance account."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from .models import DEFAULT_TIMELINE_PERIOD, CatalogVariant


@dataclass(slots=True)
class AccountSettings:
    """Runtime limits and timings for one account."""

    variant: CatalogVariant = CatalogVariant.METER
    max_meters: int = 8
    max_name_length: int = 40
    max_comment_length: int = 250
    default_timeline_period: timedelta = DEFAULT_TIMELINE_PERIOD
    sync_debounce: timedelta = timedelta(seconds=1)
    sync_poll_interval: timedelta = timedelta(seconds=30)

    @classmethod
    def for_variant(cls, variant: str | CatalogVariant) -> "AccountSettings":
        return cls(variant=CatalogVariant(variant))

    @property
    def account_key(self) -> str:
        return f"{self.variant.storage_prefix}_account"

    @property
    def settings_key(self) -> str:
        return f"{self.variant.storage_prefix}_settings"

    @property
    def autosync_provider_key(self) -> str:
        return f"{self.variant.storage_prefix}_autosync_provider"

    @property
    def autosync_last_sync_prefix(self) -> str:
        return f"{self.variant.storage_prefix}_autosync_lastsync_"
