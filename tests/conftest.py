from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from time_balance import paths
from time_balance.config import AccountSettings
from time_balance.controller import AccountController
from time_balance.models import CatalogVariant, Meter
from time_balance.notifications import NotificationCenter
from time_balance.settings import SettingsService
from time_balance.storage import InMemoryKeyValueStore

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class StubMeterConfiguration:
    """Returns fresh copies of a fixed catalog and counts calls."""

    def __init__(self, entries=None) -> None:
        self.entries = entries or [("Work", 1.0), ("Break", -1.0), ("Overtime", 1.5)]
        self.calls = 0

    def load_defaults(self) -> list[Meter]:
        self.calls += 1
        return [
            Meter(name=name, factor=factor, display_order=position)
            for position, (name, factor) in enumerate(self.entries)
        ]


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    monkeypatch.setattr(paths, "get_data_dir", lambda: data_dir)
    return data_dir


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def meter_config() -> StubMeterConfiguration:
    return StubMeterConfiguration()


@pytest.fixture
def settings(store) -> SettingsService:
    return SettingsService(store)


@pytest.fixture
def notifications(settings) -> NotificationCenter:
    return NotificationCenter(settings=settings)


def build_controller(
    store,
    meter_config,
    settings,
    clock,
    notifier=None,
    variant: CatalogVariant = CatalogVariant.METER,
) -> AccountController:
    return AccountController(
        store,
        meter_config,
        settings,
        notifier,
        config=AccountSettings.for_variant(variant),
        clock=clock,
    )


@pytest.fixture
def controller(store, meter_config, settings, clock, notifications):
    ctrl = build_controller(store, meter_config, settings, clock, notifications)
    ctrl.load()
    yield ctrl
    ctrl.close()


def meter_named(controller: AccountController, name: str) -> Meter:
    return next(meter for meter in controller.ordered_meters() if meter.name == name)
