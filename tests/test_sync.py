from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from conftest import meter_named
from time_balance.config import AccountSettings
from time_balance.errors import NotFoundError, StateError
from time_balance.sync import AutoSyncService, FolderSyncProvider, SyncStatus

REMOTE_EXPORT = json.dumps(
    {
        "language": "es",
        "tutorialCompleted": True,
        "meters": [{"id": str(uuid4()), "name": "Remote", "factor": 2.0, "displayOrder": 0}],
        "events": [],
    }
)


class MemoryProvider:
    def __init__(self, name: str = "Memory") -> None:
        self.name = name
        self.authenticated = True
        self.content = None
        self.modified = None
        self.uploads: list[str] = []
        self.fail_uploads = False

    def is_authenticated(self) -> bool:
        return self.authenticated

    def download(self):
        return self.content

    def upload(self, data: str) -> None:
        if self.fail_uploads:
            raise ConnectionError("offline")
        self.uploads.append(data)
        self.content = data
        self.modified = datetime.now(timezone.utc)

    def last_modified_time(self):
        return self.modified


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def provider() -> MemoryProvider:
    return MemoryProvider()


@pytest.fixture
def make_service(controller, store, provider):
    services = []

    def _make(debounce: float = 60.0, providers=None) -> AutoSyncService:
        config = AccountSettings(sync_debounce=timedelta(seconds=debounce))
        service = AutoSyncService(controller, store, providers or [provider], config=config)
        services.append(service)
        return service

    yield _make
    for service in services:
        service.close()


def test_enable_unknown_provider(make_service):
    with pytest.raises(NotFoundError):
        make_service().enable("Dropbox")


def test_enable_requires_sign_in(make_service, provider):
    provider.authenticated = False

    with pytest.raises(StateError):
        make_service().enable("Memory", start_polling=False)


def test_sync_now_uploads_export(make_service, provider, store):
    service = make_service()
    statuses = []
    service.subscribe_status(statuses.append)
    service.enable("Memory", start_polling=False)

    service.sync_now()

    assert service.status is SyncStatus.SUCCESS
    assert statuses[-2:] == [SyncStatus.SYNCING, SyncStatus.SUCCESS]
    assert len(provider.uploads) == 1
    assert "meters" in json.loads(provider.uploads[0])
    assert store.get("budgetr_autosync_provider") == "Memory"
    assert store.get("budgetr_autosync_lastsync_Memory") == service.last_sync_time.isoformat()


def test_sync_now_is_a_no_op_when_disabled(make_service, provider):
    make_service().sync_now()

    assert provider.uploads == []


def test_failed_upload_sets_status(make_service, provider):
    service = make_service()
    service.enable("Memory", start_polling=False)
    provider.fail_uploads = True

    service.sync_now()

    assert service.status is SyncStatus.FAILED
    assert service.is_enabled


def test_signed_out_provider_is_disabled(make_service, provider, store):
    service = make_service()
    service.enable("Memory", start_polling=False)
    provider.authenticated = False

    service.sync_now()

    assert service.status is SyncStatus.FAILED
    assert not service.is_enabled
    assert store.get("budgetr_autosync_provider") == ""


def test_local_changes_are_uploaded_after_debounce(make_service, provider, controller):
    service = make_service(debounce=0.3)
    service.enable("Memory", start_polling=False)

    controller.add_meter("Reading")
    controller.add_meter("Writing")

    assert _wait_for(lambda: len(provider.uploads) >= 1)
    time.sleep(0.5)
    assert len(provider.uploads) == 1
    names = [meter["name"] for meter in json.loads(provider.uploads[-1])["meters"]]
    assert "Writing" in names


def test_newer_remote_copy_is_restored(make_service, provider, controller, settings):
    service = make_service(debounce=0.05)
    service.enable("Memory", start_polling=False)
    provider.content = REMOTE_EXPORT
    provider.modified = datetime.now(timezone.utc)

    assert service.check_for_remote_changes() is True

    assert [meter.name for meter in controller.ordered_meters()] == ["Remote"]
    assert settings.language == "es"
    assert service.status is SyncStatus.SUCCESS
    assert not service.is_restoring
    time.sleep(0.2)
    assert provider.uploads == []


def test_empty_remote_copy_leaves_account_alone(make_service, provider, controller):
    before = [meter.name for meter in controller.ordered_meters()]
    service = make_service()
    service.enable("Memory", start_polling=False)
    provider.content = ""
    provider.modified = datetime.now(timezone.utc)

    assert service.check_for_remote_changes() is False

    assert service.status is SyncStatus.IDLE
    assert not service.is_restoring
    assert [meter.name for meter in controller.ordered_meters()] == before


def test_remote_within_tolerance_is_ignored(make_service, provider, controller):
    service = make_service()
    service.enable("Memory", start_polling=False)
    service.sync_now()
    provider.content = REMOTE_EXPORT
    provider.modified += timedelta(milliseconds=500)

    assert service.check_for_remote_changes() is False
    assert meter_named(controller, "Work") is not None


def test_enable_saved_and_disable(controller, store, tmp_path):
    folder = tmp_path / "cloud"
    folder.mkdir()
    store.set("budgetr_autosync_provider", "Folder")
    service = AutoSyncService(controller, store, [FolderSyncProvider(folder)])

    try:
        assert service.enable_saved() is True
        assert service.active_provider_name == "Folder"

        service.disable()
        assert not service.is_enabled
        assert store.get("budgetr_autosync_provider") == ""
        assert service.enable_saved() is False
    finally:
        service.close()


def test_folder_provider_round_trip(tmp_path):
    folder = tmp_path / "cloud"
    provider = FolderSyncProvider(folder)
    assert not provider.is_authenticated()

    folder.mkdir()
    assert provider.download() is None
    assert provider.last_modified_time() is None

    provider.upload('{"meters": []}')

    assert provider.download() == '{"meters": []}'
    assert provider.last_modified_time() is not None
    assert [path.name for path in folder.iterdir()] == ["time-balance-backup.json"]
