from __future__ import annotations

import threading

from time_balance.storage import InMemoryKeyValueStore
from time_balance.writer import SnapshotWriter


class GatedStore(InMemoryKeyValueStore):
    """Blocks writes until released so tests can queue several snapshots."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.writes: list[str] = []

    def set(self, key: str, value: str) -> None:
        self.gate.wait(timeout=5)
        self.writes.append(value)
        super().set(key, value)


class FailingStore(InMemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        raise OSError("read-only file system")


def test_write_now_persists_immediately():
    store = InMemoryKeyValueStore()
    writer = SnapshotWriter(store, "account")

    assert writer.write_now("v1") is True
    assert store.get("account") == "v1"
    writer.close()


def test_submit_then_flush():
    store = InMemoryKeyValueStore()
    writer = SnapshotWriter(store, "account")

    writer.submit("v1")
    writer.submit("v2")

    assert writer.flush(timeout=5)
    assert store.get("account") == "v2"
    writer.close()


def test_queued_snapshots_are_coalesced():
    store = GatedStore()
    writer = SnapshotWriter(store, "account")

    writer.submit("v1")
    for version in ("v2", "v3", "v4"):
        writer.submit(version)
    store.gate.set()

    assert writer.flush(timeout=5)
    assert store.get("account") == "v4"
    assert len(store.writes) <= 2
    writer.close()


def test_older_submission_never_overwrites_write_now():
    store = InMemoryKeyValueStore()
    writer = SnapshotWriter(store, "account")

    writer.submit("queued")
    writer.write_now("latest")

    assert writer.flush(timeout=5)
    assert store.get("account") == "latest"
    writer.close()


def test_failed_write_is_reported_and_dropped():
    writer = SnapshotWriter(FailingStore(), "account")

    assert writer.write_now("v1") is False
    writer.submit("v2")
    assert writer.flush(timeout=5)
    writer.close()


def test_submit_after_close_writes_synchronously():
    store = InMemoryKeyValueStore()
    writer = SnapshotWriter(store, "account")
    writer.close()

    writer.submit("late")

    assert store.get("account") == "late"
