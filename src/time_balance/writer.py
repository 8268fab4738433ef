"""Background writer that persists account snapshots off the caller's thread."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class SnapshotWriter:
    """Coalesces submitted snapshots and writes the newest one in a daemon thread.

    Every submission gets a sequence number and a write never replaces a
    newer one. Failed writes are logged and dropped; the next submission
    retries with fresh state.
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self._key = key
        self._condition = threading.Condition()
        self._io_lock = threading.Lock()
        self._pending: Optional[tuple[int, str]] = None
        self._submitted = 0
        self._completed = 0
        self._written = 0
        self._closed = False
        self._thread: Optional[threading.Thread] = None

    def submit(self, payload: str) -> None:
        with self._condition:
            self._submitted += 1
            sequence = self._submitted
            if not self._closed:
                self._pending = (sequence, payload)
                self._ensure_thread()
                self._condition.notify_all()
                return
        logger.warning("Snapshot writer is closed; writing %s synchronously.", self._key)
        self._write(sequence, payload)
        self._mark_completed(sequence)

    def write_now(self, payload: str) -> bool:
        """Persist ``payload`` on the calling thread, superseding queued writes."""
        with self._condition:
            self._submitted += 1
            sequence = self._submitted
            self._pending = None
        ok = self._write(sequence, payload)
        self._mark_completed(sequence)
        return ok

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until every submitted snapshot has been handled."""
        with self._condition:
            return self._condition.wait_for(
                lambda: self._completed >= self._submitted, timeout=timeout
            )

    def close(self, timeout: Optional[float] = 10.0) -> None:
        self.flush(timeout=timeout)
        with self._condition:
            self._closed = True
            self._condition.notify_all()
            thread = self._thread
            self._thread = None
        if thread:
            thread.join(timeout=timeout)

    def _ensure_thread(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run, name=f"snapshot-writer:{self._key}", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._pending is not None or self._closed)
                if self._pending is None:
                    return
                sequence, payload = self._pending
                self._pending = None
            self._write(sequence, payload)
            self._mark_completed(sequence)

    def _mark_completed(self, sequence: int) -> None:
        with self._condition:
            self._completed = max(self._completed, sequence)
            self._condition.notify_all()

    def _write(self, sequence: int, payload: str) -> bool:
        with self._io_lock:
            if sequence <= self._written:
                return True
            try:
                self._store.set(self._key, payload)
            except Exception:
                logger.exception("Failed to persist snapshot under %s", self._key)
                return False
            self._written = sequence
        logger.debug("Persisted snapshot under %s (%d bytes)", self._key, len(payload))
        return True
