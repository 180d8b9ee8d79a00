"""Bounded, at-least-once audit pipeline.

Normal entries are buffered in memory and persisted by a background consumer
thread. When the buffer is full the oldest non-PHI entry is dropped; PHI
entries are never dropped and instead block the producer for a bounded time,
after which the enqueue fails with ``AuditWriteFailure``. Emergency entries
bypass the buffer through ``write_sync``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Deque, Optional, Protocol

from clinic_access.core.database import SessionFactory, session_scope
from clinic_access.core.errors import AuditWriteFailure
from clinic_access.models.audit_log import AuditLog
from clinic_access.schemas.audit import AuditEntry
from clinic_access.services.audit import AuditService

LOGGER = logging.getLogger("clinic_access.audit.pipeline")

_MAX_BACKOFF_SECONDS = 5.0


class AuditWriter(Protocol):
    """Durably persists one entry; must be idempotent on ``idempotency_key``."""

    def write(self, entry: AuditEntry) -> int:
        ...


class DatabaseAuditWriter(AuditWriter):
    """Writes each entry in its own transaction through ``AuditService``."""

    def __init__(self, session_factory: SessionFactory = session_scope, *, source: str = "clinic-access-core") -> None:
        self._session_factory = session_factory
        self._source = source

    def write(self, entry: AuditEntry) -> int:
        with self._session_factory() as session:
            record: AuditLog = AuditService(session, source=self._source).record_event(entry)
            return record.id


def is_protected(entry: AuditEntry) -> bool:
    """PHI and emergency entries may never be dropped."""

    return entry.is_phi_access or entry.is_emergency_access


class AuditPipeline:
    def __init__(
        self,
        writer: AuditWriter,
        *,
        capacity: int = 10000,
        phi_enqueue_timeout_ms: int = 250,
        persist_attempts: int = 5,
        retry_backoff_ms: int = 50,
        sync_workers: int = 4,
    ) -> None:
        self._writer = writer
        self._capacity = capacity
        self._phi_timeout = phi_enqueue_timeout_ms / 1000
        self._persist_attempts = persist_attempts
        self._backoff = retry_backoff_ms / 1000
        self._buffer: Deque[AuditEntry] = deque()
        self._condition = threading.Condition()
        self._in_flight = 0
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self._executor = ThreadPoolExecutor(max_workers=sync_workers, thread_name_prefix="audit-sync")
        self.dropped = 0
        self.persisted = 0

    # Producer side

    def enqueue(self, entry: AuditEntry) -> None:
        """Buffer ``entry`` without blocking, except for PHI entries on a full buffer."""

        with self._condition:
            if len(self._buffer) >= self._capacity and not self._evict_oldest_unprotected():
                if not is_protected(entry):
                    self._record_drop(entry)
                    return
                self._wait_for_capacity(entry)
            self._buffer.append(entry)
            self._condition.notify_all()

    def write_sync(self, entry: AuditEntry, *, timeout_ms: int) -> int:
        """Persist ``entry`` before returning; raises ``AuditWriteFailure`` on error or timeout.

        A write that times out may still complete later; it is idempotent on
        its key, so a retry cannot double-count it.
        """

        future = self._executor.submit(self._writer.write, entry)
        try:
            return future.result(timeout=timeout_ms / 1000)
        except FutureTimeoutError as exc:
            LOGGER.error(
                "audit_sync_write_timeout",
                extra={"idempotency_key": entry.idempotency_key, "timeout_ms": timeout_ms},
            )
            raise AuditWriteFailure("Audit write did not complete in time") from exc
        except Exception as exc:
            LOGGER.error(
                "audit_sync_write_failed",
                extra={"idempotency_key": entry.idempotency_key, "error": str(exc)},
            )
            raise AuditWriteFailure("Audit write failed") from exc

    def _evict_oldest_unprotected(self) -> bool:
        for index, queued in enumerate(self._buffer):
            if not is_protected(queued):
                del self._buffer[index]
                self._record_drop(queued)
                return True
        return False

    def _wait_for_capacity(self, entry: AuditEntry) -> None:
        deadline = time.monotonic() + self._phi_timeout
        while len(self._buffer) >= self._capacity:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LOGGER.error(
                    "audit_buffer_full",
                    extra={"idempotency_key": entry.idempotency_key, "capacity": self._capacity},
                )
                raise AuditWriteFailure("Audit buffer is full")
            self._condition.wait(remaining)

    def _record_drop(self, entry: AuditEntry) -> None:
        self.dropped += 1
        LOGGER.warning(
            "audit_entry_dropped",
            extra={"idempotency_key": entry.idempotency_key, "event_type": entry.event_type},
        )

    # Consumer side

    def start(self) -> None:
        with self._condition:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name="audit-consumer", daemon=True)
        self._thread.start()
        LOGGER.info("audit_consumer_started")

    def stop(self, timeout: float = 5.0) -> None:
        """Drain what can be drained within ``timeout`` and stop the consumer."""

        self.drain(timeout=timeout)
        with self._condition:
            self._stopping = True
            self._condition.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._executor.shutdown(wait=False)
        LOGGER.info("audit_consumer_stopped", extra={"pending": self.pending})

    @property
    def pending(self) -> int:
        with self._condition:
            return len(self._buffer) + self._in_flight

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def drain(self, timeout: float = 5.0) -> bool:
        """Block until every buffered entry is persisted; returns False on timeout.

        Without a running consumer the entries are persisted on the calling thread.
        """

        deadline = time.monotonic() + timeout
        if not self.running:
            while time.monotonic() < deadline:
                entry = self._take(block=False)
                if entry is None:
                    return True
                if not self._settle(entry):
                    return False
            return self.pending == 0

        with self._condition:
            while self._buffer or self._in_flight:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(remaining)
        return True

    def _run(self) -> None:
        while True:
            entry = self._take(block=True)
            if entry is None:
                return
            if not self._settle(entry):
                time.sleep(min(self._backoff * (2 ** self._persist_attempts), _MAX_BACKOFF_SECONDS))

    def _take(self, *, block: bool) -> Optional[AuditEntry]:
        with self._condition:
            while block and not self._buffer and not self._stopping:
                self._condition.wait()
            if not self._buffer:
                return None
            entry = self._buffer.popleft()
            self._in_flight += 1
            self._condition.notify_all()
            return entry

    def _settle(self, entry: AuditEntry) -> bool:
        persisted = self._persist(entry)
        with self._condition:
            self._in_flight -= 1
            if persisted:
                self.persisted += 1
            else:
                self._buffer.appendleft(entry)
            self._condition.notify_all()
        return persisted

    def _persist(self, entry: AuditEntry) -> bool:
        for attempt in range(1, self._persist_attempts + 1):
            try:
                self._writer.write(entry)
                return True
            except Exception as exc:  # noqa: BLE001 - retried, then requeued
                LOGGER.warning(
                    "audit_persist_retry",
                    extra={
                        "idempotency_key": entry.idempotency_key,
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )
                if attempt < self._persist_attempts:
                    time.sleep(min(self._backoff * (2 ** (attempt - 1)), _MAX_BACKOFF_SECONDS))
        LOGGER.error("audit_persist_failed", extra={"idempotency_key": entry.idempotency_key})
        return False
