from __future__ import annotations

import threading
from typing import Callable, List, Optional

import pytest
from sqlalchemy import func, select

from clinic_access.audit.pipeline import AuditPipeline, DatabaseAuditWriter
from clinic_access.core.database import session_scope
from clinic_access.core.errors import AuditWriteFailure
from clinic_access.engine import AccessControlEngine
from clinic_access.models.audit_log import AuditLog
from clinic_access.models.retention_policy import AuditRetentionPolicy
from clinic_access.schemas.audit import AuditEntry
from clinic_access.services.audit import AuditService


class RecordingWriter:
    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0
        self.written: List[str] = []

    def write(self, entry: AuditEntry) -> int:
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise RuntimeError("transient")
        if entry.idempotency_key not in self.written:
            self.written.append(entry.idempotency_key)
        return self.written.index(entry.idempotency_key) + 1


def _entry(key: str, *, phi: bool = False, correlation_id: Optional[str] = None) -> AuditEntry:
    return AuditEntry(
        idempotency_key=key,
        event_type="ACCESS_GRANTED",
        event_category="PHI_ACCESS" if phi else "AUTHORIZATION",
        action="VIEW",
        resource_type="MEDICAL_RECORD" if phi else "APPOINTMENT",
        user_id="user-1",
        is_phi_access=phi,
        correlation_id=correlation_id or key,
    )


def _pipeline(writer: RecordingWriter, **kwargs) -> AuditPipeline:  # noqa: ANN003
    options = {"capacity": 2, "phi_enqueue_timeout_ms": 20, "persist_attempts": 3, "retry_backoff_ms": 0}
    options.update(kwargs)
    return AuditPipeline(writer, **options)


def test_full_buffer_drops_oldest_non_phi_entry() -> None:
    writer = RecordingWriter()
    pipeline = _pipeline(writer)

    for key in ("n1", "n2", "n3"):
        pipeline.enqueue(_entry(key))

    assert pipeline.dropped == 1
    assert pipeline.pending == 2
    assert pipeline.drain()
    assert writer.written == ["n2", "n3"]


def test_phi_entry_evicts_non_phi_before_blocking() -> None:
    writer = RecordingWriter()
    pipeline = _pipeline(writer)
    pipeline.enqueue(_entry("p1", phi=True))
    pipeline.enqueue(_entry("n1"))

    pipeline.enqueue(_entry("p2", phi=True))

    assert pipeline.dropped == 1
    assert pipeline.drain()
    assert writer.written == ["p1", "p2"]


def test_phi_entry_on_buffer_full_of_phi_fails_after_timeout() -> None:
    pipeline = _pipeline(RecordingWriter())
    pipeline.enqueue(_entry("p1", phi=True))
    pipeline.enqueue(_entry("p2", phi=True))

    with pytest.raises(AuditWriteFailure):
        pipeline.enqueue(_entry("p3", phi=True))

    pipeline.enqueue(_entry("n1"))
    assert pipeline.dropped == 1
    assert pipeline.pending == 2


def test_blocked_phi_producer_proceeds_once_space_frees() -> None:
    writer = RecordingWriter()
    pipeline = _pipeline(writer, capacity=1, phi_enqueue_timeout_ms=5000)
    pipeline.enqueue(_entry("p1", phi=True))
    errors: List[Exception] = []

    def produce() -> None:
        try:
            pipeline.enqueue(_entry("p2", phi=True))
        except AuditWriteFailure as exc:
            errors.append(exc)

    producer = threading.Thread(target=produce)
    producer.start()
    pipeline.start()
    producer.join(timeout=5)
    assert pipeline.drain(timeout=5)
    pipeline.stop(timeout=1)

    assert not producer.is_alive()
    assert errors == []
    assert writer.written == ["p1", "p2"]


def test_transient_failures_are_retried() -> None:
    writer = RecordingWriter(failures=2)
    pipeline = _pipeline(writer)
    pipeline.enqueue(_entry("n1"))

    assert pipeline.drain()
    assert writer.calls == 3
    assert pipeline.persisted == 1


def test_exhausted_retries_requeue_entry_at_front() -> None:
    writer = RecordingWriter(failures=3)
    pipeline = _pipeline(writer)
    pipeline.enqueue(_entry("n1"))
    pipeline.enqueue(_entry("n2"))

    assert not pipeline.drain()
    assert pipeline.pending == 2

    assert pipeline.drain()
    assert writer.written == ["n1", "n2"]


def test_consumer_thread_persists_in_order() -> None:
    writer = RecordingWriter()
    pipeline = _pipeline(writer, capacity=100)
    pipeline.start()
    for index in range(10):
        pipeline.enqueue(_entry(f"n{index}"))

    assert pipeline.drain(timeout=5)
    pipeline.stop(timeout=1)

    assert not pipeline.running
    assert writer.written == [f"n{index}" for index in range(10)]


def test_write_sync_raises_on_writer_error() -> None:
    pipeline = _pipeline(RecordingWriter(failures=1))

    with pytest.raises(AuditWriteFailure):
        pipeline.write_sync(_entry("e1", phi=True), timeout_ms=1000)
    assert pipeline.write_sync(_entry("e1", phi=True), timeout_ms=1000) == 1


def test_database_writer_is_idempotent_on_key() -> None:
    writer = DatabaseAuditWriter()
    entry = _entry("corr-1:0", phi=True, correlation_id="corr-1")

    first = writer.write(entry)
    second = writer.write(entry)

    assert first == second
    with session_scope() as session:
        assert session.scalar(select(func.count()).select_from(AuditLog)) == 1
        stored = session.get(AuditLog, first)
        assert stored.is_phi_access
        assert len(stored.integrity_hash) == 64


def test_checks_sharing_a_correlation_id_are_each_recorded(
    access_engine: AccessControlEngine, assign: Callable[..., None]
) -> None:
    assign("nurse-1", ["NURSE"])

    results = [
        access_engine.access.check_access(
            "nurse-1", "MEDICAL_RECORD", "VIEW", patient_id=patient_id, correlation_id="http-req-42"
        )
        for patient_id in ("p-1", "p-2", "p-3")
    ]
    assert access_engine.pipeline.drain()

    with session_scope() as session:
        rows = list(session.scalars(select(AuditLog).where(AuditLog.correlation_id == "http-req-42")))
    assert sorted(row.patient_id for row in rows) == ["p-1", "p-2", "p-3"]
    assert len({row.idempotency_key for row in rows}) == 3
    assert all(row.is_phi_access for row in rows)
    assert {result.correlation_id for result in results} == {"http-req-42"}


def test_losing_an_idempotency_race_keeps_the_callers_changes(monkeypatch: pytest.MonkeyPatch) -> None:
    entry = _entry("admin-change-1")
    with session_scope() as session:
        AuditService(session).record_event(entry)

    with session_scope() as session:
        session.add(AuditRetentionPolicy(event_category="SECURITY", retention_days=90, archive_before_delete=False))
        service = AuditService(session)
        lookups: List[str] = []
        find = service._find

        def racing_find(key: str) -> Optional[AuditLog]:
            lookups.append(key)
            # The first lookup misses, as if the other writer committed just after it.
            return None if len(lookups) == 1 else find(key)

        monkeypatch.setattr(service, "_find", racing_find)
        stored = service.record_event(entry)

        assert stored.idempotency_key == "admin-change-1"
        assert lookups == ["admin-change-1", "admin-change-1"]

    with session_scope() as session:
        assert session.scalar(select(func.count()).select_from(AuditLog)) == 1
        assert session.scalar(
            select(AuditRetentionPolicy).where(AuditRetentionPolicy.event_category == "SECURITY")
        ) is not None
