from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, List

import pytest
from sqlalchemy import select

from clinic_access.core.config import get_settings
from clinic_access.core.database import session_scope
from clinic_access.core.errors import ErrorKind
from clinic_access.engine import AccessControlEngine, build_engine
from clinic_access.models.audit_log import AuditLog
from clinic_access.schemas.assignment import UserRolesAssign
from clinic_access.schemas.audit import AuditEntry
from clinic_access.services.notifications import NullAlertPublisher

JUSTIFICATION = "unconscious patient, need allergy history"


class FailingWriter:
    def __init__(self) -> None:
        self.attempts = 0

    def write(self, entry: AuditEntry) -> int:
        self.attempts += 1
        raise RuntimeError("audit store unavailable")


class SlowWriter:
    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.written: List[str] = []

    def write(self, entry: AuditEntry) -> int:
        time.sleep(self.delay)
        self.written.append(entry.idempotency_key)
        return len(self.written)


def _entries(event_type: str) -> List[AuditLog]:
    with session_scope() as session:
        return list(session.scalars(select(AuditLog).where(AuditLog.event_type == event_type)))


@pytest.fixture()
def engine_factory(alerts: NullAlertPublisher):  # noqa: ANN201
    built: List[AccessControlEngine] = []

    def _build(**kwargs) -> AccessControlEngine:  # noqa: ANN003
        settings = kwargs.pop("settings", get_settings())
        access_engine = build_engine(settings, alerts=alerts, **kwargs)
        access_engine.start()
        built.append(access_engine)
        return access_engine

    yield _build
    for access_engine in built:
        access_engine.shutdown(timeout=0.5)


def _grant_break_the_glass(access_engine: AccessControlEngine, user_id: str) -> None:
    access_engine.admin.assign_roles(
        user_id,
        UserRolesAssign(role_ids=[], direct_permissions=["BREAK_THE_GLASS"]),
        actor_id="admin-1",
    )


def test_break_the_glass_grant_is_audited_before_it_is_returned(
    access_engine: AccessControlEngine, alerts: NullAlertPublisher
) -> None:
    _grant_break_the_glass(access_engine, "doc-1")

    result = access_engine.access.request_emergency_access(
        "doc-1", "PATIENT", "p-9", JUSTIFICATION, patient_id="p-9", branch_id="A"
    )
    returned_at = datetime.now(timezone.utc)

    assert result.is_allowed
    assert result.is_emergency_access
    assert result.matched_permissions == ("BREAK_THE_GLASS",)

    entries = _entries("EMERGENCY_ACCESS")
    assert len(entries) == 1
    entry = entries[0]
    assert entry.is_emergency_access
    assert entry.reason == JUSTIFICATION
    assert entry.emergency_justification == JUSTIFICATION
    assert entry.patient_id == "p-9"
    assert entry.idempotency_key.startswith(f"{result.correlation_id}:")
    assert entry.idempotency_key.endswith(":emergency")
    assert entry.timestamp.replace(tzinfo=timezone.utc) <= returned_at
    assert entry.details["granted_by_permission"] == "BREAK_THE_GLASS"

    assert [alert["alert_type"] for alert in alerts.published] == ["EMERGENCY_ACCESS"]


def test_audit_failure_never_grants_emergency_access(engine_factory) -> None:  # noqa: ANN001
    writer = FailingWriter()
    access_engine = engine_factory(audit_writer=writer)
    _grant_break_the_glass(access_engine, "doc-1")

    result = access_engine.access.request_emergency_access("doc-1", "PATIENT", "p-9", JUSTIFICATION)

    assert not result.is_allowed
    assert not result.is_emergency_access
    assert result.denial_reason == "audit_write_failure"
    assert result.error_kind is ErrorKind.AUDIT_WRITE_FAILURE
    assert writer.attempts >= 1
    assert _entries("EMERGENCY_ACCESS") == []


def test_audit_timeout_never_grants_emergency_access(engine_factory) -> None:  # noqa: ANN001
    settings = get_settings().model_copy(update={"emergency_audit_timeout_ms": 20})
    access_engine = engine_factory(settings=settings, audit_writer=SlowWriter(delay=0.3))
    _grant_break_the_glass(access_engine, "doc-1")

    result = access_engine.access.request_emergency_access("doc-1", "PATIENT", "p-9", JUSTIFICATION)

    assert not result.is_allowed
    assert result.error_category == "unavailable"


def test_emergency_via_check_access_uses_emergency_access_permission(
    access_engine: AccessControlEngine, assign: Callable[..., None]
) -> None:
    assign("doc-2", ["PHYSICIAN"])

    plain = access_engine.access.check_access("doc-2", "IMAGING", "VIEW", resource_id="img-1")
    overridden = access_engine.access.check_access(
        "doc-2", "IMAGING", "VIEW", resource_id="img-1", emergency_justification=JUSTIFICATION
    )

    assert not plain.is_allowed
    assert plain.requires_emergency_access
    assert overridden.is_allowed
    assert overridden.matched_permissions == ("EMERGENCY_ACCESS",)
    assert len(_entries("EMERGENCY_ACCESS")) == 1


def test_short_justification_is_rejected_and_audited(access_engine: AccessControlEngine) -> None:
    _grant_break_the_glass(access_engine, "doc-1")

    result = access_engine.access.request_emergency_access("doc-1", "PATIENT", "p-9", "  help  ")

    assert not result.is_allowed
    assert result.denial_reason == "justification_required"
    assert result.requires_emergency_access
    assert result.error_category == "validation"
    denied = _entries("ACCESS_DENIED")
    assert len(denied) == 1
    assert denied[0].reason == "justification_required"
    assert _entries("EMERGENCY_ACCESS") == []


def test_override_requires_an_emergency_permission(
    access_engine: AccessControlEngine, assign: Callable[..., None]
) -> None:
    assign("nurse-1", ["NURSE"])

    result = access_engine.access.request_emergency_access("nurse-1", "MEDICAL_RECORD", "mr-1", JUSTIFICATION)

    assert not result.is_allowed
    assert not result.requires_emergency_access
    assert result.denial_reason == "no_matching_allow_rule"
    assert _entries("EMERGENCY_ACCESS") == []


def test_override_does_not_apply_to_non_phi_resources(access_engine: AccessControlEngine) -> None:
    _grant_break_the_glass(access_engine, "doc-1")

    result = access_engine.access.request_emergency_access("doc-1", "INVOICE", "inv-1", JUSTIFICATION)

    assert not result.is_allowed
    assert result.denial_reason == "missing_permission"
    assert not result.is_emergency_access


def test_each_emergency_grant_gets_its_own_audit_entry(access_engine: AccessControlEngine) -> None:
    _grant_break_the_glass(access_engine, "doc-1")

    granted = [
        access_engine.access.request_emergency_access(
            "doc-1", "PATIENT", patient_id, JUSTIFICATION, patient_id=patient_id, correlation_id="http-req-7"
        )
        for patient_id in ("p-1", "p-2")
    ]

    assert all(result.is_emergency_access for result in granted)
    entries = _entries("EMERGENCY_ACCESS")
    assert sorted(entry.patient_id for entry in entries) == ["p-1", "p-2"]
    assert {entry.correlation_id for entry in entries} == {"http-req-7"}
