from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from sqlalchemy.orm import Session

from clinic_access.core.database import session_scope
from clinic_access.core.errors import ConflictError, NotFoundError, ValidationError
from clinic_access.schemas.audit import AuditEntry, AuditLogQuery, EmergencyAccessReviewCreate
from clinic_access.services.audit import AuditService
from clinic_access.services.audit_query import AuditQueryService
from clinic_access.services.emergency_reviews import EmergencyReviewService

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _record(
    session: Session,
    key: str,
    *,
    hours_ago: int,
    user_id: str,
    patient_id: Optional[str] = None,
    event_type: str = "ACCESS_GRANTED",
    resource_type: str = "MEDICAL_RECORD",
    phi: bool = True,
) -> int:
    emergency = event_type == "EMERGENCY_ACCESS"
    row = AuditService(session).record_event(
        AuditEntry(
            idempotency_key=key,
            event_type=event_type,
            event_category="EMERGENCY" if emergency else ("PHI_ACCESS" if phi else "AUTHORIZATION"),
            action="VIEW",
            resource_type=resource_type,
            user_id=user_id,
            patient_id=patient_id,
            is_phi_access=phi,
            is_emergency_access=emergency,
            emergency_justification="cardiac arrest in waiting room" if emergency else None,
            is_success=event_type != "ACCESS_DENIED",
            correlation_id=key,
            timestamp=NOW - timedelta(hours=hours_ago),
        )
    )
    return row.id


@pytest.fixture()
def seeded() -> None:
    with session_scope() as session:
        _record(session, "a1", hours_ago=1, user_id="nurse-1", patient_id="p-1")
        _record(session, "a2", hours_ago=2, user_id="nurse-1", patient_id="p-2", resource_type="LAB_RESULT")
        _record(session, "a3", hours_ago=3, user_id="nurse-1", patient_id="p-1", event_type="ACCESS_DENIED")
        _record(session, "a4", hours_ago=26, user_id="doc-1", patient_id="p-3", event_type="EMERGENCY_ACCESS")
        _record(session, "a5", hours_ago=4, user_id="clerk-1", resource_type="APPOINTMENT", phi=False)


def test_query_filters_and_orders_newest_first(seeded: None) -> None:
    with session_scope() as session:
        page = AuditQueryService(session).query(AuditLogQuery(user_id="nurse-1"), page=1, page_size=2)

    assert page.total == 3
    assert [item.correlation_id for item in page.items] == ["a1", "a2"]


def test_query_combines_filters(seeded: None) -> None:
    with session_scope() as session:
        service = AuditQueryService(session)
        denied = service.query(AuditLogQuery(patient_id="p-1", is_success=False))
        ranged = service.query(AuditLogQuery(start=NOW - timedelta(hours=5), end=NOW, is_phi_access=True))

    assert [item.correlation_id for item in denied.items] == ["a3"]
    assert ranged.total == 3


def test_query_rejects_inverted_range() -> None:
    with session_scope() as session:
        with pytest.raises(ValidationError):
            AuditQueryService(session).query(AuditLogQuery(start=NOW, end=NOW - timedelta(hours=1)))


def test_phi_access_report_breakdowns(seeded: None) -> None:
    with session_scope() as session:
        report = AuditQueryService(session).phi_access_report(NOW - timedelta(days=2), NOW)

    assert report.total_accesses == 4
    assert report.unique_users == 2
    assert report.unique_patients == 3
    assert report.denied_accesses == 1
    assert report.emergency_accesses == 1
    assert report.by_user[0].key == "nurse-1"
    assert report.by_user[0].access_count == 3
    assert report.by_user[0].denied_count == 1
    assert [bucket.key for bucket in report.by_day] == ["2026-10-18", "2026-10-19"]


def test_emergency_review_lifecycle(seeded: None) -> None:
    with session_scope() as session:
        service = EmergencyReviewService(session)
        pending = service.list_emergency_accesses()
        assert [item.user_id for item in pending] == ["doc-1"]
        assert pending[0].justification == "cardiac arrest in waiting room"

        reviewed = service.review(
            pending[0].audit_log_id,
            EmergencyAccessReviewCreate(reviewed_by="privacy-officer", is_justified=True, notes="code blue"),
        )

        assert reviewed.was_reviewed
        assert service.list_emergency_accesses() == []
        assert service.list_emergency_accesses(unreviewed_only=False)[0].reviewed_by == "privacy-officer"
        with pytest.raises(ConflictError):
            service.review(pending[0].audit_log_id, EmergencyAccessReviewCreate(reviewed_by="someone"))
        with pytest.raises(NotFoundError):
            service.review(9999, EmergencyAccessReviewCreate(reviewed_by="someone"))
