"""Post-hoc review of emergency accesses."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_access.core.errors import ConflictError, NotFoundError, ValidationError
from clinic_access.models.audit_log import AuditLog
from clinic_access.models.emergency_review import EmergencyAccessReview
from clinic_access.schemas.audit import (
    AuditEventCategory,
    AuditEventType,
    EmergencyAccessReviewCreate,
    EmergencyAccessSummary,
)
from clinic_access.services.audit import AuditService


def _summary(entry: AuditLog, review: Optional[EmergencyAccessReview]) -> EmergencyAccessSummary:
    return EmergencyAccessSummary(
        audit_log_id=entry.id,
        timestamp=entry.timestamp,
        user_id=entry.user_id,
        patient_id=entry.patient_id,
        resource_type=entry.resource_type,
        resource_id=entry.resource_id,
        justification=entry.emergency_justification,
        was_reviewed=review is not None,
        reviewed_by=review.reviewed_by if review else None,
        reviewed_at=review.reviewed_at if review else None,
        is_justified=review.is_justified if review else None,
        notes=review.notes if review else None,
    )


class EmergencyReviewService:
    """Reviews are stored beside the audit entry; the entry itself stays immutable."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._logger = logging.getLogger("clinic_access.services.emergency_reviews")

    def list_emergency_accesses(self, *, unreviewed_only: bool = True, limit: int = 100) -> List[EmergencyAccessSummary]:
        stmt = (
            select(AuditLog, EmergencyAccessReview)
            .outerjoin(EmergencyAccessReview, EmergencyAccessReview.audit_log_id == AuditLog.id)
            .where(AuditLog.event_type == AuditEventType.EMERGENCY_ACCESS.value)
            .where(AuditLog.is_success.is_(True))
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
            .limit(limit)
        )
        if unreviewed_only:
            stmt = stmt.where(EmergencyAccessReview.id.is_(None))
        return [_summary(entry, review) for entry, review in self._session.execute(stmt).all()]

    def review(
        self,
        audit_log_id: int,
        payload: EmergencyAccessReviewCreate,
        *,
        reviewed_at: Optional[datetime] = None,
    ) -> EmergencyAccessSummary:
        entry = self._session.get(AuditLog, audit_log_id)
        if entry is None:
            raise NotFoundError(f"Audit entry {audit_log_id} not found")
        if entry.event_type != AuditEventType.EMERGENCY_ACCESS.value:
            raise ValidationError(f"Audit entry {audit_log_id} is not an emergency access")
        existing = self._session.scalar(
            select(EmergencyAccessReview).where(EmergencyAccessReview.audit_log_id == audit_log_id)
        )
        if existing is not None:
            raise ConflictError(f"Emergency access {audit_log_id} was already reviewed")

        review = EmergencyAccessReview(
            audit_log_id=audit_log_id,
            reviewed_by=payload.reviewed_by,
            reviewed_at=reviewed_at or datetime.now(timezone.utc),
            is_justified=payload.is_justified,
            notes=payload.notes,
        )
        self._session.add(review)
        self._session.flush()

        AuditService(self._session).record(
            action="emergency_access.review",
            actor_id=payload.reviewed_by,
            resource_type="AUDIT_LOG",
            resource_id=str(audit_log_id),
            event_type=AuditEventType.EMERGENCY_REVIEW,
            event_category=AuditEventCategory.SECURITY,
            details={"is_justified": payload.is_justified},
        )
        self._logger.info(
            "emergency_access_reviewed",
            extra={
                "audit_log_id": audit_log_id,
                "reviewed_by": payload.reviewed_by,
                "is_justified": payload.is_justified,
            },
        )
        return _summary(entry, review)
