"""Audit log retrieval and PHI access reporting."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from clinic_access.core.errors import ValidationError
from clinic_access.models.audit_log import AuditLog
from clinic_access.schemas.audit import (
    AuditLogPage,
    AuditLogQuery,
    AuditLogResponse,
    PHIAccessBreakdown,
    PHIAccessReport,
)

MAX_PAGE_SIZE = 500


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditQueryService:
    def __init__(self, session: Session) -> None:
        self._session = session

    def query(self, filters: AuditLogQuery, page: int = 1, page_size: int = 50) -> AuditLogPage:
        """Filtered entries, newest first."""

        if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page must be >= 1 and page_size between 1 and {MAX_PAGE_SIZE}")
        if filters.start and filters.end and filters.end < filters.start:
            raise ValidationError("end must not precede start")

        stmt = self._apply_filters(select(AuditLog), filters)
        total = self._session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = self._session.scalars(
            stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return AuditLogPage(
            items=[AuditLogResponse.model_validate(row) for row in rows],
            page=page,
            page_size=page_size,
            total=total,
        )

    def phi_access_report(self, start: datetime, end: datetime) -> PHIAccessReport:
        """PHI access totals for ``[start, end)`` broken down by user, resource type and UTC day."""

        start, end = _as_utc(start), _as_utc(end)
        if end <= start:
            raise ValidationError("end must be after start")

        rows = self._session.execute(
            select(
                AuditLog.user_id,
                AuditLog.patient_id,
                AuditLog.resource_type,
                AuditLog.timestamp,
                AuditLog.is_success,
                AuditLog.is_emergency_access,
            )
            .where(AuditLog.is_phi_access.is_(True))
            .where(AuditLog.timestamp >= start)
            .where(AuditLog.timestamp < end)
        ).all()

        by_user: Dict[str, List[int]] = defaultdict(lambda: [0, 0, 0])
        by_resource: Dict[str, List[int]] = defaultdict(lambda: [0, 0, 0])
        by_day: Dict[str, List[int]] = defaultdict(lambda: [0, 0, 0])
        users = set()
        patients = set()
        emergency = denied = 0

        for user_id, patient_id, resource_type, timestamp, is_success, is_emergency in rows:
            day = _as_utc(timestamp).date().isoformat()
            for bucket, key in ((by_user, user_id or "unknown"), (by_resource, resource_type), (by_day, day)):
                counts = bucket[key]
                counts[0] += 1
                counts[1] += 0 if is_success else 1
                counts[2] += 1 if is_emergency else 0
            if user_id:
                users.add(user_id)
            if patient_id:
                patients.add(patient_id)
            emergency += 1 if is_emergency else 0
            denied += 0 if is_success else 1

        return PHIAccessReport(
            start=start,
            end=end,
            total_accesses=len(rows),
            unique_users=len(users),
            unique_patients=len(patients),
            emergency_accesses=emergency,
            denied_accesses=denied,
            by_user=self._breakdown(by_user, by_count=True),
            by_resource_type=self._breakdown(by_resource, by_count=True),
            by_day=self._breakdown(by_day, by_count=False),
        )

    @staticmethod
    def _breakdown(bucket: Dict[str, List[int]], *, by_count: bool) -> List[PHIAccessBreakdown]:
        items: List[Tuple[str, List[int]]] = list(bucket.items())
        if by_count:
            items.sort(key=lambda item: (-item[1][0], item[0]))
        else:
            items.sort(key=lambda item: item[0])
        return [
            PHIAccessBreakdown(key=key, access_count=counts[0], denied_count=counts[1], emergency_count=counts[2])
            for key, counts in items
        ]

    @staticmethod
    def _apply_filters(stmt: Select, filters: AuditLogQuery) -> Select:
        if filters.start is not None:
            stmt = stmt.where(AuditLog.timestamp >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(AuditLog.timestamp < filters.end)
        for column in (
            "user_id",
            "patient_id",
            "resource_type",
            "resource_id",
            "event_type",
            "event_category",
            "correlation_id",
        ):
            value = getattr(filters, column)
            if value is not None:
                stmt = stmt.where(getattr(AuditLog, column) == value)
        for flag in ("is_phi_access", "is_emergency_access", "is_success"):
            value = getattr(filters, flag)
            if value is not None:
                stmt = stmt.where(getattr(AuditLog, flag).is_(value))
        return stmt
