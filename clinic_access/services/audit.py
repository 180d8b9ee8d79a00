"""Audit logging service."""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_access.models.audit_log import AuditLog
from clinic_access.schemas.audit import AuditEntry, AuditEventCategory, AuditEventType

HASH_VERSION = 1

_HASHED_FIELDS = (
    "idempotency_key",
    "event_type",
    "event_category",
    "action",
    "resource_type",
    "resource_id",
    "user_id",
    "patient_id",
    "branch_id",
    "is_phi_access",
    "is_emergency_access",
    "emergency_justification",
    "reason",
    "is_success",
    "correlation_id",
    "duration_ms",
    "source",
    "details",
)


def _utc_isoformat(value: datetime) -> str:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def canonicalize_audit_entry_payload(entry: Any) -> str:
    """Canonical JSON for an ``AuditEntry`` or a persisted ``AuditLog`` row."""

    payload: Dict[str, Any] = {field: getattr(entry, field) for field in _HASHED_FIELDS}
    payload["timestamp"] = _utc_isoformat(entry.timestamp)
    payload["hash_version"] = HASH_VERSION
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_integrity_hash(canonical_payload: str) -> str:
    return hashlib.sha256(canonical_payload.encode("utf-8")).hexdigest()


class AuditService:
    """Persists audit entries idempotently and mirrors them to structured logs."""

    def __init__(self, session: Session, *, source: str = "clinic-access-core") -> None:
        self._session = session
        self._source = source
        self._logger = logging.getLogger("clinic_access.audit")

    def record(
        self,
        *,
        action: str,
        actor_id: Optional[str],
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        event_type: AuditEventType = AuditEventType.POLICY_CHANGE,
        event_category: AuditEventCategory = AuditEventCategory.ADMINISTRATION,
        occurred_at: Optional[datetime] = None,
    ) -> AuditLog:
        """Write an administrative audit entry inside the caller's transaction."""

        timestamp = occurred_at or datetime.now(timezone.utc)
        correlation = correlation_id or f"{action}:{resource_type}:{resource_id}:{timestamp.isoformat()}"
        entry = AuditEntry(
            idempotency_key=f"{correlation}:{action}",
            event_type=event_type,
            event_category=event_category,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=actor_id,
            correlation_id=correlation,
            source=self._source,
            details=details or {},
            timestamp=timestamp,
        )
        return self.record_event(entry)

    def record_event(self, entry: AuditEntry) -> AuditLog:
        """Persist ``entry`` unless an entry with the same idempotency key already exists."""

        existing = self._find(entry.idempotency_key)
        if existing is not None:
            self._logger.debug("audit_event_duplicate", extra={"idempotency_key": entry.idempotency_key})
            return existing

        integrity_hash = compute_integrity_hash(canonicalize_audit_entry_payload(entry))
        audit_entry = AuditLog(
            idempotency_key=entry.idempotency_key,
            timestamp=entry.timestamp,
            event_type=entry.event_type,
            event_category=entry.event_category,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            user_id=entry.user_id,
            patient_id=entry.patient_id,
            branch_id=entry.branch_id,
            is_phi_access=entry.is_phi_access,
            is_emergency_access=entry.is_emergency_access,
            emergency_justification=entry.emergency_justification,
            reason=entry.reason,
            is_success=entry.is_success,
            correlation_id=entry.correlation_id,
            duration_ms=entry.duration_ms,
            source=entry.source,
            details=entry.details,
            integrity_hash=integrity_hash,
        )

        try:
            # The savepoint keeps the caller's pending changes when a concurrent writer won the key.
            with self._session.begin_nested():
                self._session.add(audit_entry)
        except IntegrityError:
            existing = self._find(entry.idempotency_key)
            if existing is None:
                raise
            return existing

        self._logger.info(
            "audit_event",
            extra={
                "audit_log_id": audit_entry.id,
                "event_type": entry.event_type,
                "event_category": entry.event_category,
                "action": entry.action,
                "user_id": entry.user_id,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "is_success": entry.is_success,
                "idempotency_key": entry.idempotency_key,
            },
        )
        return audit_entry

    def _find(self, idempotency_key: str) -> Optional[AuditLog]:
        return self._session.scalar(select(AuditLog).where(AuditLog.idempotency_key == idempotency_key))
