"""Utilities for verifying audit entry integrity hashes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic_access.models.audit_log import AuditLog
from clinic_access.services.audit import canonicalize_audit_entry_payload, compute_integrity_hash


class AuditVerificationError(RuntimeError):
    """Raised when one or more audit entries fail verification."""

    def __init__(self, failed_ids: List[int]) -> None:
        super().__init__(f"Integrity hash mismatch for audit entries: {failed_ids}")
        self.failed_ids = failed_ids


@dataclass
class VerificationResult:
    """Result metadata returned after verification."""

    checked: int
    failed_ids: List[int] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.failed_ids


class AuditVerifier:
    """Recomputes per-entry hashes to detect tampering.

    Retention deletes entries, so there is no chain to follow; each row is
    checked on its own.
    """

    def __init__(self, session: Session, *, batch_size: int = 1000) -> None:
        self._session = session
        self._batch_size = batch_size

    def verify(
        self,
        *,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        raise_on_failure: bool = False,
    ) -> VerificationResult:
        query = select(AuditLog).order_by(AuditLog.id.asc())
        if start is not None:
            query = query.where(AuditLog.timestamp >= start)
        if end is not None:
            query = query.where(AuditLog.timestamp < end)

        result = VerificationResult(checked=0)
        last_id = 0
        while True:
            batch = list(self._session.scalars(query.where(AuditLog.id > last_id).limit(self._batch_size)))
            if not batch:
                break
            for entry in batch:
                expected = compute_integrity_hash(canonicalize_audit_entry_payload(entry))
                if entry.integrity_hash != expected:
                    result.failed_ids.append(entry.id)
                result.checked += 1
            last_id = batch[-1].id
            self._session.expunge_all()

        if raise_on_failure and result.failed_ids:
            raise AuditVerificationError(result.failed_ids)
        return result
