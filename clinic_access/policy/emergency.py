"""Break-the-glass override for PHI resources."""

from __future__ import annotations

import logging
from typing import FrozenSet, Optional

from botocore.exceptions import BotoCoreError, ClientError

from clinic_access.audit.entries import emergency_entry
from clinic_access.audit.pipeline import AuditPipeline
from clinic_access.core.errors import AuditWriteFailure, ErrorKind
from clinic_access.policy.catalog import BREAK_THE_GLASS, EMERGENCY_ACCESS, EMERGENCY_PERMISSIONS
from clinic_access.schemas.access import AccessCheckContext, AccessCheckResult
from clinic_access.services.notifications import AlertPublisher

LOGGER = logging.getLogger("clinic_access.policy.emergency")

JUSTIFICATION_REQUIRED = "justification_required"
AUDIT_WRITE_FAILED = "audit_write_failure"


class EmergencyAccessController:
    """Grants emergency access only after its audit entry is durably stored.

    Applies when the normal decision denied a PHI resource and the principal
    holds ``EMERGENCY_ACCESS`` or ``BREAK_THE_GLASS``; otherwise the normal
    decision is returned untouched.
    """

    def __init__(
        self,
        pipeline: AuditPipeline,
        *,
        audit_timeout_ms: int,
        min_justification_length: int,
        alerts: Optional[AlertPublisher] = None,
        source: str = "clinic-access-core",
    ) -> None:
        self._pipeline = pipeline
        self._audit_timeout_ms = audit_timeout_ms
        self._min_justification_length = min_justification_length
        self._alerts = alerts
        self._source = source

    def applies(self, base: AccessCheckResult, effective_permissions: FrozenSet[str]) -> bool:
        return (
            not base.is_allowed
            and base.is_phi_resource
            and bool(effective_permissions & EMERGENCY_PERMISSIONS)
        )

    def request(
        self,
        context: AccessCheckContext,
        base: AccessCheckResult,
        effective_permissions: FrozenSet[str],
        justification: Optional[str],
    ) -> AccessCheckResult:
        if not self.applies(base, effective_permissions):
            return base

        reason = (justification or "").strip()
        if len(reason) < self._min_justification_length:
            LOGGER.info(
                "emergency_access_rejected",
                extra={"user_id": context.user_id, "correlation_id": context.correlation_id},
            )
            return base.model_copy(
                update={
                    "denial_reason": JUSTIFICATION_REQUIRED,
                    "requires_emergency_access": True,
                    "error_kind": ErrorKind.VALIDATION,
                }
            )

        granted_by = BREAK_THE_GLASS if BREAK_THE_GLASS in effective_permissions else EMERGENCY_ACCESS
        entry = emergency_entry(
            context,
            justification=reason,
            granted_by=granted_by,
            policy_version=base.policy_version,
            source=self._source,
        )
        try:
            self._pipeline.write_sync(entry, timeout_ms=self._audit_timeout_ms)
        except AuditWriteFailure:
            LOGGER.error(
                "emergency_access_denied_audit_failure",
                extra={"user_id": context.user_id, "correlation_id": context.correlation_id},
            )
            return base.model_copy(
                update={
                    "denial_reason": AUDIT_WRITE_FAILED,
                    "requires_emergency_access": True,
                    "error_kind": ErrorKind.AUDIT_WRITE_FAILURE,
                }
            )

        LOGGER.warning(
            "emergency_access_granted",
            extra={
                "user_id": context.user_id,
                "resource_type": context.resource_type,
                "resource_id": context.resource_id,
                "correlation_id": context.correlation_id,
            },
        )
        self._notify(context, granted_by)
        return AccessCheckResult(
            is_allowed=True,
            matched_permissions=(granted_by,),
            is_phi_resource=True,
            is_emergency_access=True,
            correlation_id=context.correlation_id,
            policy_version=base.policy_version,
        )

    def _notify(self, context: AccessCheckContext, granted_by: str) -> None:
        if self._alerts is None:
            return
        try:
            self._alerts.publish(
                alert_type="EMERGENCY_ACCESS",
                severity="HIGH",
                payload={
                    "user_id": context.user_id,
                    "resource_type": context.resource_type,
                    "resource_id": context.resource_id,
                    "patient_id": context.patient_id,
                    "permission": granted_by,
                    "correlation_id": context.correlation_id,
                },
            )
        except (BotoCoreError, ClientError):
            # The grant is already durably audited; alert delivery is best effort.
            LOGGER.warning("emergency_alert_failed", extra={"correlation_id": context.correlation_id})
