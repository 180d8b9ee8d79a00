"""Builds audit entries from access decisions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from clinic_access.schemas.access import AccessCheckContext, AccessCheckResult
from clinic_access.schemas.audit import AuditEntry, AuditEventCategory, AuditEventType


def decision_entry(
    context: AccessCheckContext,
    result: AccessCheckResult,
    *,
    source: str,
    duration_ms: Optional[int] = None,
) -> AuditEntry:
    """Entry for a normal allow/deny decision; keyed by correlation and decision id."""

    if result.is_emergency_access:
        event_type = AuditEventType.EMERGENCY_ACCESS
    elif result.is_allowed:
        event_type = AuditEventType.ACCESS_GRANTED
    else:
        event_type = AuditEventType.ACCESS_DENIED

    if result.is_emergency_access:
        category = AuditEventCategory.EMERGENCY
    elif result.is_phi_resource:
        category = AuditEventCategory.PHI_ACCESS
    else:
        category = AuditEventCategory.AUTHORIZATION

    details = {
        "matched_permissions": list(result.matched_permissions),
        "policy_version": result.policy_version,
    }
    if result.matched_rule:
        details["matched_rule"] = result.matched_rule
    if result.required_permissions:
        details["required_permissions"] = list(result.required_permissions)
    if result.error_kind is not None:
        details["error_kind"] = result.error_kind.value

    return AuditEntry(
        idempotency_key=f"{context.correlation_id}:{context.decision_id}",
        event_type=event_type,
        event_category=category,
        action=context.action,
        resource_type=context.resource_type,
        resource_id=context.resource_id,
        user_id=context.user_id,
        patient_id=context.patient_id,
        branch_id=context.branch_id,
        is_phi_access=result.is_phi_resource,
        is_emergency_access=result.is_emergency_access,
        reason=result.denial_reason,
        is_success=result.is_allowed,
        correlation_id=context.correlation_id,
        duration_ms=duration_ms,
        source=source,
        details=details,
        timestamp=datetime.now(timezone.utc),
    )


def emergency_entry(
    context: AccessCheckContext,
    *,
    justification: str,
    granted_by: str,
    policy_version: int,
    source: str,
) -> AuditEntry:
    """Entry that must be durable before an emergency grant is returned."""

    return AuditEntry(
        idempotency_key=f"{context.correlation_id}:{context.decision_id}:emergency",
        event_type=AuditEventType.EMERGENCY_ACCESS,
        event_category=AuditEventCategory.EMERGENCY,
        action=context.action,
        resource_type=context.resource_type,
        resource_id=context.resource_id,
        user_id=context.user_id,
        patient_id=context.patient_id,
        branch_id=context.branch_id,
        is_phi_access=True,
        is_emergency_access=True,
        emergency_justification=justification,
        reason=justification,
        is_success=True,
        correlation_id=context.correlation_id,
        source=source,
        details={"granted_by_permission": granted_by, "policy_version": policy_version},
        timestamp=datetime.now(timezone.utc),
    )
