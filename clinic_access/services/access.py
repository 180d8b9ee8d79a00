"""Access check facade: resolver, evaluator, emergency override and audit."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from clinic_access.audit.entries import decision_entry
from clinic_access.audit.pipeline import AuditPipeline
from clinic_access.core.errors import AuditWriteFailure, ErrorKind, ValidationError
from clinic_access.policy.conditions import UNKNOWN
from clinic_access.policy.emergency import EmergencyAccessController
from clinic_access.policy.evaluator import RuleEvaluator, active_role_ids, candidate_rules
from clinic_access.policy.resolver import PermissionResolver
from clinic_access.policy.snapshot import PolicySnapshot
from clinic_access.policy.store import PolicyStore
from clinic_access.schemas.access import AccessCheckContext, AccessCheckResult
from clinic_access.services.consent import AttributeProvider

LOGGER = logging.getLogger("clinic_access.services.access")

TIMED_OUT = "timeout"
AUDIT_UNAVAILABLE = "audit_write_failure"


class AccessCheckService:
    """Single entry point the clinic application calls for every authorization decision."""

    def __init__(
        self,
        *,
        store: PolicyStore,
        resolver: PermissionResolver,
        evaluator: RuleEvaluator,
        emergency: EmergencyAccessController,
        pipeline: AuditPipeline,
        attribute_providers: Sequence[AttributeProvider] = (),
        attribute_lookup_timeout_ms: int = 30,
        emergency_audit_timeout_ms: int = 50,
        source: str = "clinic-access-core",
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._evaluator = evaluator
        self._emergency = emergency
        self._pipeline = pipeline
        self._providers = list(attribute_providers)
        self._lookup_timeout = attribute_lookup_timeout_ms / 1000
        self._sync_timeout_ms = emergency_audit_timeout_ms
        self._source = source
        self._lookups = (
            ThreadPoolExecutor(max_workers=8, thread_name_prefix="attribute-lookup") if self._providers else None
        )

    def close(self) -> None:
        if self._lookups is not None:
            self._lookups.shutdown(wait=False)

    def check_access(
        self,
        user_id: str,
        resource_type: str,
        action: str,
        *,
        resource_id: Optional[str] = None,
        branch_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        emergency_justification: Optional[str] = None,
        correlation_id: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> AccessCheckResult:
        started = time.monotonic()
        deadline = started + timeout_ms / 1000 if timeout_ms else None
        context = self._context(
            user_id=user_id,
            resource_type=resource_type,
            action=action,
            resource_id=resource_id,
            branch_id=branch_id,
            patient_id=patient_id,
            attributes=attributes,
            correlation_id=correlation_id,
        )
        snapshot = self._store.load()
        permissions = self._resolver.resolve(context.user_id, snapshot)
        result = self._decide(context, snapshot, permissions, deadline)

        if emergency_justification is not None and self._emergency.applies(result, permissions):
            result = self._emergency.request(context, result, permissions, emergency_justification)
            if result.is_emergency_access:
                return result
        return self._finalize(context, result, started, synchronous=False)

    def request_emergency_access(
        self,
        user_id: str,
        resource_type: str,
        resource_id: str,
        justification: str,
        *,
        action: str = "VIEW",
        branch_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> AccessCheckResult:
        """Explicit override path; every outcome is audited before it is returned."""

        started = time.monotonic()
        context = self._context(
            user_id=user_id,
            resource_type=resource_type,
            action=action,
            resource_id=resource_id,
            branch_id=branch_id,
            patient_id=patient_id,
            attributes=attributes,
            correlation_id=correlation_id,
        )
        snapshot = self._store.load()
        permissions = self._resolver.resolve(context.user_id, snapshot)
        result = self._decide(context, snapshot, permissions, None)

        if self._emergency.applies(result, permissions):
            result = self._emergency.request(context, result, permissions, justification)
            if result.is_emergency_access:
                return result
        return self._finalize(context, result, started, synchronous=True)

    def _context(self, **fields: Any) -> AccessCheckContext:
        values = {key: value for key, value in fields.items() if value is not None}
        values["attributes"] = dict(fields.get("attributes") or {})
        try:
            return AccessCheckContext(**values)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid access check request: {exc.errors()[0]['msg']}") from exc

    def _decide(
        self,
        context: AccessCheckContext,
        snapshot: PolicySnapshot,
        permissions: FrozenSet[str],
        deadline: Optional[float],
    ) -> AccessCheckResult:
        bag = self._attribute_bag(context, snapshot, deadline)
        if deadline is not None and time.monotonic() >= deadline:
            LOGGER.warning(
                "access_check_deadline_exceeded",
                extra={"user_id": context.user_id, "correlation_id": context.correlation_id},
            )
            return AccessCheckResult(
                is_allowed=False,
                denial_reason=TIMED_OUT,
                is_phi_resource=snapshot.is_phi_resource(context.resource_type),
                error_kind=ErrorKind.TIMEOUT,
                correlation_id=context.correlation_id,
                policy_version=snapshot.version,
            )
        return self._evaluator.evaluate(permissions, context, snapshot, bag)

    def _attribute_bag(
        self,
        context: AccessCheckContext,
        snapshot: PolicySnapshot,
        deadline: Optional[float],
    ) -> Dict[str, Any]:
        bag = context.attribute_bag()
        if not self._providers:
            return bag

        rules = candidate_rules(snapshot, context.resource_type, active_role_ids(snapshot, context.user_id))
        referenced = frozenset().union(*(rule.condition.attributes() for rule in rules))
        for provider in self._providers:
            wanted = [path for path in referenced if path.startswith(f"{provider.prefix}.")]
            if wanted:
                bag.update(self._lookup(provider, context, wanted, deadline))
        return bag

    def _lookup(
        self,
        provider: AttributeProvider,
        context: AccessCheckContext,
        wanted: Iterable[str],
        deadline: Optional[float],
    ) -> Dict[str, Any]:
        timeout = self._lookup_timeout
        if deadline is not None:
            timeout = max(0.0, min(timeout, deadline - time.monotonic()))
        future = self._lookups.submit(provider.fetch, context, timeout_seconds=timeout)
        try:
            values = future.result(timeout=timeout)
        except FutureTimeoutError:
            LOGGER.warning(
                "attribute_lookup_timeout",
                extra={"provider": provider.prefix, "correlation_id": context.correlation_id},
            )
            return {path: UNKNOWN for path in wanted}
        except Exception as exc:  # noqa: BLE001 - an unavailable source reads as unknown
            LOGGER.warning(
                "attribute_lookup_failed",
                extra={"provider": provider.prefix, "correlation_id": context.correlation_id, "error": str(exc)},
            )
            return {path: UNKNOWN for path in wanted}
        prefix = f"{provider.prefix}."
        return {key: value for key, value in values.items() if key.startswith(prefix)}

    def _finalize(
        self,
        context: AccessCheckContext,
        result: AccessCheckResult,
        started: float,
        *,
        synchronous: bool,
    ) -> AccessCheckResult:
        duration_ms = int((time.monotonic() - started) * 1000)
        entry = decision_entry(context, result, source=self._source, duration_ms=duration_ms)
        try:
            if synchronous:
                self._pipeline.write_sync(entry, timeout_ms=self._sync_timeout_ms)
            else:
                self._pipeline.enqueue(entry)
        except AuditWriteFailure:
            if synchronous or result.is_phi_resource:
                result = result.model_copy(
                    update={
                        "is_allowed": False,
                        "denial_reason": AUDIT_UNAVAILABLE,
                        "error_kind": ErrorKind.AUDIT_WRITE_FAILURE,
                    }
                )

        extra = {
            "user_id": context.user_id,
            "resource_type": context.resource_type,
            "action": context.action,
            "correlation_id": context.correlation_id,
            "policy_version": result.policy_version,
            "duration_ms": duration_ms,
        }
        if result.is_allowed:
            LOGGER.info("access_granted", extra=extra)
        else:
            LOGGER.info("access_denied", extra={**extra, "denial_reason": result.denial_reason})
        return result
