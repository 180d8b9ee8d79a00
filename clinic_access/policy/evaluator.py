"""Priority-ordered data access rule evaluation."""

from __future__ import annotations

import logging
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional

from clinic_access.core.errors import ErrorKind
from clinic_access.policy.catalog import EMERGENCY_PERMISSIONS, SYSTEM_ADMIN
from clinic_access.policy.snapshot import PolicySnapshot, RuleDef, base_permission_code
from clinic_access.schemas.access import AccessCheckContext, AccessCheckResult

LOGGER = logging.getLogger("clinic_access.policy.evaluator")

MISSING_PERMISSION = "missing_permission"
NO_MATCHING_ALLOW_RULE = "no_matching_allow_rule"
CONDITION_UNKNOWN = "condition_unknown"
EVALUATION_FAILED = "evaluation_failed"


def rule_label(rule: RuleDef) -> str:
    return f"RULE:{rule.rule_name}"


def candidate_rules(
    snapshot: PolicySnapshot,
    resource_type: str,
    role_ids: Iterable[int],
) -> List[RuleDef]:
    """Active rules for ``resource_type`` that apply to the given roles, in evaluation order."""

    held = frozenset(role_ids)
    return [
        rule
        for rule in snapshot.rules_for(resource_type)
        if rule.is_active and (rule.scope_role_id is None or rule.scope_role_id in held)
    ]


def active_role_ids(snapshot: PolicySnapshot, user_id: str) -> FrozenSet[int]:
    assignment = snapshot.assignment_for(user_id)
    return frozenset(
        role_id
        for role_id in assignment.role_ids
        if role_id in snapshot.roles and snapshot.roles[role_id].is_active
    )


class RuleEvaluator:
    """Pure decision function over (permissions, context, snapshot).

    Never reads the wall clock and never raises: unexpected failures produce
    a fail-closed deny tagged ``EVALUATION_FAILURE``.
    """

    def evaluate(
        self,
        effective_permissions: FrozenSet[str],
        context: AccessCheckContext,
        snapshot: PolicySnapshot,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> AccessCheckResult:
        is_phi = snapshot.is_phi_resource(context.resource_type)
        try:
            return self._evaluate(effective_permissions, context, snapshot, attributes, is_phi)
        except Exception:  # fail closed on anything the typed grammar did not rule out
            LOGGER.exception(
                "rule_evaluation_failed",
                extra={
                    "user_id": context.user_id,
                    "resource_type": context.resource_type,
                    "policy_version": snapshot.version,
                    "correlation_id": context.correlation_id,
                },
            )
            return AccessCheckResult(
                is_allowed=False,
                denial_reason=EVALUATION_FAILED,
                is_phi_resource=is_phi,
                error_kind=ErrorKind.EVALUATION_FAILURE,
                correlation_id=context.correlation_id,
                policy_version=snapshot.version,
            )

    def _evaluate(
        self,
        effective_permissions: FrozenSet[str],
        context: AccessCheckContext,
        snapshot: PolicySnapshot,
        attributes: Optional[Mapping[str, Any]],
        is_phi: bool,
    ) -> AccessCheckResult:
        required = base_permission_code(context.resource_type, context.action)
        can_override = is_phi and bool(effective_permissions & EMERGENCY_PERMISSIONS)

        if required in effective_permissions:
            granted = (required,)
        elif SYSTEM_ADMIN in effective_permissions:
            granted = (SYSTEM_ADMIN,)
        else:
            return AccessCheckResult(
                is_allowed=False,
                denial_reason=MISSING_PERMISSION,
                requires_emergency_access=can_override,
                required_permissions=(required,),
                is_phi_resource=is_phi,
                correlation_id=context.correlation_id,
                policy_version=snapshot.version,
            )

        bag = attributes if attributes is not None else context.attribute_bag()
        rules = candidate_rules(snapshot, context.resource_type, active_role_ids(snapshot, context.user_id))
        for rule in rules:
            outcome = rule.condition.evaluate(bag)
            if outcome is None:
                if is_phi:
                    return AccessCheckResult(
                        is_allowed=False,
                        denial_reason=CONDITION_UNKNOWN,
                        matched_permissions=granted,
                        requires_emergency_access=can_override,
                        matched_rule=rule.rule_name,
                        is_phi_resource=True,
                        correlation_id=context.correlation_id,
                        policy_version=snapshot.version,
                    )
                continue
            if not outcome:
                continue
            if rule.allow_access:
                return AccessCheckResult(
                    is_allowed=True,
                    matched_permissions=granted + (rule_label(rule),),
                    matched_rule=rule.rule_name,
                    is_phi_resource=is_phi,
                    correlation_id=context.correlation_id,
                    policy_version=snapshot.version,
                )
            return AccessCheckResult(
                is_allowed=False,
                denial_reason=f"denied_by_rule:{rule.rule_name}",
                matched_permissions=granted + (rule_label(rule),),
                requires_emergency_access=can_override,
                matched_rule=rule.rule_name,
                is_phi_resource=is_phi,
                correlation_id=context.correlation_id,
                policy_version=snapshot.version,
            )

        if is_phi:
            return AccessCheckResult(
                is_allowed=False,
                denial_reason=NO_MATCHING_ALLOW_RULE,
                matched_permissions=granted,
                requires_emergency_access=can_override,
                is_phi_resource=True,
                correlation_id=context.correlation_id,
                policy_version=snapshot.version,
            )
        return AccessCheckResult(
            is_allowed=True,
            matched_permissions=granted,
            is_phi_resource=False,
            correlation_id=context.correlation_id,
            policy_version=snapshot.version,
        )
