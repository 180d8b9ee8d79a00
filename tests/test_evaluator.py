from __future__ import annotations

from typing import Callable, Iterable

from clinic_access.core.errors import ErrorKind
from clinic_access.engine import AccessControlEngine
from clinic_access.policy.conditions import parse_condition
from clinic_access.policy.evaluator import RuleEvaluator
from clinic_access.policy.snapshot import PermissionDef, PolicySnapshot, RoleDef, RuleDef, UserAssignment
from clinic_access.schemas.access import AccessCheckContext
from clinic_access.schemas.role import RoleCreate
from clinic_access.schemas.rule import RuleCreate

BRANCH_RULE = {"op": "branch_matches"}


def _permission(code: str, resource_type: str, phi: bool) -> PermissionDef:
    return PermissionDef(
        code=code,
        name=code.title(),
        category="TEST",
        resource_type=resource_type,
        is_phi_related=phi,
        is_system_permission=False,
    )


def _snapshot(rules: Iterable[RuleDef] = (), codes: Iterable[str] = ("MEDICAL_RECORD_VIEW",)) -> PolicySnapshot:
    return PolicySnapshot.build(
        version=7,
        permissions=[
            _permission("MEDICAL_RECORD_VIEW", "MEDICAL_RECORD", True),
            _permission("APPOINTMENT_VIEW", "APPOINTMENT", False),
            _permission("SYSTEM_ADMIN", "SYSTEM", False),
            _permission("BREAK_THE_GLASS", "PATIENT", True),
        ],
        roles=[
            RoleDef(
                id=1,
                name="Clinician",
                role_type="CUSTOM",
                is_system_role=False,
                permission_codes=frozenset(codes),
                version=1,
            )
        ],
        rules=rules,
        assignments=[UserAssignment(user_id="u1", role_ids=frozenset({1}))],
    )


def _rule(rule_id: int, name: str, allow: bool, priority: int, condition: dict | None = None) -> RuleDef:
    return RuleDef(
        id=rule_id,
        rule_name=name,
        resource_type="MEDICAL_RECORD",
        condition=parse_condition(condition or {"op": "and"}),
        allow_access=allow,
        priority=priority,
    )


def _context(**overrides: object) -> AccessCheckContext:
    values = {"user_id": "u1", "resource_type": "MEDICAL_RECORD", "action": "VIEW", "correlation_id": "corr-1"}
    values.update(overrides)
    return AccessCheckContext(**values)


def test_missing_base_permission_denies() -> None:
    snapshot = _snapshot()

    result = RuleEvaluator().evaluate(frozenset({"APPOINTMENT_VIEW"}), _context(), snapshot)

    assert not result.is_allowed
    assert result.denial_reason == "missing_permission"
    assert result.required_permissions == ("MEDICAL_RECORD_VIEW",)
    assert not result.requires_emergency_access
    assert result.policy_version == 7


def test_missing_permission_flags_emergency_override_for_phi() -> None:
    result = RuleEvaluator().evaluate(frozenset({"BREAK_THE_GLASS"}), _context(), _snapshot())

    assert not result.is_allowed
    assert result.requires_emergency_access


def test_phi_without_matching_rule_is_denied() -> None:
    result = RuleEvaluator().evaluate(frozenset({"MEDICAL_RECORD_VIEW"}), _context(), _snapshot())

    assert not result.is_allowed
    assert result.denial_reason == "no_matching_allow_rule"
    assert result.is_phi_resource


def test_non_phi_without_rules_is_allowed_by_permission() -> None:
    result = RuleEvaluator().evaluate(
        frozenset({"APPOINTMENT_VIEW"}), _context(resource_type="appointment"), _snapshot()
    )

    assert result.is_allowed
    assert result.matched_permissions == ("APPOINTMENT_VIEW",)
    assert not result.is_phi_resource


def test_system_admin_satisfies_base_permission() -> None:
    snapshot = _snapshot(rules=[_rule(1, "open", True, 0)])

    result = RuleEvaluator().evaluate(frozenset({"SYSTEM_ADMIN"}), _context(), snapshot)

    assert result.is_allowed
    assert result.matched_permissions == ("SYSTEM_ADMIN", "RULE:open")


def test_higher_priority_rule_wins_regardless_of_insertion_order() -> None:
    permissions = frozenset({"MEDICAL_RECORD_VIEW"})
    deny_first = _snapshot(rules=[_rule(1, "deny-low", False, 0), _rule(2, "allow-high", True, 10)])
    allow_first = _snapshot(rules=[_rule(2, "allow-high", True, 10), _rule(1, "deny-low", False, 0)])
    flipped = _snapshot(rules=[_rule(1, "allow-low", True, 0), _rule(2, "deny-high", False, 10)])

    for snapshot in (deny_first, allow_first):
        result = RuleEvaluator().evaluate(permissions, _context(), snapshot)
        assert result.is_allowed
        assert result.matched_rule == "allow-high"

    result = RuleEvaluator().evaluate(permissions, _context(), flipped)
    assert not result.is_allowed
    assert result.denial_reason == "denied_by_rule:deny-high"


def test_equal_priority_ties_resolve_by_ascending_rule_id() -> None:
    snapshot = _snapshot(rules=[_rule(9, "later", True, 5), _rule(4, "earlier", False, 5)])

    result = RuleEvaluator().evaluate(frozenset({"MEDICAL_RECORD_VIEW"}), _context(), snapshot)

    assert not result.is_allowed
    assert result.matched_rule == "earlier"


def test_false_conditions_fall_through_to_next_rule() -> None:
    snapshot = _snapshot(
        rules=[
            _rule(1, "night-only", True, 10, {"op": "equals", "attribute": "shift", "value": "night"}),
            _rule(2, "same-branch", True, 5, BRANCH_RULE),
        ]
    )
    context = _context(branch_id="A", attributes={"shift": "day", "patient.branch_id": "A"})

    result = RuleEvaluator().evaluate(frozenset({"MEDICAL_RECORD_VIEW"}), context, snapshot)

    assert result.is_allowed
    assert "RULE:same-branch" in result.matched_permissions


def test_unknown_condition_on_phi_denies() -> None:
    snapshot = _snapshot(rules=[_rule(1, "consent", True, 0, {"op": "equals", "attribute": "consent.ok", "value": True})])

    result = RuleEvaluator().evaluate(frozenset({"MEDICAL_RECORD_VIEW"}), _context(), snapshot)

    assert not result.is_allowed
    assert result.denial_reason == "condition_unknown"
    assert result.matched_rule == "consent"


def test_evaluation_is_deterministic() -> None:
    snapshot = _snapshot(rules=[_rule(1, "same-branch", True, 10, BRANCH_RULE)])
    context = _context(branch_id="A", attributes={"patient.branch_id": "A"})
    permissions = frozenset({"MEDICAL_RECORD_VIEW"})

    first = RuleEvaluator().evaluate(permissions, context, snapshot)
    second = RuleEvaluator().evaluate(permissions, context, snapshot)

    assert first == second


def test_unexpected_failure_denies_with_evaluation_failure() -> None:
    class Exploding:
        def evaluate(self, attributes):  # noqa: ANN001
            raise RuntimeError("boom")

        def attributes(self):  # noqa: ANN201
            return frozenset()

    rule = RuleDef(
        id=1,
        rule_name="broken",
        resource_type="MEDICAL_RECORD",
        condition=Exploding(),  # type: ignore[arg-type]
        allow_access=True,
        priority=0,
    )

    result = RuleEvaluator().evaluate(frozenset({"MEDICAL_RECORD_VIEW"}), _context(), _snapshot(rules=[rule]))

    assert not result.is_allowed
    assert result.error_kind is ErrorKind.EVALUATION_FAILURE
    assert result.error_category == "unavailable"


def test_rules_scoped_to_other_roles_are_skipped() -> None:
    scoped = RuleDef(
        id=1,
        rule_name="other-role",
        resource_type="MEDICAL_RECORD",
        condition=parse_condition({"op": "and"}),
        allow_access=True,
        priority=0,
        scope_role_id=1,
    )
    snapshot = PolicySnapshot.build(
        version=1,
        permissions=[_permission("MEDICAL_RECORD_VIEW", "MEDICAL_RECORD", True)],
        roles=[
            RoleDef(1, "A", "CUSTOM", False, frozenset(), 1),
            RoleDef(2, "B", "CUSTOM", False, frozenset({"MEDICAL_RECORD_VIEW"}), 1),
        ],
        rules=[scoped],
        assignments=[UserAssignment(user_id="u1", role_ids=frozenset({2}))],
    )

    result = RuleEvaluator().evaluate(frozenset({"MEDICAL_RECORD_VIEW"}), _context(), snapshot)

    assert result.denial_reason == "no_matching_allow_rule"


def test_branch_rule_scenario(access_engine: AccessControlEngine, assign: Callable[..., None]) -> None:
    access_engine.admin.create_role(
        RoleCreate(name="Branch Nurse", permissions=["PATIENT_VIEW", "MEDICAL_RECORD_VIEW"]), actor_id="admin-1"
    )
    access_engine.admin.create_rule(
        RuleCreate(
            rule_name="R1",
            resource_type="MEDICAL_RECORD",
            condition=BRANCH_RULE,
            allow_access=True,
            priority=10,
        ),
        actor_id="admin-1",
    )
    assign("nurse-1", ["Branch Nurse"])

    other_branch = access_engine.access.check_access(
        "nurse-1",
        "MEDICAL_RECORD",
        "VIEW",
        resource_id="mr-1",
        branch_id="A",
        patient_id="p-1",
        attributes={"patient.branch_id": "B"},
    )
    same_branch = access_engine.access.check_access(
        "nurse-1",
        "MEDICAL_RECORD",
        "VIEW",
        resource_id="mr-2",
        branch_id="A",
        patient_id="p-2",
        attributes={"patient.branch_id": "A"},
    )

    assert not other_branch.is_allowed
    assert other_branch.denial_reason == "no_matching_allow_rule"
    assert same_branch.is_allowed
    assert "RULE:R1" in same_branch.matched_permissions
    assert "MEDICAL_RECORD_VIEW" in same_branch.matched_permissions
