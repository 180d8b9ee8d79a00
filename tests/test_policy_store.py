from __future__ import annotations

from typing import Callable, List

import pytest

from clinic_access.core.errors import ConflictError, NotFoundError, PolicyMisconfiguration, ValidationError
from clinic_access.engine import AccessControlEngine
from clinic_access.policy.resolver import resolve_effective_permissions
from clinic_access.policy.snapshot import PolicySnapshot
from clinic_access.schemas.role import RoleCreate, RoleDuplicate, RoleUpdate
from clinic_access.schemas.rule import RuleCreate


def test_catalog_seeds_system_roles(access_engine: AccessControlEngine) -> None:
    snapshot = access_engine.store.load()

    for name in ("SYSTEM_ADMIN", "PHYSICIAN", "NURSE", "RECEPTIONIST", "BILLING_STAFF"):
        role = snapshot.role_by_name(name)
        assert role is not None
        assert role.is_system_role
    assert snapshot.is_phi_resource("MEDICAL_RECORD")
    assert not snapshot.is_phi_resource("APPOINTMENT")


def test_catalog_seeding_is_idempotent(access_engine: AccessControlEngine) -> None:
    before = access_engine.store.load()
    access_engine.admin.ensure_catalog()
    after = access_engine.store.load()

    assert after.version == before.version + 1
    assert set(after.permissions) == set(before.permissions)
    assert {role.name for role in after.roles.values()} == {role.name for role in before.roles.values()}


def test_role_permissions_round_trip_regardless_of_order(access_engine: AccessControlEngine) -> None:
    codes = ["LAB_RESULT_VIEW", "APPOINTMENT_VIEW", "PATIENT_VIEW"]
    first = access_engine.admin.create_role(RoleCreate(name="Lab Liaison", permissions=codes), actor_id="admin-1")
    second = access_engine.admin.create_role(
        RoleCreate(name="Lab Liaison 2", permissions=list(reversed(codes)) + ["PATIENT_VIEW"]),
        actor_id="admin-1",
    )

    assert set(access_engine.admin.get_role(first.id).permissions) == set(codes)
    assert set(access_engine.admin.get_role(second.id).permissions) == set(codes)
    assert access_engine.store.load().roles[first.id].permission_codes == frozenset(codes)


def test_effective_permissions_are_union_of_roles_and_direct_grants(
    access_engine: AccessControlEngine, assign: Callable[..., None]
) -> None:
    assign("user-1", ["NURSE", "RECEPTIONIST"], direct=["IMAGING_VIEW"])
    snapshot = access_engine.store.load()
    nurse = snapshot.role_by_name("NURSE")
    receptionist = snapshot.role_by_name("RECEPTIONIST")

    expected = nurse.permission_codes | receptionist.permission_codes | {"IMAGING_VIEW"}
    assert resolve_effective_permissions("user-1", snapshot) == expected
    assert access_engine.resolver.resolve("user-1", snapshot) == expected


def test_removing_a_role_drops_only_its_unique_permissions(
    access_engine: AccessControlEngine, assign: Callable[..., None]
) -> None:
    assign("user-1", ["NURSE", "RECEPTIONIST"])
    snapshot = access_engine.store.load()
    nurse = snapshot.role_by_name("NURSE")
    receptionist = snapshot.role_by_name("RECEPTIONIST")
    before = access_engine.resolver.resolve("user-1", snapshot)

    access = access_engine.admin.remove_role("user-1", receptionist.id, actor_id="admin-1")

    after = set(access.effective_permissions)
    assert after == set(nurse.permission_codes)
    assert before - after == receptionist.permission_codes - nurse.permission_codes
    assert access.policy_version == access_engine.store.version


def test_inactive_roles_grant_nothing(access_engine: AccessControlEngine, assign: Callable[..., None]) -> None:
    role = access_engine.admin.create_role(RoleCreate(name="Temp Staff", permissions=["INVOICE_VIEW"]), actor_id="a")
    assign("user-1", ["Temp Staff"])
    access_engine.admin.update_role(role.id, RoleUpdate(expected_version=1, is_active=False), actor_id="a")

    assert "INVOICE_VIEW" not in access_engine.admin.get_user_access("user-1").effective_permissions


def test_every_write_publishes_a_new_version(access_engine: AccessControlEngine) -> None:
    seen: List[PolicySnapshot] = []
    access_engine.store.subscribe(seen.append)
    held = access_engine.store.load()

    access_engine.admin.create_role(RoleCreate(name="Scheduler", permissions=["APPOINTMENT_VIEW"]), actor_id="a")

    current = access_engine.store.load()
    assert current.version == held.version + 1
    assert held.role_by_name("Scheduler") is None
    assert current.role_by_name("Scheduler") is not None
    assert [snapshot.version for snapshot in seen] == [current.version]


def test_stale_role_version_is_a_conflict(access_engine: AccessControlEngine) -> None:
    role = access_engine.admin.create_role(RoleCreate(name="Front Desk", permissions=["APPOINTMENT_VIEW"]), actor_id="a")
    access_engine.admin.update_role(role.id, RoleUpdate(expected_version=1, description="v2"), actor_id="a")
    version = access_engine.store.version

    with pytest.raises(ConflictError):
        access_engine.admin.update_role(role.id, RoleUpdate(expected_version=1, description="v3"), actor_id="b")

    assert access_engine.store.version == version
    assert access_engine.admin.get_role(role.id).description == "v2"


def test_system_roles_cannot_be_modified_or_deleted(access_engine: AccessControlEngine) -> None:
    physician = access_engine.store.load().role_by_name("PHYSICIAN")

    with pytest.raises(PolicyMisconfiguration):
        access_engine.admin.update_role(
            physician.id, RoleUpdate(expected_version=physician.version, permissions=[]), actor_id="a"
        )
    with pytest.raises(PolicyMisconfiguration):
        access_engine.admin.delete_role(physician.id, actor_id="a")


def test_duplicate_role_name_is_a_conflict(access_engine: AccessControlEngine) -> None:
    with pytest.raises(ConflictError):
        access_engine.admin.create_role(RoleCreate(name="NURSE"), actor_id="a")


def test_duplicate_role_copies_permissions(access_engine: AccessControlEngine) -> None:
    nurse = access_engine.store.load().role_by_name("NURSE")

    copy = access_engine.admin.duplicate_role(nurse.id, RoleDuplicate(name="Night Nurse"), actor_id="a")

    assert copy.role_type == "CUSTOM"
    assert not copy.is_system_role
    assert set(copy.permissions) == nurse.permission_codes


def test_assigned_role_cannot_be_deleted(access_engine: AccessControlEngine, assign: Callable[..., None]) -> None:
    role = access_engine.admin.create_role(RoleCreate(name="Pharmacy"), actor_id="a")
    assign("user-1", ["Pharmacy"])

    with pytest.raises(ConflictError):
        access_engine.admin.delete_role(role.id, actor_id="a")


def test_unknown_permission_codes_are_rejected(access_engine: AccessControlEngine) -> None:
    version = access_engine.store.version

    with pytest.raises(NotFoundError):
        access_engine.admin.create_role(RoleCreate(name="Broken", permissions=["NOPE_VIEW"]), actor_id="a")
    assert access_engine.store.version == version


def test_malformed_rule_condition_is_rejected_before_write(access_engine: AccessControlEngine) -> None:
    version = access_engine.store.version

    with pytest.raises(ValidationError):
        access_engine.admin.create_rule(
            RuleCreate(
                rule_name="bad",
                resource_type="MEDICAL_RECORD",
                condition={"op": "matches_regex", "attribute": "a"},
                allow_access=True,
            ),
            actor_id="a",
        )
    assert access_engine.store.version == version
    assert access_engine.admin.list_rules() == []


def test_rule_scoped_to_unknown_role_is_rejected(access_engine: AccessControlEngine) -> None:
    with pytest.raises(NotFoundError):
        access_engine.admin.create_rule(
            RuleCreate(
                rule_name="scoped",
                resource_type="MEDICAL_RECORD",
                condition={"op": "branch_matches"},
                scope_role_id=9999,
                allow_access=True,
            ),
            actor_id="a",
        )
