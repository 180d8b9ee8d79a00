"""Immutable, versioned view of the access policy."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from clinic_access.core.errors import PolicyMisconfiguration
from clinic_access.policy.conditions import Condition

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_token(value: str) -> str:
    """``MedicalRecord``, ``medical-record`` and ``medical record`` all become ``MEDICAL_RECORD``."""

    cleaned = _CAMEL_BOUNDARY.sub("_", value.strip())
    return re.sub(r"[\s\-]+", "_", cleaned).upper()


def base_permission_code(resource_type: str, action: str) -> str:
    return f"{normalize_token(resource_type)}_{normalize_token(action)}"


@dataclass(frozen=True)
class PermissionDef:
    code: str
    name: str
    category: str
    resource_type: str
    is_phi_related: bool
    is_system_permission: bool
    description: Optional[str] = None


@dataclass(frozen=True)
class RoleDef:
    id: int
    name: str
    role_type: str
    is_system_role: bool
    permission_codes: FrozenSet[str]
    version: int
    is_active: bool = True
    description: Optional[str] = None


@dataclass(frozen=True)
class RuleDef:
    id: int
    rule_name: str
    resource_type: str
    condition: Condition
    allow_access: bool
    priority: int
    scope_role_id: Optional[int] = None
    is_active: bool = True
    version: int = 1

    @property
    def evaluation_key(self) -> Tuple[int, int]:
        return (-self.priority, self.id)


@dataclass(frozen=True)
class UserAssignment:
    user_id: str
    role_ids: FrozenSet[int] = frozenset()
    direct_permission_codes: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class PolicySnapshot:
    """Point-in-time policy; shared by every reader and never mutated."""

    version: int
    # Identifies the store that built the snapshot; versions only order snapshots within one epoch.
    epoch: str
    permissions: Mapping[str, PermissionDef]
    roles: Mapping[int, RoleDef]
    rules: Tuple[RuleDef, ...]
    assignments: Mapping[str, UserAssignment]
    _rules_by_resource: Mapping[str, Tuple[RuleDef, ...]] = field(repr=False, compare=False)
    _phi_resource_types: FrozenSet[str] = field(repr=False, compare=False)

    @classmethod
    def build(
        cls,
        *,
        version: int,
        epoch: str = "",
        permissions: Iterable[PermissionDef] = (),
        roles: Iterable[RoleDef] = (),
        rules: Iterable[RuleDef] = (),
        assignments: Iterable[UserAssignment] = (),
    ) -> "PolicySnapshot":
        permission_map: Dict[str, PermissionDef] = {}
        for permission in permissions:
            if permission.code in permission_map:
                raise PolicyMisconfiguration(f"Duplicate permission code '{permission.code}'")
            permission_map[permission.code] = permission

        role_map: Dict[int, RoleDef] = {}
        for role in roles:
            if role.id in role_map:
                raise PolicyMisconfiguration(f"Duplicate role id {role.id}")
            role_map[role.id] = role

        ordered_rules = tuple(sorted(rules, key=lambda rule: rule.evaluation_key))
        grouped: Dict[str, List[RuleDef]] = {}
        for rule in ordered_rules:
            grouped.setdefault(rule.resource_type, []).append(rule)

        assignment_map = {assignment.user_id: assignment for assignment in assignments}
        phi_types = frozenset(
            permission.resource_type for permission in permission_map.values() if permission.is_phi_related
        )

        snapshot = cls(
            version=version,
            epoch=epoch,
            permissions=MappingProxyType(permission_map),
            roles=MappingProxyType(role_map),
            rules=ordered_rules,
            assignments=MappingProxyType(assignment_map),
            _rules_by_resource=MappingProxyType({key: tuple(value) for key, value in grouped.items()}),
            _phi_resource_types=phi_types,
        )
        snapshot.validate()
        return snapshot

    @classmethod
    def empty(cls, epoch: str = "") -> "PolicySnapshot":
        return cls.build(version=0, epoch=epoch)

    def validate(self) -> None:
        """Raise ``PolicyMisconfiguration`` when references do not resolve."""

        for role in self.roles.values():
            unknown = role.permission_codes - self.permissions.keys()
            if unknown:
                raise PolicyMisconfiguration(
                    f"Role '{role.name}' references unknown permissions: {', '.join(sorted(unknown))}"
                )

        seen_rule_ids = set()
        for rule in self.rules:
            if rule.id in seen_rule_ids:
                raise PolicyMisconfiguration(f"Duplicate rule id {rule.id}")
            seen_rule_ids.add(rule.id)
            if rule.scope_role_id is not None and rule.scope_role_id not in self.roles:
                raise PolicyMisconfiguration(
                    f"Rule '{rule.rule_name}' references unknown role {rule.scope_role_id}"
                )

        for assignment in self.assignments.values():
            missing_roles = assignment.role_ids - self.roles.keys()
            if missing_roles:
                raise PolicyMisconfiguration(
                    f"User {assignment.user_id} is assigned unknown roles: {sorted(missing_roles)}"
                )
            missing_permissions = assignment.direct_permission_codes - self.permissions.keys()
            if missing_permissions:
                raise PolicyMisconfiguration(
                    f"User {assignment.user_id} holds unknown permissions: {sorted(missing_permissions)}"
                )

    def assignment_for(self, user_id: str) -> UserAssignment:
        return self.assignments.get(user_id) or UserAssignment(user_id=user_id)

    def rules_for(self, resource_type: str) -> Tuple[RuleDef, ...]:
        """Rules for ``resource_type`` in evaluation order: priority desc, id asc."""

        return self._rules_by_resource.get(resource_type, ())

    def is_phi_resource(self, resource_type: str) -> bool:
        return resource_type in self._phi_resource_types

    def role_by_name(self, name: str) -> Optional[RoleDef]:
        for role in self.roles.values():
            if role.name == name:
                return role
        return None
