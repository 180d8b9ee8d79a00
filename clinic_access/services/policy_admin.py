"""Administrative operations on permissions, roles, rules and user assignments.

Every change runs through ``PolicyStore.update`` so it is validated against
the full policy, audited in the same transaction and published as a new
snapshot version.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from clinic_access.core.database import SessionFactory, session_scope
from clinic_access.core.errors import ConflictError, NotFoundError, PolicyMisconfiguration
from clinic_access.models.data_access_rule import DataAccessRule
from clinic_access.models.permission import Permission
from clinic_access.models.role import Role
from clinic_access.models.role_permission import RolePermission
from clinic_access.models.user_assignment import UserPermission, UserRole
from clinic_access.policy.catalog import DEFAULT_PERMISSIONS, SYSTEM_ROLES
from clinic_access.policy.conditions import condition_to_dict, parse_condition
from clinic_access.policy.resolver import PermissionResolver
from clinic_access.policy.snapshot import PolicySnapshot
from clinic_access.policy.store import PolicyStore
from clinic_access.schemas.assignment import UserAccessResponse, UserRoleSummary, UserRolesAssign
from clinic_access.schemas.permission import PermissionCreate
from clinic_access.schemas.role import RoleCreate, RoleDuplicate, RoleResponse, RoleUpdate
from clinic_access.schemas.rule import RuleCreate, RuleUpdate
from clinic_access.services.audit import AuditService

SYSTEM_ROLE_TYPE = "SYSTEM"


def role_response(session: Session, role: Role) -> RoleResponse:
    user_count = session.scalar(select(func.count()).select_from(UserRole).where(UserRole.role_id == role.id)) or 0
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        role_type=role.role_type,
        is_system_role=role.is_system_role,
        is_active=role.is_active,
        version=role.version,
        permissions=sorted(permission.code for permission in role.permissions),
        user_count=user_count,
        created_at=role.created_at,
        updated_at=role.updated_at,
    )


class PolicyAdminService:
    """Coordinates policy edits and user assignments."""

    def __init__(
        self,
        store: PolicyStore,
        resolver: PermissionResolver,
        *,
        session_factory: SessionFactory = session_scope,
        source: str = "clinic-access-core",
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._session_factory = session_factory
        self._source = source
        self._logger = logging.getLogger("clinic_access.services.policy_admin")

    # Catalogue

    def ensure_catalog(self) -> None:
        """Idempotently seed the permission catalogue and system roles."""

        def mutation(session: Session, current: PolicySnapshot) -> None:
            existing = {permission.code: permission for permission in session.scalars(select(Permission))}
            for seed in DEFAULT_PERMISSIONS:
                if seed.code in existing:
                    continue
                permission = Permission(
                    code=seed.code,
                    name=seed.name,
                    category=seed.category,
                    resource_type=seed.resource_type,
                    is_phi_related=seed.is_phi_related,
                    is_system_permission=seed.is_system_permission,
                )
                session.add(permission)
                existing[seed.code] = permission
            session.flush()

            for name, (description, codes) in SYSTEM_ROLES.items():
                role = session.scalar(select(Role).where(Role.name == name))
                if role is None:
                    role = Role(
                        name=name,
                        description=description,
                        role_type=SYSTEM_ROLE_TYPE,
                        is_system_role=True,
                    )
                    session.add(role)
                wanted = {existing[code] for code in codes}
                if set(role.permissions) != wanted:
                    role.permissions = sorted(wanted, key=lambda permission: permission.code)

        self._store.update(mutation)
        self._logger.info("policy_catalog_ensured", extra={"policy_version": self._store.version})

    # Permissions

    def list_permissions(self, *, category: Optional[str] = None) -> List[Permission]:
        with self._session_factory() as session:
            stmt = select(Permission).order_by(Permission.category, Permission.code)
            if category:
                stmt = stmt.where(Permission.category == category)
            return list(session.scalars(stmt))

    def create_permission(self, payload: PermissionCreate, *, actor_id: Optional[str]) -> Permission:
        def mutation(session: Session, current: PolicySnapshot) -> Permission:
            if session.scalar(select(Permission).where(Permission.code == payload.code)) is not None:
                raise ConflictError(f"Permission '{payload.code}' already exists")
            permission = Permission(
                code=payload.code,
                name=payload.name,
                description=payload.description,
                category=payload.category,
                resource_type=payload.resource_type,
                is_phi_related=payload.is_phi_related,
                is_system_permission=False,
            )
            session.add(permission)
            session.flush()
            self._audit(session).record(
                action="permission.create",
                actor_id=actor_id,
                resource_type="PERMISSION",
                resource_id=payload.code,
                details=payload.model_dump(),
            )
            return permission

        permission = self._store.update(mutation)
        self._logger.info("permission_created", extra={"code": permission.code, "actor_id": actor_id})
        return permission

    def delete_permission(self, code: str, *, actor_id: Optional[str]) -> None:
        def mutation(session: Session, current: PolicySnapshot) -> None:
            permission = session.scalar(select(Permission).where(Permission.code == code))
            if permission is None:
                raise NotFoundError(f"Permission '{code}' not found")
            if permission.is_system_permission:
                raise PolicyMisconfiguration(f"System permission '{code}' cannot be deleted")
            in_roles = session.scalar(
                select(func.count()).select_from(RolePermission).where(RolePermission.permission_id == permission.id)
            )
            granted = session.scalar(
                select(func.count()).select_from(UserPermission).where(UserPermission.permission_id == permission.id)
            )
            if in_roles or granted:
                raise ConflictError(f"Permission '{code}' is still granted by roles or directly to users")
            session.delete(permission)
            self._audit(session).record(
                action="permission.delete",
                actor_id=actor_id,
                resource_type="PERMISSION",
                resource_id=code,
            )

        self._store.update(mutation)
        self._logger.info("permission_deleted", extra={"code": code, "actor_id": actor_id})

    # Roles

    def list_roles(self, *, include_inactive: bool = True) -> List[RoleResponse]:
        with self._session_factory() as session:
            stmt = select(Role).options(selectinload(Role.permissions)).order_by(Role.name)
            if not include_inactive:
                stmt = stmt.where(Role.is_active.is_(True))
            return [role_response(session, role) for role in session.scalars(stmt)]

    def get_role(self, role_id: int) -> RoleResponse:
        with self._session_factory() as session:
            return role_response(session, self._get_role(session, role_id))

    def create_role(self, payload: RoleCreate, *, actor_id: Optional[str]) -> RoleResponse:
        def mutation(session: Session, current: PolicySnapshot) -> RoleResponse:
            self._ensure_unique_role_name(session, payload.name)
            role = Role(
                name=payload.name,
                description=payload.description,
                role_type=payload.role_type,
                is_system_role=False,
            )
            role.permissions = self._load_permissions(session, payload.permissions)
            session.add(role)
            session.flush()
            self._audit(session).record(
                action="role.create",
                actor_id=actor_id,
                resource_type="ROLE",
                resource_id=str(role.id),
                details={"name": role.name, "permissions": payload.permissions},
            )
            return role_response(session, role)

        response = self._store.update(mutation)
        self._logger.info("role_created", extra={"role_id": response.id, "actor_id": actor_id})
        return response

    def update_role(self, role_id: int, payload: RoleUpdate, *, actor_id: Optional[str]) -> RoleResponse:
        def mutation(session: Session, current: PolicySnapshot) -> RoleResponse:
            role = self._get_role(session, role_id)
            if role.is_system_role:
                raise PolicyMisconfiguration(f"System role '{role.name}' cannot be modified")
            if role.version != payload.expected_version:
                raise ConflictError(
                    f"Role {role_id} is at version {role.version}, not {payload.expected_version}"
                )

            updates = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
            if "name" in updates and updates["name"] != role.name:
                self._ensure_unique_role_name(session, updates["name"])
                role.name = updates["name"]
            if "description" in updates:
                role.description = updates["description"]
            if "is_active" in updates and updates["is_active"] is not None:
                role.is_active = updates["is_active"]
            if updates.get("permissions") is not None:
                role.permissions = self._load_permissions(session, updates["permissions"])
            role.version += 1
            session.flush()

            self._audit(session).record(
                action="role.update",
                actor_id=actor_id,
                resource_type="ROLE",
                resource_id=str(role.id),
                details={"changes": updates, "version": role.version},
            )
            return role_response(session, role)

        response = self._store.update(mutation)
        self._logger.info(
            "role_updated",
            extra={"role_id": role_id, "version": response.version, "actor_id": actor_id},
        )
        return response

    def delete_role(self, role_id: int, *, actor_id: Optional[str]) -> None:
        def mutation(session: Session, current: PolicySnapshot) -> None:
            role = self._get_role(session, role_id)
            if role.is_system_role:
                raise PolicyMisconfiguration(f"System role '{role.name}' cannot be deleted")
            if role.user_roles:
                raise ConflictError(f"Role '{role.name}' is still assigned to {len(role.user_roles)} user(s)")
            scoped_rules = session.scalar(
                select(func.count()).select_from(DataAccessRule).where(DataAccessRule.scope_role_id == role_id)
            )
            if scoped_rules:
                raise ConflictError(f"Role '{role.name}' is referenced by {scoped_rules} data access rule(s)")
            name = role.name
            session.delete(role)
            self._audit(session).record(
                action="role.delete",
                actor_id=actor_id,
                resource_type="ROLE",
                resource_id=str(role_id),
                details={"name": name},
            )

        self._store.update(mutation)
        self._logger.info("role_deleted", extra={"role_id": role_id, "actor_id": actor_id})

    def duplicate_role(self, role_id: int, payload: RoleDuplicate, *, actor_id: Optional[str]) -> RoleResponse:
        def mutation(session: Session, current: PolicySnapshot) -> RoleResponse:
            source = self._get_role(session, role_id)
            self._ensure_unique_role_name(session, payload.name)
            role = Role(
                name=payload.name,
                description=payload.description if payload.description is not None else source.description,
                role_type="CUSTOM",
                is_system_role=False,
            )
            role.permissions = list(source.permissions)
            session.add(role)
            session.flush()
            self._audit(session).record(
                action="role.duplicate",
                actor_id=actor_id,
                resource_type="ROLE",
                resource_id=str(role.id),
                details={"source_role_id": role_id, "name": role.name},
            )
            return role_response(session, role)

        response = self._store.update(mutation)
        self._logger.info(
            "role_duplicated",
            extra={"role_id": response.id, "source_role_id": role_id, "actor_id": actor_id},
        )
        return response

    # Data access rules

    def list_rules(self, *, resource_type: Optional[str] = None) -> List[DataAccessRule]:
        with self._session_factory() as session:
            stmt = select(DataAccessRule).order_by(
                DataAccessRule.resource_type, DataAccessRule.priority.desc(), DataAccessRule.id
            )
            if resource_type:
                stmt = stmt.where(DataAccessRule.resource_type == resource_type)
            return list(session.scalars(stmt))

    def create_rule(self, payload: RuleCreate, *, actor_id: Optional[str]) -> DataAccessRule:
        condition = condition_to_dict(parse_condition(payload.condition))

        def mutation(session: Session, current: PolicySnapshot) -> DataAccessRule:
            if payload.scope_role_id is not None:
                self._get_role(session, payload.scope_role_id)
            rule = DataAccessRule(
                rule_name=payload.rule_name,
                resource_type=payload.resource_type,
                condition=condition,
                scope_role_id=payload.scope_role_id,
                allow_access=payload.allow_access,
                priority=payload.priority,
                is_active=payload.is_active,
                version=1,
            )
            session.add(rule)
            session.flush()
            self._audit(session).record(
                action="rule.create",
                actor_id=actor_id,
                resource_type="DATA_ACCESS_RULE",
                resource_id=str(rule.id),
                details={
                    "rule_name": rule.rule_name,
                    "resource_type": rule.resource_type,
                    "allow_access": rule.allow_access,
                    "priority": rule.priority,
                },
            )
            return rule

        rule = self._store.update(mutation)
        self._logger.info("rule_created", extra={"rule_id": rule.id, "actor_id": actor_id})
        return rule

    def update_rule(self, rule_id: int, payload: RuleUpdate, *, actor_id: Optional[str]) -> DataAccessRule:
        condition = condition_to_dict(parse_condition(payload.condition)) if payload.condition is not None else None

        def mutation(session: Session, current: PolicySnapshot) -> DataAccessRule:
            rule = self._get_rule(session, rule_id)
            if rule.version != payload.expected_version:
                raise ConflictError(f"Rule {rule_id} is at version {rule.version}, not {payload.expected_version}")
            changes = payload.model_dump(exclude_unset=True, exclude={"expected_version"})
            if payload.rule_name is not None:
                rule.rule_name = payload.rule_name
            if condition is not None:
                rule.condition = condition
            if payload.clear_scope_role:
                rule.scope_role_id = None
            elif payload.scope_role_id is not None:
                self._get_role(session, payload.scope_role_id)
                rule.scope_role_id = payload.scope_role_id
            if payload.allow_access is not None:
                rule.allow_access = payload.allow_access
            if payload.priority is not None:
                rule.priority = payload.priority
            if payload.is_active is not None:
                rule.is_active = payload.is_active
            rule.version += 1
            session.flush()
            self._audit(session).record(
                action="rule.update",
                actor_id=actor_id,
                resource_type="DATA_ACCESS_RULE",
                resource_id=str(rule.id),
                details={"changes": changes, "version": rule.version},
            )
            return rule

        rule = self._store.update(mutation)
        self._logger.info("rule_updated", extra={"rule_id": rule_id, "version": rule.version, "actor_id": actor_id})
        return rule

    def delete_rule(self, rule_id: int, *, actor_id: Optional[str]) -> None:
        def mutation(session: Session, current: PolicySnapshot) -> None:
            rule = self._get_rule(session, rule_id)
            name = rule.rule_name
            session.delete(rule)
            self._audit(session).record(
                action="rule.delete",
                actor_id=actor_id,
                resource_type="DATA_ACCESS_RULE",
                resource_id=str(rule_id),
                details={"rule_name": name},
            )

        self._store.update(mutation)
        self._logger.info("rule_deleted", extra={"rule_id": rule_id, "actor_id": actor_id})

    # User assignments

    def assign_roles(self, user_id: str, payload: UserRolesAssign, *, actor_id: Optional[str]) -> UserAccessResponse:
        """Replace the user's role set (and direct grants when provided)."""

        def mutation(session: Session, current: PolicySnapshot) -> None:
            wanted = set(payload.role_ids)
            found = set(session.scalars(select(Role.id).where(Role.id.in_(wanted)))) if wanted else set()
            missing = wanted - found
            if missing:
                raise NotFoundError(f"Roles not found: {sorted(missing)}")

            current_rows = list(session.scalars(select(UserRole).where(UserRole.user_id == user_id)))
            held = {row.role_id for row in current_rows}
            for row in current_rows:
                if row.role_id not in wanted:
                    session.delete(row)
            for role_id in sorted(wanted - held):
                session.add(UserRole(user_id=user_id, role_id=role_id, assigned_by=payload.assigned_by or actor_id))

            details = {"role_ids": sorted(wanted), "previous_role_ids": sorted(held)}
            if payload.direct_permissions is not None:
                permissions = self._load_permissions(session, payload.direct_permissions)
                grants = list(session.scalars(select(UserPermission).where(UserPermission.user_id == user_id)))
                granted_ids = {grant.permission_id for grant in grants}
                wanted_ids = {permission.id for permission in permissions}
                for grant in grants:
                    if grant.permission_id not in wanted_ids:
                        session.delete(grant)
                for permission in permissions:
                    if permission.id not in granted_ids:
                        session.add(
                            UserPermission(
                                user_id=user_id,
                                permission_id=permission.id,
                                granted_by=payload.assigned_by or actor_id,
                            )
                        )
                details["direct_permissions"] = sorted(payload.direct_permissions)

            self._audit(session).record(
                action="user.roles.assign",
                actor_id=actor_id,
                resource_type="USER",
                resource_id=user_id,
                details=details,
            )

        self._store.update(mutation)
        self._logger.info("user_roles_assigned", extra={"user_id": user_id, "actor_id": actor_id})
        return self.get_user_access(user_id)

    def remove_role(self, user_id: str, role_id: int, *, actor_id: Optional[str]) -> UserAccessResponse:
        def mutation(session: Session, current: PolicySnapshot) -> None:
            row = session.scalar(select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id))
            if row is None:
                raise NotFoundError(f"User {user_id} does not hold role {role_id}")
            session.delete(row)
            self._audit(session).record(
                action="user.roles.remove",
                actor_id=actor_id,
                resource_type="USER",
                resource_id=user_id,
                details={"role_id": role_id},
            )

        self._store.update(mutation)
        self._logger.info("user_role_removed", extra={"user_id": user_id, "role_id": role_id, "actor_id": actor_id})
        return self.get_user_access(user_id)

    def get_user_access(self, user_id: str) -> UserAccessResponse:
        snapshot = self._store.load()
        assignment = snapshot.assignment_for(user_id)
        roles = sorted(
            (snapshot.roles[role_id] for role_id in assignment.role_ids if role_id in snapshot.roles),
            key=lambda role: role.name,
        )
        return UserAccessResponse(
            user_id=user_id,
            roles=[UserRoleSummary(id=role.id, name=role.name, is_active=role.is_active) for role in roles],
            direct_permissions=sorted(assignment.direct_permission_codes),
            effective_permissions=sorted(self._resolver.resolve(user_id, snapshot)),
            policy_version=snapshot.version,
        )

    # Helpers

    def _audit(self, session: Session) -> AuditService:
        return AuditService(session, source=self._source)

    @staticmethod
    def _get_role(session: Session, role_id: int) -> Role:
        role = session.get(Role, role_id)
        if role is None:
            raise NotFoundError(f"Role {role_id} not found")
        return role

    @staticmethod
    def _get_rule(session: Session, rule_id: int) -> DataAccessRule:
        rule = session.get(DataAccessRule, rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")
        return rule

    @staticmethod
    def _ensure_unique_role_name(session: Session, name: str) -> None:
        if session.scalar(select(Role.id).where(Role.name == name)) is not None:
            raise ConflictError(f"Role '{name}' already exists")

    @staticmethod
    def _load_permissions(session: Session, codes: Iterable[str]) -> List[Permission]:
        wanted = sorted(set(codes))
        if not wanted:
            return []
        permissions = list(session.scalars(select(Permission).where(Permission.code.in_(wanted))))
        missing = set(wanted) - {permission.code for permission in permissions}
        if missing:
            raise NotFoundError(f"Permissions not found: {', '.join(sorted(missing))}")
        return sorted(permissions, key=lambda permission: permission.code)
