"""Policy store: lock-free snapshot reads, serialized validated writes."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Set, TypeVar
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from clinic_access.core.database import SessionFactory, session_scope
from clinic_access.core.errors import PolicyMisconfiguration, ValidationError
from clinic_access.models.data_access_rule import DataAccessRule
from clinic_access.models.permission import Permission
from clinic_access.models.role import Role
from clinic_access.models.user_assignment import UserPermission, UserRole
from clinic_access.policy.conditions import parse_condition
from clinic_access.policy.snapshot import (
    PermissionDef,
    PolicySnapshot,
    RoleDef,
    RuleDef,
    UserAssignment,
)

T = TypeVar("T")
PolicyMutation = Callable[[Session, PolicySnapshot], T]
SnapshotListener = Callable[[PolicySnapshot], None]

LOGGER = logging.getLogger("clinic_access.policy.store")


def read_snapshot(session: Session, *, version: int, epoch: str = "") -> PolicySnapshot:
    """Materialize a validated snapshot from the persisted policy tables."""

    permissions = [
        PermissionDef(
            code=permission.code,
            name=permission.name,
            category=permission.category,
            resource_type=permission.resource_type,
            is_phi_related=permission.is_phi_related,
            is_system_permission=permission.is_system_permission,
            description=permission.description,
        )
        for permission in session.scalars(select(Permission))
    ]

    roles = [
        RoleDef(
            id=role.id,
            name=role.name,
            role_type=role.role_type,
            is_system_role=role.is_system_role,
            permission_codes=frozenset(permission.code for permission in role.permissions),
            version=role.version,
            is_active=role.is_active,
            description=role.description,
        )
        for role in session.scalars(select(Role).options(selectinload(Role.permissions)))
    ]

    rules: List[RuleDef] = []
    for rule in session.scalars(select(DataAccessRule)):
        try:
            condition = parse_condition(rule.condition)
        except ValidationError as exc:
            raise PolicyMisconfiguration(f"Rule '{rule.rule_name}' has an invalid condition: {exc}") from exc
        rules.append(
            RuleDef(
                id=rule.id,
                rule_name=rule.rule_name,
                resource_type=rule.resource_type,
                condition=condition,
                allow_access=rule.allow_access,
                priority=rule.priority,
                scope_role_id=rule.scope_role_id,
                is_active=rule.is_active,
                version=rule.version,
            )
        )

    role_ids: Dict[str, Set[int]] = defaultdict(set)
    for user_id, role_id in session.execute(select(UserRole.user_id, UserRole.role_id)):
        role_ids[user_id].add(role_id)

    direct_codes: Dict[str, Set[str]] = defaultdict(set)
    grants = session.execute(
        select(UserPermission.user_id, Permission.code).join(
            Permission, UserPermission.permission_id == Permission.id
        )
    )
    for user_id, code in grants:
        direct_codes[user_id].add(code)

    assignments = [
        UserAssignment(
            user_id=user_id,
            role_ids=frozenset(role_ids.get(user_id, ())),
            direct_permission_codes=frozenset(direct_codes.get(user_id, ())),
        )
        for user_id in set(role_ids) | set(direct_codes)
    ]

    return PolicySnapshot.build(
        version=version,
        epoch=epoch,
        permissions=permissions,
        roles=roles,
        rules=rules,
        assignments=assignments,
    )


class PolicyStore:
    """Owns the process-wide policy snapshot.

    ``load`` is a plain attribute read and never blocks. ``update`` runs the
    mutation and the rebuild in one transaction under a single-writer lock;
    the new snapshot is only published after the transaction commits.
    """

    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session_factory = session_factory
        self._write_lock = threading.Lock()
        # Versions restart at zero in every process, so shared cache entries are scoped by epoch.
        self._epoch = uuid4().hex
        self._snapshot: PolicySnapshot = PolicySnapshot.empty(self._epoch)
        self._listeners: List[SnapshotListener] = []

    def load(self) -> PolicySnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    @property
    def epoch(self) -> str:
        return self._epoch

    def subscribe(self, listener: SnapshotListener) -> None:
        """Register a callback invoked after every snapshot swap."""

        self._listeners.append(listener)

    def refresh(self) -> PolicySnapshot:
        """Rebuild the snapshot from storage, e.g. at startup or after an out-of-band edit."""

        self.update(lambda session, current: None)
        return self._snapshot

    def update(self, mutation: PolicyMutation) -> T:
        with self._write_lock:
            current = self._snapshot
            with self._session_factory() as session:
                result = mutation(session, current)
                session.flush()
                candidate = read_snapshot(session, version=current.version + 1, epoch=self._epoch)
            self._snapshot = candidate

        LOGGER.info(
            "policy_snapshot_swapped",
            extra={
                "previous_version": current.version,
                "version": candidate.version,
                "roles": len(candidate.roles),
                "rules": len(candidate.rules),
            },
        )
        for listener in self._listeners:
            listener(candidate)
        return result
