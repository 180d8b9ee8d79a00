"""Pydantic schemas for API payloads."""

from clinic_access.schemas.access import (
    AccessCheckContext,
    AccessCheckRequest,
    AccessCheckResponse,
    AccessCheckResult,
    EmergencyAccessRequest,
)
from clinic_access.schemas.assignment import UserAccessResponse, UserRolesAssign
from clinic_access.schemas.audit import AuditEntry, AuditLogQuery, AuditLogResponse
from clinic_access.schemas.permission import PermissionCreate, PermissionResponse
from clinic_access.schemas.role import RoleCreate, RoleResponse, RoleUpdate
from clinic_access.schemas.rule import RuleCreate, RuleResponse, RuleUpdate

__all__ = [
    "AccessCheckContext",
    "AccessCheckRequest",
    "AccessCheckResponse",
    "AccessCheckResult",
    "AuditEntry",
    "AuditLogQuery",
    "AuditLogResponse",
    "EmergencyAccessRequest",
    "PermissionCreate",
    "PermissionResponse",
    "RoleCreate",
    "RoleResponse",
    "RoleUpdate",
    "RuleCreate",
    "RuleResponse",
    "RuleUpdate",
    "UserAccessResponse",
    "UserRolesAssign",
]
