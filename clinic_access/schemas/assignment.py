"""User role assignment schemas."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class UserRolesAssign(BaseModel):
    """Replaces the user's role set; direct grants are replaced only when given."""

    role_ids: List[int] = Field(default_factory=list)
    direct_permissions: Optional[List[str]] = None
    assigned_by: Optional[str] = Field(default=None, max_length=128)


class UserRoleSummary(BaseModel):
    id: int
    name: str
    is_active: bool


class UserAccessResponse(BaseModel):
    user_id: str
    roles: List[UserRoleSummary]
    direct_permissions: List[str]
    effective_permissions: List[str]
    policy_version: int
