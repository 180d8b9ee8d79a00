"""Role schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RoleBase(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class RoleCreate(RoleBase):
    role_type: str = Field(default="CUSTOM", max_length=50)
    permissions: List[str] = Field(default_factory=list, description="Permission codes granted by the role.")

    @field_validator("permissions")
    @classmethod
    def _unique(cls, value: List[str]) -> List[str]:
        return sorted(set(value))


class RoleUpdate(BaseModel):
    expected_version: int = Field(..., ge=1, description="Version the caller last read.")
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
    permissions: Optional[List[str]] = None

    @field_validator("permissions")
    @classmethod
    def _unique(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        return sorted(set(value)) if value is not None else None


class RoleDuplicate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class RoleResponse(RoleBase):
    id: int
    role_type: str
    is_system_role: bool
    is_active: bool
    version: int
    permissions: List[str]
    user_count: int = 0
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
