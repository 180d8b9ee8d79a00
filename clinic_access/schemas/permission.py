"""Permission schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_access.policy.snapshot import normalize_token


class PermissionCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=100, description="Upper snake code, e.g. LAB_RESULT_SIGN.")
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    category: str = Field(..., min_length=1, max_length=50)
    resource_type: str = Field(..., min_length=1, max_length=100)
    is_phi_related: bool = False

    @field_validator("code", "category", "resource_type")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_token(value)


class PermissionResponse(BaseModel):
    id: int
    code: str
    name: str
    description: Optional[str]
    category: str
    resource_type: str
    is_phi_related: bool
    is_system_permission: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
