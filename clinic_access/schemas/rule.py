"""Data access rule schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_access.policy.snapshot import normalize_token


class RuleCreate(BaseModel):
    rule_name: str = Field(..., min_length=1, max_length=200)
    resource_type: str = Field(..., min_length=1, max_length=100)
    condition: Dict[str, Any] = Field(..., description="Condition expression, discriminated by 'op'.")
    scope_role_id: Optional[int] = None
    allow_access: bool
    priority: int = Field(default=0, ge=-100000, le=100000)
    is_active: bool = True

    @field_validator("resource_type")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_token(value)


class RuleUpdate(BaseModel):
    expected_version: int = Field(..., ge=1)
    rule_name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    condition: Optional[Dict[str, Any]] = None
    scope_role_id: Optional[int] = None
    clear_scope_role: bool = False
    allow_access: Optional[bool] = None
    priority: Optional[int] = Field(default=None, ge=-100000, le=100000)
    is_active: Optional[bool] = None


class RuleResponse(BaseModel):
    id: int
    rule_name: str
    resource_type: str
    condition: Dict[str, Any]
    scope_role_id: Optional[int]
    allow_access: bool
    priority: int
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
