"""Access check request/decision schemas."""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinic_access.core.errors import ErrorKind
from clinic_access.policy.snapshot import normalize_token


def _new_id() -> str:
    return uuid4().hex


class AccessCheckContext(BaseModel):
    """Per-request input to the rule evaluator."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, max_length=128)
    resource_type: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=100)
    resource_id: Optional[str] = Field(default=None, max_length=128)
    branch_id: Optional[str] = Field(default=None, max_length=128)
    patient_id: Optional[str] = Field(default=None, max_length=128)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: str = Field(default_factory=_new_id, max_length=120)
    # One per check; several checks may share a caller correlation id.
    decision_id: str = Field(default_factory=_new_id, max_length=64)

    @field_validator("resource_type", "action")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_token(value)

    def attribute_bag(self) -> Dict[str, Any]:
        """Caller attributes plus the request fields conditions may reference."""

        bag: Dict[str, Any] = dict(self.attributes)
        bag.update(
            {
                "request.user_id": self.user_id,
                "request.resource_type": self.resource_type,
                "request.resource_id": self.resource_id,
                "request.action": self.action,
                "request.branch_id": self.branch_id,
            }
        )
        if self.branch_id is not None:
            bag.setdefault("requester.branch_id", self.branch_id)
        if self.patient_id is not None:
            bag.setdefault("patient.id", self.patient_id)
        return bag


class AccessCheckResult(BaseModel):
    """Immutable decision returned for every access check."""

    model_config = ConfigDict(frozen=True)

    is_allowed: bool
    denial_reason: Optional[str] = None
    matched_permissions: Tuple[str, ...] = ()
    requires_emergency_access: bool = False
    required_permissions: Optional[Tuple[str, ...]] = None
    matched_rule: Optional[str] = None
    is_phi_resource: bool = False
    is_emergency_access: bool = False
    error_kind: Optional[ErrorKind] = None
    correlation_id: Optional[str] = None
    policy_version: int = 0

    @property
    def error_category(self) -> Optional[str]:
        return self.error_kind.category if self.error_kind else None


class AccessCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    resource_type: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=100)
    resource_id: Optional[str] = Field(default=None, max_length=128)
    branch_id: Optional[str] = Field(default=None, max_length=128)
    patient_id: Optional[str] = Field(default=None, max_length=128)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    emergency_justification: Optional[str] = Field(default=None, max_length=2000)
    correlation_id: Optional[str] = Field(default=None, max_length=120)
    timeout_ms: Optional[int] = Field(default=None, ge=1, le=60000)


class EmergencyAccessRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)
    resource_type: str = Field(..., min_length=1, max_length=100)
    resource_id: str = Field(..., min_length=1, max_length=128)
    justification: str = Field(..., max_length=2000)
    action: str = Field(default="VIEW", max_length=100)
    branch_id: Optional[str] = Field(default=None, max_length=128)
    patient_id: Optional[str] = Field(default=None, max_length=128)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = Field(default=None, max_length=120)


class AccessCheckResponse(BaseModel):
    """Caller-facing decision; internal error kinds collapse to a generic category."""

    is_allowed: bool
    denial_reason: Optional[str] = None
    matched_permissions: Tuple[str, ...] = ()
    requires_emergency_access: bool = False
    required_permissions: Optional[Tuple[str, ...]] = None
    is_emergency_access: bool = False
    error_category: Optional[str] = None
    correlation_id: Optional[str] = None

    @classmethod
    def from_result(cls, result: AccessCheckResult) -> "AccessCheckResponse":
        return cls(
            is_allowed=result.is_allowed,
            denial_reason=result.denial_reason,
            matched_permissions=result.matched_permissions,
            requires_emergency_access=result.requires_emergency_access,
            required_permissions=result.required_permissions,
            is_emergency_access=result.is_emergency_access,
            error_category=result.error_category,
            correlation_id=result.correlation_id,
        )
