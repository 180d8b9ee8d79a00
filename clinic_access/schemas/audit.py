"""Audit entry, query and report schemas."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class AuditEventType(str, Enum):
    ACCESS_GRANTED = "ACCESS_GRANTED"
    ACCESS_DENIED = "ACCESS_DENIED"
    EMERGENCY_ACCESS = "EMERGENCY_ACCESS"
    POLICY_CHANGE = "POLICY_CHANGE"
    RETENTION_PURGE = "RETENTION_PURGE"
    EMERGENCY_REVIEW = "EMERGENCY_REVIEW"
    INVESTIGATION = "INVESTIGATION"
    EXTERNAL = "EXTERNAL"


class AuditEventCategory(str, Enum):
    AUTHORIZATION = "AUTHORIZATION"
    PHI_ACCESS = "PHI_ACCESS"
    EMERGENCY = "EMERGENCY"
    ADMINISTRATION = "ADMINISTRATION"
    SECURITY = "SECURITY"


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditEntry(BaseModel):
    """Canonical audit entry submitted to the pipeline by the engine or by upstream services."""

    idempotency_key: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Producer-supplied key; redelivered entries with the same key are stored once.",
    )
    event_type: str = Field(..., max_length=50)
    event_category: str = Field(..., max_length=50)
    action: str = Field(..., max_length=100)
    resource_type: str = Field(..., max_length=100)
    resource_id: Optional[str] = Field(default=None, max_length=100)
    user_id: Optional[str] = Field(default=None, max_length=128)
    patient_id: Optional[str] = Field(default=None, max_length=128)
    branch_id: Optional[str] = Field(default=None, max_length=64)
    is_phi_access: bool = False
    is_emergency_access: bool = False
    emergency_justification: Optional[str] = None
    reason: Optional[str] = None
    is_success: bool = True
    correlation_id: str = Field(..., max_length=120)
    duration_ms: Optional[int] = Field(default=None, ge=0)
    source: str = Field(default="clinic-access-core", max_length=128)
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Timestamp (UTC) the decision was made.",
    )

    @field_validator("event_type", "event_category", mode="before")
    @classmethod
    def _enum_value(cls, value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        return value

    @model_validator(mode="after")
    def _enforce_timezone(self) -> "AuditEntry":
        self.timestamp = _utc(self.timestamp)
        return self


class AuditLogResponse(BaseModel):
    id: int
    timestamp: datetime
    event_type: str
    event_category: str
    action: str
    resource_type: str
    resource_id: Optional[str]
    user_id: Optional[str]
    patient_id: Optional[str]
    branch_id: Optional[str]
    is_phi_access: bool
    is_emergency_access: bool
    emergency_justification: Optional[str]
    reason: Optional[str]
    is_success: bool
    correlation_id: str
    duration_ms: Optional[int]
    source: str

    model_config = ConfigDict(from_attributes=True)


class AuditLogQuery(BaseModel):
    """Filter for paginated audit retrieval; every field narrows the result."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None
    user_id: Optional[str] = None
    patient_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    event_type: Optional[str] = None
    event_category: Optional[str] = None
    is_phi_access: Optional[bool] = None
    is_emergency_access: Optional[bool] = None
    is_success: Optional[bool] = None
    correlation_id: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc(value) if value is not None else None


class AuditQueryRequest(AuditLogQuery):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=500)


class AuditLogPage(BaseModel):
    items: List[AuditLogResponse]
    page: int
    page_size: int
    total: int


class PHIAccessBreakdown(BaseModel):
    key: str
    access_count: int
    denied_count: int = 0
    emergency_count: int = 0


class PHIAccessReport(BaseModel):
    start: datetime
    end: datetime
    total_accesses: int
    unique_users: int
    unique_patients: int
    emergency_accesses: int
    denied_accesses: int
    by_user: List[PHIAccessBreakdown]
    by_resource_type: List[PHIAccessBreakdown]
    by_day: List[PHIAccessBreakdown]


class EmergencyAccessSummary(BaseModel):
    audit_log_id: int
    timestamp: datetime
    user_id: Optional[str]
    patient_id: Optional[str]
    resource_type: str
    resource_id: Optional[str]
    justification: Optional[str]
    was_reviewed: bool
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    is_justified: Optional[bool] = None
    notes: Optional[str] = None


class EmergencyAccessReviewCreate(BaseModel):
    reviewed_by: str = Field(..., min_length=1, max_length=128)
    is_justified: bool = True
    notes: Optional[str] = Field(default=None, max_length=4000)


class AuditVerificationResponse(BaseModel):
    checked: int
    valid: bool
    failed_ids: List[int] = Field(default_factory=list)

