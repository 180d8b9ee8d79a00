"""Retention policy and anomaly configuration schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from clinic_access.models.anomaly import AnomalyRuleType, Severity


class RetentionPolicyUpsert(BaseModel):
    retention_days: int = Field(..., ge=1)
    archive_before_delete: bool = True
    archive_location: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True


class RetentionPolicyResponse(BaseModel):
    id: int
    event_category: str
    retention_days: int
    archive_before_delete: bool
    archive_location: Optional[str]
    is_active: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RetentionCategoryResult(BaseModel):
    event_category: str
    effective_retention_days: int
    cutoff: datetime
    archived: int = 0
    deleted: int = 0
    archive_locations: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class RetentionRunResult(BaseModel):
    started_at: datetime
    categories: List[RetentionCategoryResult]

    @property
    def deleted(self) -> int:
        return sum(item.deleted for item in self.categories)


class AnomalyThresholdUpsert(BaseModel):
    threshold: int = Field(..., ge=1)
    window_minutes: int = Field(..., ge=1, le=60 * 24 * 31)
    severity: Severity = Severity.MEDIUM
    is_active: bool = True


class AnomalyThresholdResponse(BaseModel):
    id: int
    rule_type: AnomalyRuleType
    threshold: int
    window_minutes: int
    severity: Severity
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SuspiciousActivityResponse(BaseModel):
    id: int
    rule_type: AnomalyRuleType
    severity: Severity
    user_id: str
    description: str
    event_count: int
    window_start: datetime
    window_end: datetime
    detected_at: datetime
    audit_log_ids: List[int]
    is_investigated: bool
    investigated_by: Optional[str]
    investigated_at: Optional[datetime]
    investigation_notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class InvestigationCreate(BaseModel):
    investigated_by: str = Field(..., min_length=1, max_length=128)
    notes: Optional[str] = Field(default=None, max_length=4000)


class AnomalyScanResult(BaseModel):
    scanned_at: datetime
    findings: int
    by_rule: Dict[str, int] = Field(default_factory=dict)
