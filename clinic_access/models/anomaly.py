"""Anomaly thresholds and materialized suspicious-activity findings."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_access.models.base import Base, TimestampMixin
from clinic_access.models.types import JSONType


class AnomalyRuleType(str, Enum):
    EXCESSIVE_PHI_ACCESS = "EXCESSIVE_PHI_ACCESS"
    REPEATED_ACCESS_DENIED = "REPEATED_ACCESS_DENIED"
    EMERGENCY_ACCESS_OVERUSE = "EMERGENCY_ACCESS_OVERUSE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AnomalyThreshold(TimestampMixin, Base):
    """Configurable threshold for one anomaly heuristic."""

    __tablename__ = "anomaly_thresholds"
    __table_args__ = (UniqueConstraint("rule_type", name="uq_anomaly_thresholds_rule_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_type: Mapped[str] = mapped_column(String(length=50), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    window_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    severity: Mapped[str] = mapped_column(String(length=20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SuspiciousActivity(TimestampMixin, Base):
    """Finding derived from audit entries, kept for investigation workflow."""

    __tablename__ = "suspicious_activities"
    __table_args__ = (
        Index("ix_suspicious_activities_user", "user_id"),
        Index("ix_suspicious_activities_investigated", "is_investigated"),
        UniqueConstraint("fingerprint", name="uq_suspicious_activities_fingerprint"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fingerprint: Mapped[str] = mapped_column(String(length=200), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(length=50), nullable=False)
    severity: Mapped[str] = mapped_column(String(length=20), nullable=False)
    user_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    detected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    audit_log_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    is_investigated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    investigated_by: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    investigated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    investigation_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
