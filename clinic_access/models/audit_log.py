"""Append-only audit log entries."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_access.models.base import Base
from clinic_access.models.types import JSONType


class AuditLog(Base):
    """Immutable record of an authorization decision or administrative change.

    Rows are written once by the audit pipeline and removed only by the
    retention job.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_timestamp", "timestamp"),
        Index("ix_audit_logs_event_type", "event_type"),
        Index("ix_audit_logs_event_category", "event_category"),
        Index("ix_audit_logs_user", "user_id"),
        Index("ix_audit_logs_patient_timestamp", "patient_id", "timestamp"),
        Index("ix_audit_logs_phi", "is_phi_access"),
        Index("ix_audit_logs_emergency", "is_emergency_access"),
        UniqueConstraint("idempotency_key", name="uq_audit_logs_idempotency_key"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    idempotency_key: Mapped[str] = mapped_column(String(length=200), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    event_type: Mapped[str] = mapped_column(String(length=50), nullable=False)
    event_category: Mapped[str] = mapped_column(String(length=50), nullable=False)
    action: Mapped[str] = mapped_column(String(length=100), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(length=100), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(length=100), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    patient_id: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    branch_id: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    is_phi_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_emergency_access: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    emergency_justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    correlation_id: Mapped[str] = mapped_column(String(length=120), nullable=False)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    source: Mapped[str] = mapped_column(String(length=128), nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    integrity_hash: Mapped[str] = mapped_column(String(length=128), nullable=False)
