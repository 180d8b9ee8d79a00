"""Audit retention policies, one per event category."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_access.models.base import Base, TimestampMixin


class AuditRetentionPolicy(TimestampMixin, Base):
    """Retention window for one audit event category."""

    __tablename__ = "audit_retention_policies"
    __table_args__ = (UniqueConstraint("event_category", name="uq_audit_retention_policies_category"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_category: Mapped[str] = mapped_column(String(length=50), nullable=False)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False)
    archive_before_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    archive_location: Mapped[Optional[str]] = mapped_column(String(length=500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
