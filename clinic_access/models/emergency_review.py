"""Post-hoc reviews of emergency (break-the-glass) accesses."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from clinic_access.models.base import Base


class EmergencyAccessReview(Base):
    """Review outcome stored beside, never inside, the immutable audit entry."""

    __tablename__ = "emergency_access_reviews"
    __table_args__ = (UniqueConstraint("audit_log_id", name="uq_emergency_access_reviews_audit_log"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    audit_log_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("audit_logs.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewed_by: Mapped[str] = mapped_column(String(length=128), nullable=False)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_justified: Mapped[bool] = mapped_column(nullable=False, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
