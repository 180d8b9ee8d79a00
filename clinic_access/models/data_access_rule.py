"""Priority-ordered data access rules."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_access.models.base import Base, TimestampMixin
from clinic_access.models.types import JSONType


class DataAccessRule(TimestampMixin, Base):
    """Rule whose condition AST is stored as JSON and validated on write."""

    __tablename__ = "data_access_rules"
    __table_args__ = (
        Index("ix_data_access_rules_resource_type", "resource_type"),
        Index("ix_data_access_rules_scope_role", "scope_role_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_name: Mapped[str] = mapped_column(String(length=200), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(length=100), nullable=False)
    condition: Mapped[dict] = mapped_column(JSONType, nullable=False)
    scope_role_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=True,
    )
    allow_access: Mapped[bool] = mapped_column(Boolean, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    scope_role: Mapped[Optional["Role"]] = relationship("Role")
