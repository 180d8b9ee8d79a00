"""Permission model representing atomic, code-addressed capabilities."""

from __future__ import annotations

from typing import List

from sqlalchemy import Boolean, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_access.models.base import Base, TimestampMixin


class Permission(TimestampMixin, Base):
    """Atomic permission identified by its code, e.g. ``MEDICAL_RECORD_VIEW``."""

    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("code", name="uq_permissions_code"),
        Index("ix_permissions_category", "category"),
        Index("ix_permissions_resource_type", "resource_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(length=100), nullable=False)
    name: Mapped[str] = mapped_column(String(length=200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(length=500), nullable=True)
    category: Mapped[str] = mapped_column(String(length=50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(length=100), nullable=False)
    is_phi_related: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_system_permission: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    roles: Mapped[List["Role"]] = relationship(
        "Role",
        secondary="role_permissions",
        back_populates="permissions",
    )
