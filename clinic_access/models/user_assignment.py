"""User role memberships and direct permission grants."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinic_access.models.base import Base


class UserRole(Base):
    """Assigns a role to a user identified by the identity provider's id."""

    __tablename__ = "user_roles"
    __table_args__ = (
        Index("ix_user_roles_user", "user_id"),
        Index("ix_user_roles_role", "role_id"),
        UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    role_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    assigned_by: Mapped[str | None] = mapped_column(String(length=128), nullable=True)

    role: Mapped["Role"] = relationship("Role", back_populates="user_roles")


class UserPermission(Base):
    """Grants a permission to a user directly, outside any role."""

    __tablename__ = "user_permissions"
    __table_args__ = (
        Index("ix_user_permissions_user", "user_id"),
        UniqueConstraint("user_id", "permission_id", name="uq_user_permissions_user_permission"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    permission_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("permissions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    granted_by: Mapped[str | None] = mapped_column(String(length=128), nullable=True)

    permission: Mapped["Permission"] = relationship("Permission")
