"""
Permission catalog and permission audit models.

Permissions are flat ``category.action`` identifiers. Roles and users reference
them by name (soft references stored as JSON lists), so a permission is never
hard-deleted: it is deactivated and drops out of every effective set.
"""
from typing import Any, List
from sqlalchemy import String, Boolean, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


class Permission(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    A single capability in the catalog.

    Examples:
    - name="users.edit", category="users", action="edit"
    - name="veterinaries.manage_staff", category="veterinaries", action="manage_staff"
    """
    __tablename__ = "permissions"
    __table_args__ = (
        Index("ix_permissions_category_action", "category", "action"),
    )

    # Identifier, immutable once created
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Permission(name={self.name!r}, active={self.is_active})>"


class PermissionAuditLog(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    Append-only record of a permission-set change on a user or a role.

    ``added`` and ``removed`` are derived from the two sets when the record is
    built; they are stored for querying, never supplied independently.
    """
    __tablename__ = "permission_audit_logs"

    actor_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    target_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    target_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    previous_permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    new_permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    added: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    removed: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<PermissionAuditLog(actor={self.actor_id}, action={self.action}, "
            f"target={self.target_type}:{self.target_id})>"
        )
