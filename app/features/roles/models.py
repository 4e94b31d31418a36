"""
Role model.
"""
from typing import List
from sqlalchemy import String, Boolean, Integer, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


class Role(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    A named bundle of default permissions.

    Users point at a role by name, not by foreign key. Deletion is refused while
    any user still carries the name (checked by the registry).
    Examples: admin, veterinario, cliente, asistente, recepcionista
    """
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Permission identifiers, kept sorted and de-duplicated
    permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Display ordering only, higher first
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)

    @property
    def permission_set(self) -> frozenset[str]:
        return frozenset(self.permissions or ())

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, system={self.is_system})>"
