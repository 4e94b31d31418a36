"""
User model with ULID primary keys.
"""
from datetime import datetime
from typing import List
from sqlalchemy import String, Boolean, JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, UlidPrimaryKeyMixin


class User(Base, UlidPrimaryKeyMixin, TimestampMixin):
    """
    User model representing authenticated users.

    ``role`` is a soft reference to ``roles.name``. ``permissions`` is the
    user's explicit permission list; an empty list means "use the role
    defaults" when effective permissions are resolved.
    """
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role!r})>"
