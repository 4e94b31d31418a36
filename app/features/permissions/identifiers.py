"""
Permission identifiers.

Permissions travel as plain strings (``"users.edit"``) at the API boundary.
Inside the engine they are parsed into a ``PermissionName`` so a malformed
identifier is rejected when a route is wired, not when a request arrives.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable


# Distinguished role that bypasses permission-set checks.
ADMIN_ROLE = "admin"

PERMISSION_NAME_PATTERN = re.compile(r"^([a-z][a-z0-9_]*)\.([a-z][a-z0-9_]*)$")


def is_admin_role(role_name: str | None) -> bool:
    return role_name is not None and role_name.lower() == ADMIN_ROLE


class PermissionCategory(str, Enum):
    """Categories shipped with the default catalog. New ones may be added at runtime."""
    USERS = "users"
    PETS = "pets"
    APPOINTMENTS = "appointments"
    PERMISSIONS = "permissions"
    REPORTS = "reports"
    SETTINGS = "settings"
    VETERINARIES = "veterinaries"
    ROLES = "roles"


class PermissionAction(str, Enum):
    """Actions shipped with the default catalog. New ones may be added at runtime."""
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    ASSIGN = "assign"
    UPDATE = "update"
    MANAGE_STAFF = "manage_staff"
    STATS = "stats"
    VERIFY = "verify"


class InvalidPermissionName(ValueError):
    """Raised when a string does not follow the ``category.action`` convention."""


@dataclass(frozen=True, order=True)
class PermissionName:
    """A permission identifier split into its category and action."""
    category: str
    action: str

    def __post_init__(self):
        if not PERMISSION_NAME_PATTERN.match(f"{self.category}.{self.action}"):
            raise InvalidPermissionName(
                f"Invalid permission identifier {self.category}.{self.action!s}: "
                "expected lowercase 'category.action'"
            )

    @classmethod
    def parse(cls, value: "str | PermissionName") -> "PermissionName":
        if isinstance(value, PermissionName):
            return value
        match = PERMISSION_NAME_PATTERN.match(value)
        if match is None:
            raise InvalidPermissionName(
                f"Invalid permission identifier {value!r}: expected lowercase 'category.action'"
            )
        return cls(category=match.group(1), action=match.group(2))

    @property
    def full_name(self) -> str:
        return f"{self.category}.{self.action}"

    def __str__(self) -> str:
        return self.full_name


def normalize_permission_names(names: Iterable[str]) -> list[str]:
    """
    Trim and lowercase raw identifiers, dropping blanks and duplicates.

    Order of first appearance is kept so error messages list offenders in the
    order the caller sent them.
    """
    seen: dict[str, None] = {}
    for name in names:
        cleaned = name.strip().lower()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)
