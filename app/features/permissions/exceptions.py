"""
Errors raised by the catalog, the role registry and the administration service.

Routine authorization denials are not exceptions; see ``engine.Decision``.
Everything here is rendered by the ``AccessControlError`` handler in
``app.main``.
"""
from typing import Any, Dict, Iterable

from fastapi import status


class AccessControlError(Exception):
    """Base class for permission/role integrity and policy errors."""
    code = "access_control_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def detail(self) -> Dict[str, Any]:
        return {}


class UnknownPermission(AccessControlError):
    code = "unknown_permission"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, names: Iterable[str]):
        self.names = list(names)
        super().__init__(f"Unknown or inactive permission(s): {', '.join(self.names)}")

    def detail(self) -> Dict[str, Any]:
        return {"invalid_permissions": self.names}


class DuplicateName(AccessControlError):
    code = "duplicate_name"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"A {kind} named '{name}' already exists")

    def detail(self) -> Dict[str, Any]:
        return {"name": self.name}


class SystemRoleImmutable(AccessControlError):
    code = "system_role_immutable"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, role_name: str):
        self.role_name = role_name
        super().__init__(f"System role '{role_name}' cannot be modified or deleted")

    def detail(self) -> Dict[str, Any]:
        return {"role": self.role_name}


class RoleInUse(AccessControlError):
    code = "role_in_use"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, role_name: str, count: int):
        self.role_name = role_name
        self.count = count
        super().__init__(f"Role '{role_name}' is still assigned to {count} user(s)")

    def detail(self) -> Dict[str, Any]:
        return {"role": self.role_name, "count": self.count}


class RoleNotFound(AccessControlError):
    code = "role_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Role '{role}' not found or inactive")

    def detail(self) -> Dict[str, Any]:
        return {"role": self.role}


class TargetNotFound(AccessControlError):
    code = "target_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User '{user_id}' not found")

    def detail(self) -> Dict[str, Any]:
        return {"user_id": self.user_id}


class PermissionNotFound(AccessControlError):
    code = "permission_not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Permission '{name}' not found")

    def detail(self) -> Dict[str, Any]:
        return {"permission": self.name}
