"""
Effective permission resolution.

A user's stored permission list, when non-empty, overrides the role defaults.
Either way the result is intersected with the active catalog, so an identifier
deactivated catalog-wide simply disappears from every effective set.
"""
from typing import Iterable, Protocol

from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.identifiers import is_admin_role
from app.features.roles.registry import RoleRegistry


class PermissionHolder(Protocol):
    role: str
    permissions: Iterable[str]


class PermissionResolver:
    def __init__(self, catalog: PermissionCatalog, registry: RoleRegistry):
        self.catalog = catalog
        self.registry = registry

    async def effective_permissions(self, holder: PermissionHolder) -> frozenset[str]:
        """
        Resolve the permission set used for authorization decisions.

        1. admin role: every active identifier in the catalog
        2. non-empty stored list: stored entries that are still active
        3. empty stored list: the role defaults that are still active

        Raises RoleNotFound when step 3 needs a role that is missing or inactive.
        """
        active = await self.catalog.all_identifiers()

        if is_admin_role(holder.role):
            return active

        stored = frozenset(holder.permissions or ())
        if stored:
            return stored & active

        defaults = await self.registry.default_permissions_for(holder.role)
        return defaults & active
