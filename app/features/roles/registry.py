"""
Role registry.

Role names are stored lowercase and looked up case-insensitively. System roles
are written only by ``seed_system_role``; every administrative path refuses
them with ``SystemRoleImmutable``.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.exceptions import (
    DuplicateName,
    RoleInUse,
    RoleNotFound,
    SystemRoleImmutable,
    UnknownPermission,
)
from app.features.permissions.identifiers import ADMIN_ROLE, is_admin_role, normalize_permission_names
from app.features.roles.models import Role
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

MUTABLE_FIELDS = {"display_name", "description", "priority", "is_active"}


def normalize_role_name(name: str) -> str:
    return name.strip().lower()


class RoleRegistry:
    def __init__(self, db: AsyncSession, catalog: PermissionCatalog):
        self.db = db
        self.catalog = catalog

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get(self, role_id: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.id == role_id))
        return result.scalar_one_or_none()

    async def get_by_name(self, name: str, include_inactive: bool = False) -> Optional[Role]:
        stmt = select(Role).where(Role.name == normalize_role_name(name))
        if not include_inactive:
            stmt = stmt.where(Role.is_active.is_(True))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def default_permissions_for(self, role_name: str) -> frozenset[str]:
        """
        Permission set a user of ``role_name`` starts with.

        Raises RoleNotFound for a missing or inactive role; an empty set here
        would strip the user of every permission.
        """
        if is_admin_role(role_name):
            return await self.catalog.all_identifiers()

        role = await self.get_by_name(role_name)
        if role is None:
            raise RoleNotFound(role_name)
        return role.permission_set

    async def list_active(self) -> List[Role]:
        stmt = select(Role).where(Role.is_active.is_(True)).order_by(Role.priority.desc(), Role.name)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_system(self) -> List[Role]:
        stmt = (
            select(Role)
            .where(Role.is_system.is_(True), Role.is_active.is_(True))
            .order_by(Role.priority.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_custom(self) -> List[Role]:
        stmt = (
            select(Role)
            .where(Role.is_system.is_(False), Role.is_active.is_(True))
            .order_by(Role.priority.desc(), Role.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_public(self) -> List[Role]:
        """Active roles a user may be registered with (everything but admin)."""
        stmt = (
            select(Role)
            .where(Role.is_active.is_(True), Role.name != ADMIN_ROLE)
            .order_by(Role.priority.desc(), Role.name)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def stats(self) -> Dict[str, int]:
        stmt = (
            select(Role.is_system, func.count())
            .where(Role.is_active.is_(True))
            .group_by(Role.is_system)
        )
        result = await self.db.execute(stmt)
        counts = {bool(is_system): count for is_system, count in result.all()}
        return {
            "total": sum(counts.values()),
            "system_roles": counts.get(True, 0),
            "custom_roles": counts.get(False, 0),
        }

    async def count_users_with_role(self, role_name: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(User).where(User.role == normalize_role_name(role_name))
        )
        return result.scalar() or 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def validate_permissions(self, permissions: Iterable[str]) -> List[str]:
        """Normalize ``permissions`` and check each against the catalog."""
        names = normalize_permission_names(permissions)
        invalid = await self.catalog.find_invalid(names)
        if invalid:
            raise UnknownPermission(invalid)
        return sorted(names)

    async def create(
        self,
        name: str,
        display_name: str,
        description: str = "",
        permissions: Iterable[str] = (),
        priority: int = 0,
    ) -> Role:
        """Create a custom role."""
        role_name = normalize_role_name(name)
        if await self.get_by_name(role_name, include_inactive=True) is not None:
            raise DuplicateName("role", role_name)

        validated = await self.validate_permissions(permissions)

        role = Role(
            name=role_name,
            display_name=display_name,
            description=description,
            permissions=validated,
            priority=priority,
            is_system=False,
            is_active=True,
        )
        self.db.add(role)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise DuplicateName("role", role_name)
        await self.db.refresh(role)

        log.info("Role %s created with %d permission(s)", role.name, len(validated))
        return role

    async def update(self, role: Role, patch: Dict[str, Any]) -> Role:
        """
        Apply ``patch`` to a custom role's metadata.

        Unknown keys and None values are ignored; the permission set changes
        only through ``replace_permissions``. A role still assigned to users
        cannot be deactivated.
        """
        if role.is_system:
            raise SystemRoleImmutable(role.name)

        update_data = {
            key: value for key, value in patch.items()
            if key in MUTABLE_FIELDS and value is not None
        }
        if update_data.get("is_active") is False and role.is_active:
            in_use = await self.count_users_with_role(role.name)
            if in_use > 0:
                raise RoleInUse(role.name, in_use)

        for key, value in update_data.items():
            setattr(role, key, value)

        await self.db.commit()
        await self.db.refresh(role)
        return role

    async def replace_permissions(self, role: Role, permissions: Iterable[str]) -> Role:
        """Replace a custom role's permission set, validating every identifier."""
        if role.is_system:
            raise SystemRoleImmutable(role.name)

        role.permissions = await self.validate_permissions(permissions)
        await self.db.commit()
        await self.db.refresh(role)
        return role

    async def delete(self, role_name: str) -> Role:
        """
        Delete a custom role that no user references.

        The reference count is taken here, immediately before the delete.
        """
        role = await self.get_by_name(role_name, include_inactive=True)
        if role is None:
            raise RoleNotFound(role_name)
        if role.is_system:
            raise SystemRoleImmutable(role.name)

        in_use = await self.count_users_with_role(role.name)
        if in_use > 0:
            raise RoleInUse(role.name, in_use)

        await self.db.delete(role)
        await self.db.commit()

        log.info("Role %s deleted", role.name)
        return role

    async def seed_system_role(
        self,
        name: str,
        display_name: str,
        description: str,
        permissions: Iterable[str],
        priority: int,
    ) -> Role:
        """Create or overwrite a system role. Only deployment seeding calls this."""
        role_name = normalize_role_name(name)
        validated = await self.validate_permissions(permissions)

        role = await self.get_by_name(role_name, include_inactive=True)
        if role is None:
            role = Role(name=role_name)
            self.db.add(role)

        role.display_name = display_name
        role.description = description
        role.permissions = validated
        role.priority = priority
        role.is_system = True
        role.is_active = True

        await self.db.commit()
        await self.db.refresh(role)
        return role
