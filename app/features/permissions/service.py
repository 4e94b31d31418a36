"""
Administrative permission operations.

Each mutation reads the current permission set inside the same transaction as
the write (the user or role row is locked where the backend supports it),
writes the new set, then hands the before/after pair to the auditor. Concurrent
writers to the same row resolve as last-write-wins.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.audit import AuditAction, AuditTarget, PermissionAuditor
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.exceptions import RoleNotFound, TargetNotFound, UnknownPermission
from app.features.permissions.identifiers import normalize_permission_names
from app.features.permissions.resolver import PermissionResolver
from app.features.roles.models import Role
from app.features.roles.registry import MUTABLE_FIELDS, RoleRegistry
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


class PermissionAdministration:
    def __init__(
        self,
        db: AsyncSession,
        catalog: PermissionCatalog,
        registry: RoleRegistry,
        resolver: PermissionResolver,
        auditor: PermissionAuditor,
    ):
        self.db = db
        self.catalog = catalog
        self.registry = registry
        self.resolver = resolver
        self.auditor = auditor

    @classmethod
    def for_session(cls, db: AsyncSession, auditor: PermissionAuditor) -> "PermissionAdministration":
        catalog = PermissionCatalog(db)
        registry = RoleRegistry(db, catalog)
        return cls(db, catalog, registry, PermissionResolver(catalog, registry), auditor)

    async def _get_user(self, user_id: str, for_update: bool = False) -> User:
        stmt = select(User).where(User.id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            raise TargetNotFound(user_id)
        return user

    async def _get_role(self, role_id: str, for_update: bool = False) -> Role:
        stmt = select(Role).where(Role.id == role_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        role = result.scalar_one_or_none()
        if role is None:
            raise RoleNotFound(role_id)
        return role

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def resolve_effective_permissions(self, user_id: str) -> frozenset[str]:
        user = await self._get_user(user_id)
        return await self.resolver.effective_permissions(user)

    async def describe_user_permissions(self, user_id: str) -> Dict[str, Any]:
        """Stored list, role defaults and effective set of a user, for display."""
        user = await self._get_user(user_id)
        stored = sorted(user.permissions or [])

        try:
            defaults: Optional[List[str]] = sorted(await self.registry.default_permissions_for(user.role))
        except RoleNotFound:
            log.warning("User %s references missing or inactive role %s", user.id, user.role)
            defaults = None

        effective = await self.resolver.effective_permissions(user)
        dropped = set(stored) - effective
        if dropped:
            log.debug("Ignoring stale permission(s) %s stored on user %s", sorted(dropped), user.id)

        return {
            "user_id": user.id,
            "email": user.email,
            "role": user.role,
            "permissions": stored,
            "default_permissions": defaults,
            "effective_permissions": sorted(effective),
            "has_custom_permissions": bool(stored) and (defaults is None or set(stored) != set(defaults)),
        }

    async def assign_permissions(
        self,
        actor_id: Optional[str],
        target_user_id: str,
        new_permissions: Iterable[str],
    ) -> User:
        """
        Replace a user's explicit permission list.

        Every identifier must be active in the catalog; otherwise nothing is
        written and UnknownPermission lists the offenders.
        """
        user = await self._get_user(target_user_id, for_update=True)

        names = normalize_permission_names(new_permissions)
        invalid = await self.catalog.find_invalid(names)
        if invalid:
            raise UnknownPermission(invalid)

        previous = list(user.permissions or [])
        user.permissions = sorted(names)
        await self.db.commit()
        await self.db.refresh(user)

        self.auditor.record_change(
            actor_id=actor_id,
            action=AuditAction.ASSIGN_PERMISSIONS,
            target_type=AuditTarget.USER,
            target_id=user.id,
            target_name=user.email,
            previous=previous,
            new=user.permissions,
        )
        return user

    async def reset_permissions_to_role_default(self, actor_id: Optional[str], target_user_id: str) -> User:
        """Overwrite a user's list with the current defaults of their role."""
        user = await self._get_user(target_user_id, for_update=True)
        defaults = await self.registry.default_permissions_for(user.role)

        previous = list(user.permissions or [])
        user.permissions = sorted(defaults)
        await self.db.commit()
        await self.db.refresh(user)

        self.auditor.record_change(
            actor_id=actor_id,
            action=AuditAction.RESET_PERMISSIONS,
            target_type=AuditTarget.USER,
            target_id=user.id,
            target_name=user.email,
            previous=previous,
            new=user.permissions,
            details={"role": user.role},
        )
        return user

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def update_role_permissions(
        self,
        actor_id: Optional[str],
        role_id: str,
        new_permissions: Iterable[str],
    ) -> Role:
        """Replace a custom role's permission set. Users already created keep their lists."""
        role = await self._get_role(role_id, for_update=True)
        previous = list(role.permissions or [])

        role = await self.registry.replace_permissions(role, new_permissions)

        self.auditor.record_change(
            actor_id=actor_id,
            action=AuditAction.UPDATE_ROLE_PERMISSIONS,
            target_type=AuditTarget.ROLE,
            target_id=role.id,
            target_name=role.name,
            previous=previous,
            new=role.permissions,
        )
        return role

    async def create_role(
        self,
        actor_id: Optional[str],
        name: str,
        display_name: str,
        description: str = "",
        permissions: Iterable[str] = (),
        priority: int = 0,
    ) -> Role:
        role = await self.registry.create(
            name=name,
            display_name=display_name,
            description=description,
            permissions=permissions,
            priority=priority,
        )

        self.auditor.record_change(
            actor_id=actor_id,
            action=AuditAction.CREATE_ROLE,
            target_type=AuditTarget.ROLE,
            target_id=role.id,
            target_name=role.name,
            previous=(),
            new=role.permissions,
        )
        return role

    async def update_role(self, actor_id: Optional[str], role_id: str, patch: Dict[str, Any]) -> Role:
        role = await self._get_role(role_id, for_update=True)
        previous = list(role.permissions or [])

        role = await self.registry.update(role, patch)

        self.auditor.record_change(
            actor_id=actor_id,
            action=AuditAction.UPDATE_ROLE,
            target_type=AuditTarget.ROLE,
            target_id=role.id,
            target_name=role.name,
            previous=previous,
            new=role.permissions,
            details={key: value for key, value in patch.items() if key in MUTABLE_FIELDS},
        )
        return role

    async def delete_role(self, actor_id: Optional[str], role_id: str) -> Role:
        role = await self._get_role(role_id, for_update=True)
        previous = list(role.permissions or [])
        role_name = role.name

        await self.registry.delete(role_name)

        self.auditor.record_change(
            actor_id=actor_id,
            action=AuditAction.DELETE_ROLE,
            target_type=AuditTarget.ROLE,
            target_id=role_id,
            target_name=role_name,
            previous=previous,
            new=(),
        )
        return role
