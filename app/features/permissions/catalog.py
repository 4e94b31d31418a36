"""
Permission catalog.

The catalog is the authoritative list of permission identifiers. A lookup for
an identifier that does not exist (or is inactive) is an ordinary ``False`` or
empty result, never an error.
"""
import time
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.features.permissions.exceptions import DuplicateName, PermissionNotFound
from app.features.permissions.identifiers import InvalidPermissionName, PermissionName
from app.features.permissions.models import Permission
from app.utils import get_logger


log = get_logger(__name__)


class CatalogSnapshotCache:
    """
    Process-local snapshot of the active permission identifiers.

    Disabled when ``ttl`` is 0. Every catalog write calls ``invalidate``; other
    processes only see a write once their own entry expires.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._identifiers: Optional[frozenset[str]] = None
        self._expires_at = 0.0

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    def get(self) -> Optional[frozenset[str]]:
        if not self.enabled or self._identifiers is None:
            return None
        if self._clock() >= self._expires_at:
            self._identifiers = None
            return None
        return self._identifiers

    def put(self, identifiers: Iterable[str]) -> None:
        if not self.enabled:
            return
        self._identifiers = frozenset(identifiers)
        self._expires_at = self._clock() + self.ttl

    def invalidate(self) -> None:
        self._identifiers = None
        self._expires_at = 0.0


catalog_cache = CatalogSnapshotCache(config.CATALOG_CACHE_TTL)


class PermissionCatalog:
    """Catalog queries and the few mutations allowed on permissions."""

    def __init__(self, db: AsyncSession, cache: CatalogSnapshotCache = catalog_cache):
        self.db = db
        self.cache = cache

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def is_valid_permission(self, name: str) -> bool:
        """True iff ``name`` exists and is active. Exact, case-sensitive match."""
        cached = self.cache.get()
        if cached is not None:
            return name in cached

        stmt = select(Permission.id).where(Permission.name == name, Permission.is_active.is_(True))
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def all_identifiers(self) -> frozenset[str]:
        cached = self.cache.get()
        if cached is not None:
            return cached

        result = await self.db.execute(select(Permission.name).where(Permission.is_active.is_(True)))
        identifiers = frozenset(result.scalars().all())
        self.cache.put(identifiers)
        return identifiers

    async def find_invalid(self, names: Sequence[str]) -> List[str]:
        """Return the entries of ``names`` that are not active identifiers, in input order."""
        if not names:
            return []

        cached = self.cache.get()
        if cached is not None:
            valid = cached
        else:
            stmt = select(Permission.name).where(
                Permission.name.in_(set(names)),
                Permission.is_active.is_(True),
            )
            result = await self.db.execute(stmt)
            valid = frozenset(result.scalars().all())

        return [name for name in names if name not in valid]

    async def get(self, name: str) -> Optional[Permission]:
        """Return the permission row for ``name`` whether active or not."""
        result = await self.db.execute(select(Permission).where(Permission.name == name))
        return result.scalar_one_or_none()

    async def list_active(self, category: Optional[str] = None) -> List[Permission]:
        stmt = select(Permission).where(Permission.is_active.is_(True))
        if category:
            stmt = stmt.where(Permission.category == category)
        stmt = stmt.order_by(Permission.category, Permission.action)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_action(self, action: str) -> List[Permission]:
        stmt = (
            select(Permission)
            .where(Permission.action == action, Permission.is_active.is_(True))
            .order_by(Permission.category)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def stats(self) -> dict:
        stmt = (
            select(Permission.category, Permission.name)
            .where(Permission.is_active.is_(True))
            .order_by(Permission.category, Permission.action)
        )
        result = await self.db.execute(stmt)

        by_category: dict[str, list[str]] = {}
        for category, name in result.all():
            by_category.setdefault(category, []).append(name)

        total_result = await self.db.execute(
            select(func.count()).select_from(Permission).where(Permission.is_active.is_(True))
        )

        return {
            "total": total_result.scalar() or 0,
            "by_category": [
                {"category": category, "count": len(names), "permissions": names}
                for category, names in by_category.items()
            ],
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        name: str,
        description: str,
        category: Optional[str] = None,
        action: Optional[str] = None,
    ) -> Permission:
        """
        Add a permission.

        Category and action are taken from the identifier; when given
        explicitly they must match its two halves.
        """
        parsed = PermissionName.parse(name)
        if category is not None and category != parsed.category:
            raise InvalidPermissionName(f"Category {category!r} does not match identifier {parsed.full_name!r}")
        if action is not None and action != parsed.action:
            raise InvalidPermissionName(f"Action {action!r} does not match identifier {parsed.full_name!r}")

        if await self.get(parsed.full_name) is not None:
            raise DuplicateName("permission", parsed.full_name)

        permission = Permission(
            name=parsed.full_name,
            description=description,
            category=parsed.category,
            action=parsed.action,
            is_active=True,
        )
        self.db.add(permission)
        await self.db.commit()
        await self.db.refresh(permission)
        self.cache.invalidate()

        log.info("Permission %s created", permission.name)
        return permission

    async def update(
        self,
        name: str,
        description: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Permission:
        """Change description and/or active flag. The identifier itself never changes."""
        permission = await self.get(name)
        if permission is None:
            raise PermissionNotFound(name)

        if description is not None:
            permission.description = description
        if is_active is not None and is_active != permission.is_active:
            permission.is_active = is_active
            log.warning("Permission %s %s", name, "activated" if is_active else "deactivated")

        await self.db.commit()
        await self.db.refresh(permission)
        self.cache.invalidate()
        return permission

    async def set_active(self, name: str, is_active: bool) -> Permission:
        return await self.update(name, is_active=is_active)
