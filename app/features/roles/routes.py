"""
Role management API routes.

System roles are read-only here; they are written by the seed script only.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.dependencies import (
    get_administration,
    get_authenticated_principal,
    require_all_permissions,
    require_any_permission,
    require_permission,
)
from app.features.permissions.engine import Principal
from app.features.permissions.service import PermissionAdministration
from app.features.roles.registry import RoleRegistry
from app.features.roles.schemas import (
    RoleCreate,
    RolePermissionsResponse,
    RolePermissionsUpdate,
    RolePublic,
    RoleResponse,
    RoleStatsResponse,
    RoleUpdate,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

can_view = require_permission("roles.view")


async def get_registry(db: AsyncSession = Depends(get_db)) -> RoleRegistry:
    return RoleRegistry(db, PermissionCatalog(db))


@router.get("", response_model=List[RoleResponse])
async def list_roles(
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(can_view)
):
    """List active roles, highest priority first."""
    return await registry.list_active()


@router.get("/system", response_model=List[RoleResponse])
async def list_system_roles(
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(can_view)
):
    return await registry.list_system()


@router.get("/custom", response_model=List[RoleResponse])
async def list_custom_roles(
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(can_view)
):
    return await registry.list_custom()


@router.get("/public", response_model=List[RolePublic])
async def list_public_roles(
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(get_authenticated_principal)
):
    """Roles a user may be created with."""
    return await registry.list_public()


@router.get("/stats", response_model=RoleStatsResponse)
async def role_stats(
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(can_view)
):
    return await registry.stats()


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(can_view)
):
    """Get a specific role by ID."""
    role = await registry.get(role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(require_permission("roles.create"))
):
    """Create a custom role."""
    return await administration.create_role(
        principal.user_id,
        name=role.name,
        display_name=role.display_name,
        description=role.description,
        permissions=role.permissions,
        priority=role.priority,
    )


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(require_permission("roles.edit"))
):
    """Update a custom role."""
    update_data = role_update.model_dump(exclude_unset=True)
    return await administration.update_role(principal.user_id, role_id, update_data)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(require_permission("roles.delete"))
):
    """Delete a custom role no user is assigned to."""
    await administration.delete_role(principal.user_id, role_id)
    return None


@router.get("/{role_id}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role_id: str,
    registry: RoleRegistry = Depends(get_registry),
    principal: Principal = Depends(require_any_permission(["roles.view", "permissions.view"]))
):
    role = await registry.get(role_id)
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return RolePermissionsResponse(role_id=role.id, name=role.name, permissions=sorted(role.permissions or []))


@router.put("/{role_id}/permissions", response_model=RolePermissionsResponse)
async def update_role_permissions(
    role_id: str,
    permissions_update: RolePermissionsUpdate,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(require_all_permissions(["roles.edit", "permissions.assign"]))
):
    """Replace a custom role's permission set. Existing users keep their own lists."""
    role = await administration.update_role_permissions(principal.user_id, role_id, permissions_update.permissions)
    return RolePermissionsResponse(role_id=role.id, name=role.name, permissions=role.permissions)
