"""
Permission management API routes.

Provides endpoints for browsing the catalog, managing per-user permission lists
and reading the permission audit log.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.dependencies import (
    get_administration,
    get_authenticated_principal,
    require_permission,
    require_role,
)
from app.features.permissions.engine import Principal
from app.features.permissions.exceptions import RoleNotFound
from app.features.permissions.identifiers import ADMIN_ROLE
from app.features.permissions.models import PermissionAuditLog
from app.features.permissions.schemas import (
    AssignPermissionsRequest,
    AuditLogListResponse,
    AuditLogResponse,
    MyPermissionsResponse,
    PermissionCreate,
    PermissionResponse,
    PermissionStatsResponse,
    PermissionUpdate,
    PermissionValidationResponse,
    UserPermissionsResponse,
)
from app.features.permissions.service import PermissionAdministration
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

can_view = require_permission("permissions.view")
can_assign = require_permission("permissions.assign")
admin_only = require_role(ADMIN_ROLE)


async def get_catalog(db: AsyncSession = Depends(get_db)) -> PermissionCatalog:
    return PermissionCatalog(db)


# ============================================================================
# Catalog Routes
# ============================================================================

@router.get("", response_model=List[PermissionResponse])
async def list_permissions(
    category: Optional[str] = None,
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(can_view)
):
    """List active permissions, optionally for one category."""
    return await catalog.list_active(category)


@router.get("/names", response_model=List[str])
async def list_permission_names(
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(can_view)
):
    """List active permission identifiers, sorted."""
    return sorted(await catalog.all_identifiers())


@router.get("/stats", response_model=PermissionStatsResponse)
async def permission_stats(
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(can_view)
):
    return await catalog.stats()


@router.get("/me", response_model=MyPermissionsResponse)
async def get_my_permissions(
    principal: Principal = Depends(get_authenticated_principal),
    administration: PermissionAdministration = Depends(get_administration)
):
    """Effective permissions of the calling user."""
    try:
        effective = await administration.resolver.effective_permissions(principal)
    except RoleNotFound:
        log.warning("User %s has no stored permissions and role %s is missing or inactive", principal.user_id, principal.role)
        effective = frozenset()
    return MyPermissionsResponse(user_id=principal.user_id, role=principal.role, permissions=sorted(effective))


@router.get("/category/{category}", response_model=List[PermissionResponse])
async def list_permissions_by_category(
    category: str,
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(can_view)
):
    permissions = await catalog.list_active(category.lower())
    if not permissions:
        raise HTTPException(status_code=404, detail=f"No permissions found for category '{category}'")
    return permissions


@router.get("/action/{action}", response_model=List[PermissionResponse])
async def list_permissions_by_action(
    action: str,
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(can_view)
):
    permissions = await catalog.list_by_action(action.lower())
    if not permissions:
        raise HTTPException(status_code=404, detail=f"No permissions found for action '{action}'")
    return permissions


@router.get("/validate/{permission}", response_model=PermissionValidationResponse)
async def validate_permission(
    permission: str,
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(can_view)
):
    """Check whether an identifier exists and is active."""
    return PermissionValidationResponse(
        permission=permission,
        is_valid=await catalog.is_valid_permission(permission),
    )


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    permission: PermissionCreate,
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(admin_only)
):
    """Add a permission to the catalog (admin only)."""
    return await catalog.create(
        name=permission.name,
        description=permission.description,
        category=permission.category.lower() if permission.category else None,
        action=permission.action.lower() if permission.action else None,
    )


@router.patch("/{name}", response_model=PermissionResponse)
async def update_permission(
    name: str,
    permission_update: PermissionUpdate,
    catalog: PermissionCatalog = Depends(get_catalog),
    principal: Principal = Depends(admin_only)
):
    """Change a permission's description or active flag (admin only)."""
    update_data = permission_update.model_dump(exclude_unset=True)
    permission = await catalog.update(name, **update_data)
    log.info("Permission %s updated by %s: %s", name, principal.user_id, update_data)
    return permission


# ============================================================================
# User Permission Routes
# ============================================================================

@router.get("/user/{user_id}", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(can_view)
):
    """Stored, default and effective permissions of a user."""
    return await administration.describe_user_permissions(user_id)


@router.put("/user/{user_id}", response_model=UserPermissionsResponse)
async def assign_user_permissions(
    user_id: str,
    assignment: AssignPermissionsRequest,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(can_assign)
):
    """Replace a user's explicit permission list."""
    await administration.assign_permissions(principal.user_id, user_id, assignment.permissions)
    return await administration.describe_user_permissions(user_id)


@router.post("/user/{user_id}/reset", response_model=UserPermissionsResponse)
async def reset_user_permissions(
    user_id: str,
    administration: PermissionAdministration = Depends(get_administration),
    principal: Principal = Depends(can_assign)
):
    """Overwrite a user's list with their role's current defaults."""
    await administration.reset_permissions_to_role_default(principal.user_id, user_id)
    return await administration.describe_user_permissions(user_id)


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    actor_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    action: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(admin_only)
):
    """List permission audit logs with optional filtering."""
    stmt = select(PermissionAuditLog)

    if actor_id:
        stmt = stmt.where(PermissionAuditLog.actor_id == actor_id)
    if target_type:
        stmt = stmt.where(PermissionAuditLog.target_type == target_type)
    if target_id:
        stmt = stmt.where(PermissionAuditLog.target_id == target_id)
    if action:
        stmt = stmt.where(PermissionAuditLog.action == action)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(PermissionAuditLog.created_at.desc(), PermissionAuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
