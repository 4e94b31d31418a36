"""
User feature routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.permissions.catalog import PermissionCatalog
from app.features.permissions.dependencies import (
    get_authenticated_principal,
    require_owner,
    require_permission,
)
from app.features.permissions.engine import Decision, DenyReason, Principal
from app.features.permissions.exceptions import DuplicateName
from app.features.permissions.identifiers import ADMIN_ROLE, is_admin_role
from app.features.roles.registry import RoleRegistry, normalize_role_name
from app.features.users.models import User
from app.features.users.schemas import UserActivate, UserCreate, UserListResponse, UserPublic, UserResponse
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


def ensure_may_manage_admins(principal: Principal, role: str) -> None:
    """Only admins may create, activate or deactivate users of the admin role."""
    if is_admin_role(role) and not is_admin_role(principal.role):
        log.info("Denied admin account change by user=%s role=%s", principal.user_id, principal.role)
        decision = Decision.deny(DenyReason.INSUFFICIENT_ROLE, required_roles=(ADMIN_ROLE,), role=principal.role)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.to_detail())


@router.get("", response_model=UserListResponse)
async def list_users(
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("users.view"))],
    skip: int = 0,
    limit: int = 20,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
):
    """List users with optional role and status filters."""
    stmt = select(User)

    if role:
        stmt = stmt.where(User.role == normalize_role_name(role))
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total = (await db.execute(count_stmt)).scalar() or 0

    stmt = stmt.order_by(User.created_at.desc(), User.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    users = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return UserListResponse(
        items=[UserResponse.model_validate(user) for user in users],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("users.create"))]
):
    """Create a user whose permission list starts as the role's current defaults."""
    ensure_may_manage_admins(principal, user_data.role)

    registry = RoleRegistry(db, PermissionCatalog(db))
    defaults = await registry.default_permissions_for(user_data.role)

    existing = await db.execute(select(User.id).where(User.email == user_data.email))
    if existing.first() is not None:
        raise DuplicateName("user", user_data.email)

    user = User(
        email=user_data.email,
        name=user_data.name,
        role=user_data.role,
        permissions=sorted(defaults),
        is_active=True,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateName("user", user_data.email)
    await db.refresh(user)

    log.info("User %s created by %s with role %s", user.id, principal.user_id, user.role)
    return user


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    principal: Annotated[Principal, Depends(get_authenticated_principal)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get current authenticated user's profile."""
    result = await db.execute(select(User).where(User.id == principal.user_id))
    return result.scalar_one()


@router.get("/role/{role}", response_model=List[UserPublic])
async def list_users_by_role(
    role: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(get_authenticated_principal)]
):
    """Active users of a role, limited to public fields."""
    stmt = (
        select(User)
        .where(User.role == normalize_role_name(role), User.is_active.is_(True))
        .order_by(User.name)
    )
    result = await db.execute(stmt)
    return result.scalars().all()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user_by_id(
    user_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_owner("user_id", or_permission="users.view"))]
):
    """Get a user's profile. Users may always read their own."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user


@router.put("/{user_id}/activate", response_model=UserResponse)
async def set_user_active(
    user_id: str,
    body: UserActivate,
    db: Annotated[AsyncSession, Depends(get_db)],
    principal: Annotated[Principal, Depends(require_permission("users.edit"))]
):
    """Activate or deactivate a user. Inactive users are treated as unauthenticated."""
    result = await db.execute(select(User).where(User.id == user_id).with_for_update())
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    ensure_may_manage_admins(principal, user.role)

    user.is_active = body.is_active
    await db.commit()
    await db.refresh(user)

    log.info(
        "User %s %s by %s",
        user.id, "activated" if user.is_active else "deactivated", principal.user_id,
    )
    return user
