"""
Pydantic schemas for permission management.

Request and response models for the catalog, per-user assignments and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from app.features.permissions.identifiers import PermissionName


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionBase(BaseModel):
    """Base permission schema."""
    name: str = Field(..., min_length=3, max_length=100, description="Identifier in 'category.action' form")
    description: str = Field("", max_length=1000, description="Permission description")


class PermissionCreate(PermissionBase):
    """Schema for creating a new permission."""
    description: str = Field(..., min_length=1, max_length=1000, description="Permission description")
    category: Optional[str] = Field(None, max_length=50, description="Must match the identifier's category")
    action: Optional[str] = Field(None, max_length=50, description="Must match the identifier's action")

    @field_validator('name')
    @classmethod
    def name_category_action(cls, v: str) -> str:
        """Validate permission name format."""
        return PermissionName.parse(v.strip().lower()).full_name

    @model_validator(mode='after')
    def halves_match_name(self) -> "PermissionCreate":
        parsed = PermissionName.parse(self.name)
        if self.category is not None and self.category.lower() != parsed.category:
            raise ValueError(f"category must be '{parsed.category}' for permission '{self.name}'")
        if self.action is not None and self.action.lower() != parsed.action:
            raise ValueError(f"action must be '{parsed.action}' for permission '{self.name}'")
        return self


class PermissionUpdate(BaseModel):
    """Schema for updating a permission. The identifier itself cannot change."""
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    is_active: Optional[bool] = None


class PermissionResponse(PermissionBase):
    """Schema for permission response."""
    id: str
    category: str
    action: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionValidationResponse(BaseModel):
    permission: str
    is_valid: bool


class CategoryStats(BaseModel):
    category: str
    count: int
    permissions: List[str]


class PermissionStatsResponse(BaseModel):
    total: int
    by_category: List[CategoryStats]


# ============================================================================
# User Assignment Schemas
# ============================================================================

class AssignPermissionsRequest(BaseModel):
    """Replace a user's explicit permission list."""
    permissions: List[str] = Field(..., description="Full new permission list; an empty list means role defaults")

    @field_validator('permissions')
    @classmethod
    def strip_blank(cls, v: List[str]) -> List[str]:
        return [name.strip().lower() for name in v if name.strip()]


class UserPermissionsResponse(BaseModel):
    """Stored, default and effective permissions of a user."""
    user_id: str
    email: str
    role: str
    permissions: List[str] = Field(..., description="Stored explicit list")
    default_permissions: Optional[List[str]] = Field(None, description="Current defaults of the user's role, if it exists")
    effective_permissions: List[str]
    has_custom_permissions: bool


class MyPermissionsResponse(BaseModel):
    user_id: str
    role: str
    permissions: List[str]


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for permission audit log response."""
    id: str
    actor_id: Optional[str]
    action: str
    target_type: str
    target_id: str
    target_name: Optional[str]
    previous_permissions: List[str]
    new_permissions: List[str]
    added: List[str]
    removed: List[str]
    details: Optional[Dict[str, Any]]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Paginated audit log response."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
