"""
Pydantic schemas for role management.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


class RoleBase(BaseModel):
    """Base role schema."""
    display_name: str = Field(..., min_length=1, max_length=100, description="Human readable name")
    description: str = Field("", max_length=1000, description="Role description")
    priority: int = Field(0, ge=0, le=100, description="Display ordering, higher first")


class RoleCreate(RoleBase):
    """Schema for creating a new custom role."""
    name: str = Field(..., min_length=1, max_length=50, description="Unique role name")
    permissions: List[str] = Field(default_factory=list, description="Initial permission identifiers")

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        v = v.strip().lower()
        if not v.replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v


class RoleUpdate(BaseModel):
    """
    Schema for updating a custom role's metadata.

    The name cannot change, and the permission set is replaced only through
    the role permissions endpoint.
    """
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    priority: Optional[int] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None

    model_config = ConfigDict(extra='forbid')


class RolePermissionsUpdate(BaseModel):
    """Replace a role's permission set."""
    permissions: List[str]


class RoleResponse(RoleBase):
    """Schema for role response."""
    id: str
    name: str
    permissions: List[str]
    is_active: bool
    is_system: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RolePublic(BaseModel):
    """Role information shown during registration."""
    name: str
    display_name: str
    description: str

    model_config = ConfigDict(from_attributes=True)


class RolePermissionsResponse(BaseModel):
    role_id: str
    name: str
    permissions: List[str]


class RoleStatsResponse(BaseModel):
    total: int
    system_roles: int
    custom_roles: int
