"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.core import config


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserCreate(UserBase):
    """
    Schema for creating a new user.

    The user's permission list is copied from the role's defaults at creation.
    """
    role: str = Field(config.DEFAULT_USER_ROLE, min_length=1, max_length=50, description="Role name")

    @field_validator('role')
    @classmethod
    def role_lowercase(cls, v: str) -> str:
        return v.strip().lower()


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    role: str
    permissions: list[str]
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    name: str
    role: str

    model_config = {"from_attributes": True}


class UserActivate(BaseModel):
    """Activate or deactivate a user."""
    is_active: bool


class UserListResponse(BaseModel):
    """Paginated user list."""
    items: list[UserResponse]
    total: int
    page: int
    page_size: int
    pages: int
