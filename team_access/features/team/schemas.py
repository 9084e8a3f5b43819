"""
Pydantic schemas for admin account management.
"""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from team_access.features.rbac.schemas import RoleResponse
from team_access.features.team.models import AdminUserStatus, AdminUserType


class AdminCreate(BaseModel):
    """Schema for creating an admin account; ``role_id`` is assigned after creation."""
    email: EmailStr
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: AdminUserType = AdminUserType.ADMIN
    status: AdminUserStatus = AdminUserStatus.ACTIVE
    role_id: Optional[str] = Field(None, max_length=26)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: str) -> str:
        return v.lower()

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        # Older clients send "superadmin"
        if isinstance(v, str) and v.lower() == "superadmin":
            return AdminUserType.SUPER_ADMIN
        return v


class AdminUpdate(BaseModel):
    """
    Partial admin update.

    Sending ``role_id`` replaces every current role with that one; an explicit
    ``null`` clears all roles. Omitting it leaves roles untouched.
    """
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[AdminUserType] = None
    status: Optional[AdminUserStatus] = None
    role_id: Optional[str] = Field(None, max_length=26)

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class AdminResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    external_subject_id: Optional[str] = None
    type: AdminUserType
    status: AdminUserStatus
    roles: List[RoleResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AdminListResponse(BaseModel):
    items: List[AdminResponse]
    total: int
    page: int
    page_size: int


class SendResetLink(BaseModel):
    email: EmailStr


class MessageResponse(BaseModel):
    message: str
