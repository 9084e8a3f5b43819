"""
Pydantic schemas for the access-control graph.

Request and response models for permissions, policies, roles and
user-role assignments.
"""
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from team_access.features.rbac.models import PermissionAction, PolicyCategory


PERMISSION_IDENTIFIER_PATTERN = re.compile(r"^[a-z_]+:[a-z_]+$")
SLUG_PATTERN = r"^[a-z0-9-_]+$"

# Keys whose explicit null is meaningful on a partial update (clear the value)
NULLABLE_PATCH_FIELDS = ("description", "metadata", "permissions", "policies")


def patch_values(patch: BaseModel) -> Dict[str, Any]:
    """Explicitly set fields of a partial update, dropping nulls for required columns."""
    return {
        key: value
        for key, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_PATCH_FIELDS
    }


# ============================================================================
# Permission Schemas
# ============================================================================

class PermissionCreate(BaseModel):
    """Schema for creating a permission; ``identifier`` defaults to ``resource:action``."""
    resource: str = Field(..., min_length=1, max_length=100, description="Resource type (e.g., 'user', 'report')")
    action: PermissionAction
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    identifier: Optional[str] = Field(None, max_length=201, description="Explicit resource:action identifier")
    is_active: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("resource")
    @classmethod
    def resource_lowercase(cls, v: str) -> str:
        v = v.strip().lower()
        if not re.fullmatch(r"[a-z_]+", v):
            raise ValueError("Resource must contain only lowercase letters and underscores")
        return v

    @field_validator("identifier")
    @classmethod
    def identifier_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if not PERMISSION_IDENTIFIER_PATTERN.match(v):
            raise ValueError("Identifier must look like 'resource:action'")
        return v


class PermissionUpdate(BaseModel):
    """Partial permission update. The identifier is never recomputed."""
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class PermissionResponse(BaseModel):
    id: str
    identifier: str
    resource: str
    action: str
    name: str
    description: Optional[str] = None
    is_active: bool
    deleted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Policy Schemas
# ============================================================================

class PolicyCreate(BaseModel):
    """Schema for creating a policy. Permissions may be ids or ``resource:action`` identifiers."""
    identifier: str = Field(..., min_length=1, max_length=100, pattern=SLUG_PATTERN)
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: List[str] = Field(default_factory=list)
    priority: int = Field(0, ge=0, le=100)
    category: PolicyCategory = PolicyCategory.CUSTOM
    is_system: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("identifier", mode="before")
    @classmethod
    def identifier_lowercase(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class PolicyUpdate(BaseModel):
    """Partial policy update. A supplied permission list replaces the current one."""
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[str]] = None
    priority: Optional[int] = Field(None, ge=0, le=100)
    category: Optional[PolicyCategory] = None
    is_active: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class PolicyResponse(BaseModel):
    id: str
    identifier: str
    name: str
    description: Optional[str] = None
    priority: int
    category: str
    is_active: bool
    is_system: bool
    deleted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    permissions: List[PermissionResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """Schema for creating a role. Policies may be ids or policy identifiers."""
    identifier: str = Field(..., min_length=1, max_length=100, pattern=SLUG_PATTERN)
    name: str = Field(..., min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    policies: List[str] = Field(default_factory=list)
    level: int = Field(0, ge=0, le=100)
    is_system: bool = False
    is_default: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("identifier", mode="before")
    @classmethod
    def identifier_lowercase(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    policies: Optional[List[str]] = None
    level: Optional[int] = Field(None, ge=0, le=100)
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None
    metadata: Optional[Dict[str, Any]] = None


class RoleResponse(BaseModel):
    id: str
    identifier: str
    name: str
    description: Optional[str] = None
    level: int
    is_active: bool
    is_system: bool
    is_default: bool
    deleted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")
    policies: List[PolicyResponse] = []
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRole(BaseModel):
    """Schema for assigning a role to an account."""
    user_id: str = Field(..., min_length=1, max_length=64)
    role_id: str = Field(..., min_length=1, max_length=26)
    expires_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=500)


class ExtendExpiry(BaseModel):
    days: int = Field(..., gt=0, le=3650)


class AssignmentResponse(BaseModel):
    id: str
    user_id: str
    role_id: str
    is_active: bool
    assigned_by: Optional[str] = None
    assigned_at: datetime
    expires_at: Optional[datetime] = None
    reason: Optional[str] = None
    deleted_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="extra")

    model_config = ConfigDict(from_attributes=True)


class AssignmentWithRole(AssignmentResponse):
    role: RoleResponse


class EffectivePermissionsResponse(BaseModel):
    """Union of every permission reachable through an account's effective roles."""
    user_id: str
    roles: List[str] = []
    permissions: List[str] = []
