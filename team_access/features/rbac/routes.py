"""
Access-control management API routes.

Endpoints for permissions, policies, roles and user-role assignments. Every
route is guarded by ``require_permission``; super admins pass all guards.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core.database.engine import get_db
from team_access.features.rbac.assignments import AssignmentService, collect_permissions
from team_access.features.rbac.dependencies import require_permission
from team_access.features.rbac.models import PolicyCategory
from team_access.features.rbac.permissions import PermissionService
from team_access.features.rbac.policies import PolicyService
from team_access.features.rbac.roles import RoleService
from team_access.features.rbac.schemas import (
    AssignmentResponse,
    AssignmentWithRole,
    AssignRole,
    EffectivePermissionsResponse,
    ExtendExpiry,
    PermissionCreate,
    PermissionResponse,
    PermissionUpdate,
    PolicyCreate,
    PolicyResponse,
    PolicyUpdate,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
)
from team_access.features.team.models import AdminAccount
from team_access.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

DB = Annotated[AsyncSession, Depends(get_db)]


# ============================================================================
# Permission Routes
# ============================================================================

@router.post("/permissions", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    data: PermissionCreate,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "create"))],
):
    """Create a permission; the identifier defaults to ``resource:action``."""
    return await PermissionService(db).create(data)


@router.get("/permissions", response_model=List[PermissionResponse])
async def list_permissions(
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "list"))],
):
    return await PermissionService(db).find_all()


@router.get("/permissions/resource/{resource}", response_model=List[PermissionResponse])
async def list_permissions_by_resource(
    resource: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "list"))],
):
    """Active permissions on one resource."""
    return await PermissionService(db).find_by_resource(resource)


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
async def get_permission(
    permission_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "read"))],
):
    return await PermissionService(db).find_by_id(permission_id)


@router.patch("/permissions/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: str,
    patch: PermissionUpdate,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "update"))],
):
    return await PermissionService(db).update(permission_id, patch)


@router.delete("/permissions/{permission_id}", response_model=PermissionResponse)
async def delete_permission(
    permission_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "delete"))],
):
    """Soft-delete a permission."""
    return await PermissionService(db).soft_delete(permission_id)


@router.post("/permissions/{permission_id}/restore", response_model=PermissionResponse)
async def restore_permission(
    permission_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("permission", "update"))],
):
    return await PermissionService(db).restore(permission_id)


# ============================================================================
# Policy Routes
# ============================================================================

@router.post("/policies", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    data: PolicyCreate,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "create"))],
):
    return await PolicyService(db).create(data)


@router.get("/policies", response_model=List[PolicyResponse])
async def list_policies(
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "list"))],
    category: Optional[PolicyCategory] = None,
):
    """List policies, highest priority first; ``category`` narrows to active policies of that category."""
    service = PolicyService(db)
    if category is not None:
        return await service.find_by_category(category.value)
    return await service.find_all()


@router.get("/policies/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "read"))],
):
    return await PolicyService(db).find_by_id(policy_id)


@router.patch("/policies/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: str,
    patch: PolicyUpdate,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "update"))],
):
    return await PolicyService(db).update(policy_id, patch)


@router.put("/policies/{policy_id}/permissions/{permission_id}", response_model=PolicyResponse)
async def add_permission_to_policy(
    policy_id: str,
    permission_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "update"))],
):
    return await PolicyService(db).add_permission(policy_id, permission_id)


@router.delete("/policies/{policy_id}/permissions/{permission_id}", response_model=PolicyResponse)
async def remove_permission_from_policy(
    policy_id: str,
    permission_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "update"))],
):
    return await PolicyService(db).remove_permission(policy_id, permission_id)


@router.delete("/policies/{policy_id}", response_model=PolicyResponse)
async def delete_policy(
    policy_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "delete"))],
):
    """Soft-delete a policy. System policies cannot be deleted."""
    return await PolicyService(db).soft_delete(policy_id)


@router.post("/policies/{policy_id}/restore", response_model=PolicyResponse)
async def restore_policy(
    policy_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("policy", "update"))],
):
    return await PolicyService(db).restore(policy_id)


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "create"))],
):
    return await RoleService(db).create(data)


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "list"))],
):
    return await RoleService(db).find_all()


@router.get("/roles/default", response_model=RoleResponse)
async def get_default_role(
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "read"))],
):
    return await RoleService(db).get_default_role()


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "read"))],
):
    return await RoleService(db).find_by_id(role_id)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    patch: RoleUpdate,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "update"))],
):
    return await RoleService(db).update(role_id, patch)


@router.put("/roles/{role_id}/default", response_model=RoleResponse)
async def set_default_role(
    role_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "update"))],
):
    """Make this role the default; the previous default loses the flag."""
    return await RoleService(db).set_default_role(role_id)


@router.put("/roles/{role_id}/policies/{policy_id}", response_model=RoleResponse)
async def add_policy_to_role(
    role_id: str,
    policy_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "update"))],
):
    return await RoleService(db).add_policy(role_id, policy_id)


@router.delete("/roles/{role_id}/policies/{policy_id}", response_model=RoleResponse)
async def remove_policy_from_role(
    role_id: str,
    policy_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "update"))],
):
    return await RoleService(db).remove_policy(role_id, policy_id)


@router.delete("/roles/{role_id}", response_model=RoleResponse)
async def delete_role(
    role_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "delete"))],
):
    """Soft-delete a role. System and default roles cannot be deleted."""
    return await RoleService(db).soft_delete(role_id)


@router.post("/roles/{role_id}/restore", response_model=RoleResponse)
async def restore_role(
    role_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("role", "update"))],
):
    return await RoleService(db).restore(role_id)


# ============================================================================
# User-Role Assignment Routes
# ============================================================================

@router.post("/user-roles", response_model=AssignmentWithRole, status_code=status.HTTP_201_CREATED)
async def assign_role(
    data: AssignRole,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "create"))],
):
    """Assign a role; assigning a role the user already holds returns the existing assignment."""
    return await AssignmentService(db).assign(
        data.user_id,
        data.role_id,
        assigned_by=admin.id,
        expires_at=data.expires_at,
        reason=data.reason,
    )


@router.get("/user-roles", response_model=List[AssignmentResponse])
async def list_assignments(
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "list"))],
):
    return await AssignmentService(db).find_all()


@router.get("/user-roles/user/{user_id}", response_model=List[AssignmentWithRole])
async def get_user_roles(
    user_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "read"))],
):
    """Effective assignments of a user with their role graphs."""
    return await AssignmentService(db).get_effective_roles(user_id)


@router.get("/user-roles/user/{user_id}/permissions", response_model=EffectivePermissionsResponse)
async def get_user_permissions(
    user_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "read"))],
):
    service = AssignmentService(db)
    assignments = await service.get_effective_roles(user_id)
    permissions = collect_permissions(assignments)
    return EffectivePermissionsResponse(
        user_id=user_id,
        roles=[a.role.identifier for a in assignments],
        permissions=[p.identifier for p in permissions],
    )


@router.get("/user-roles/role/{role_id}", response_model=List[AssignmentResponse])
async def get_role_holders(
    role_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "read"))],
):
    return await AssignmentService(db).get_identities_with_role(role_id)


@router.delete("/user-roles/{user_id}/{role_id}", response_model=Optional[AssignmentResponse])
async def revoke_role(
    user_id: str,
    role_id: str,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "delete"))],
):
    """Revoke a role; returns null when the user did not hold it."""
    return await AssignmentService(db).revoke(user_id, role_id, revoked_by=admin.id)


@router.put("/user-roles/{user_id}/{role_id}/extend", response_model=Optional[AssignmentResponse])
async def extend_role(
    user_id: str,
    role_id: str,
    data: ExtendExpiry,
    db: DB,
    admin: Annotated[AdminAccount, Depends(require_permission("user_role", "update"))],
):
    return await AssignmentService(db).extend_expiry(user_id, role_id, data.days)
