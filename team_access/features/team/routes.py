"""
Team management routes: admin accounts and their lifecycle.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query, status

from team_access.features.rbac.dependencies import require_permission
from team_access.features.rbac.models import Role
from team_access.features.rbac.schemas import RoleResponse
from team_access.features.team.dependencies import get_bearer_token, get_team_service
from team_access.features.team.models import AdminAccount, AdminUserStatus
from team_access.features.team.schemas import (
    AdminCreate,
    AdminListResponse,
    AdminResponse,
    AdminUpdate,
    MessageResponse,
    SendResetLink,
)
from team_access.features.team.service import TeamManagementService


router = APIRouter()

Service = Annotated[TeamManagementService, Depends(get_team_service)]


def to_response(admin: AdminAccount, roles: List[Role]) -> AdminResponse:
    response = AdminResponse.model_validate(admin)
    response.roles = [RoleResponse.model_validate(role) for role in roles]
    return response


@router.post("/admin", response_model=AdminResponse, status_code=status.HTTP_201_CREATED)
async def create_admin(
    data: AdminCreate,
    service: Service,
    token: Annotated[str, Depends(get_bearer_token)],
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "create"))],
):
    """Create an admin account, provisioning its login in the auth service."""
    created = await service.create_admin(data, auth_token=token)
    return to_response(created, await service.get_roles(created.id))


@router.patch("/admin/{admin_id}", response_model=AdminResponse)
async def update_admin(
    admin_id: str,
    patch: AdminUpdate,
    service: Service,
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "update"))],
):
    updated = await service.update_admin(admin_id, patch)
    return to_response(updated, await service.get_roles(updated.id))


@router.post("/admin/send-reset-link", response_model=MessageResponse)
async def send_reset_link(
    data: SendResetLink,
    service: Service,
    token: Annotated[str, Depends(get_bearer_token)],
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "update"))],
):
    await service.send_reset_link(data.email, auth_token=token)
    return MessageResponse(message="Password reset link sent successfully")


@router.get("/admin-users", response_model=AdminListResponse)
async def list_admins(
    service: Service,
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "list"))],
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    status_filter: Optional[List[AdminUserStatus]] = Query(None, alias="status"),
):
    """List admins, newest first, each with its effective roles."""
    rows, total = await service.list_admins(page, page_size, status_filter)
    return AdminListResponse(
        items=[to_response(a, roles) for a, roles in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/admin-users/{admin_id}", response_model=AdminResponse)
async def get_admin(
    admin_id: str,
    service: Service,
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "read"))],
):
    found = await service.get_admin(admin_id)
    return to_response(found, await service.get_roles(admin_id))


@router.get("/admin-users/{admin_id}/roles", response_model=List[RoleResponse])
async def get_admin_roles(
    admin_id: str,
    service: Service,
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "read"))],
):
    return await service.get_roles(admin_id)


@router.post("/admin-users/{admin_id}/suspend", response_model=MessageResponse)
async def suspend_admin(
    admin_id: str,
    service: Service,
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "update"))],
):
    """Suspend an admin. Admins cannot suspend themselves or a super admin."""
    await service.suspend(admin_id, admin.id)
    return MessageResponse(message="Admin user suspended successfully")


@router.post("/admin-users/{admin_id}/reactivate", response_model=MessageResponse)
async def reactivate_admin(
    admin_id: str,
    service: Service,
    admin: Annotated[AdminAccount, Depends(require_permission("admin_user", "update"))],
):
    await service.reactivate(admin_id, admin.id)
    return MessageResponse(message="Admin user reactivated successfully")
