"""
Route guards backed by the authorization resolver.
"""
from typing import Annotated
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core.database.engine import get_db
from team_access.core.errors import ForbiddenError
from team_access.features.rbac.assignments import AssignmentService
from team_access.features.team.dependencies import get_current_admin
from team_access.features.team.models import AdminAccount, AdminUserType
from team_access.utils import get_logger


log = get_logger(__name__)


def require_permission(resource: str, action: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles")
        async def create_role(
            admin: AdminAccount = Depends(require_permission("role", "create"))
        ):
            ...

    Super admins pass every check. Everyone else needs an effective
    ``resource:action`` grant.

    Raises:
        ForbiddenError: If the admin lacks the permission
    """
    async def permission_dependency(
        db: Annotated[AsyncSession, Depends(get_db)],
        admin: Annotated[AdminAccount, Depends(get_current_admin)],
    ) -> AdminAccount:
        if admin.type == AdminUserType.SUPER_ADMIN:
            return admin

        if not await AssignmentService(db).has_permission(admin.id, resource, action):
            log.warning(f"Permission denied: admin {admin.id} lacks {resource}:{action}")
            raise ForbiddenError(f"Permission denied: {action} on {resource}")

        return admin

    return permission_dependency
