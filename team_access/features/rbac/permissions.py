"""
Permission store.
"""
from typing import Any, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core.errors import ConflictError, NotFoundError, service_boundary
from team_access.features.rbac.models import Permission
from team_access.features.rbac.schemas import PermissionCreate, PermissionUpdate, patch_values
from team_access.utils import get_logger


log = get_logger(__name__)


def derive_identifier(resource: str, action: str) -> str:
    return f"{resource}:{action}"


class PermissionService:
    """CRUD over atomic permissions. Soft-deleted rows are hidden from listings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @service_boundary("Failed to create permission")
    async def create(self, data: PermissionCreate) -> Permission:
        action = data.action.value
        identifier = data.identifier or derive_identifier(data.resource, action)

        if await self.find_by_identifier(identifier) is not None:
            raise ConflictError(f"Permission '{identifier}' already exists")

        permission = Permission(
            identifier=identifier,
            resource=data.resource,
            action=action,
            name=data.name,
            description=data.description,
            is_active=data.is_active,
            extra=data.metadata,
        )
        self.db.add(permission)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Permission '{identifier}' already exists")

        log.info(f"Created permission {identifier} ({permission.id})")
        return await self.find_by_id(permission.id)

    async def find_all(self) -> List[Permission]:
        result = await self.db.execute(
            select(Permission)
            .where(Permission.deleted_at.is_(None))
            .order_by(Permission.resource, Permission.action)
        )
        return list(result.scalars().all())

    async def find_by_id(self, permission_id: str) -> Permission:
        result = await self.db.execute(
            select(Permission)
            .where(Permission.id == permission_id)
            .execution_options(populate_existing=True)
        )
        permission = result.scalar_one_or_none()
        if permission is None:
            raise NotFoundError("Permission not found")
        return permission

    async def find_by_identifier(self, identifier: str) -> Optional[Permission]:
        result = await self.db.execute(select(Permission).where(Permission.identifier == identifier))
        return result.scalar_one_or_none()

    async def find_by_resource(self, resource: str) -> List[Permission]:
        result = await self.db.execute(
            select(Permission)
            .where(
                Permission.resource == resource.lower(),
                Permission.is_active.is_(True),
                Permission.deleted_at.is_(None),
            )
            .order_by(Permission.action)
        )
        return list(result.scalars().all())

    @service_boundary("Failed to update permission")
    async def update(self, permission_id: str, patch: PermissionUpdate) -> Permission:
        permission = await self.find_by_id(permission_id)

        update_data: Dict[str, Any] = patch_values(patch)
        if "metadata" in update_data:
            update_data["extra"] = update_data.pop("metadata") or {}
        for key, value in update_data.items():
            setattr(permission, key, value)

        await self.db.commit()
        return await self.find_by_id(permission_id)

    @service_boundary("Failed to delete permission")
    async def soft_delete(self, permission_id: str) -> Permission:
        permission = await self.find_by_id(permission_id)
        permission.soft_delete()
        await self.db.commit()
        log.info(f"Soft-deleted permission {permission.identifier}")
        return await self.find_by_id(permission_id)

    @service_boundary("Failed to restore permission")
    async def restore(self, permission_id: str) -> Permission:
        permission = await self.find_by_id(permission_id)
        permission.restore()
        await self.db.commit()
        log.info(f"Restored permission {permission.identifier}")
        return await self.find_by_id(permission_id)
