"""
Policy store: named bundles of permissions.
"""
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core.errors import (
    BadRequestError,
    ConflictError,
    InvariantViolationError,
    NotFoundError,
    service_boundary,
)
from team_access.features.rbac.models import Permission, Policy
from team_access.features.rbac.schemas import PolicyCreate, PolicyUpdate, patch_values
from team_access.utils import get_logger


log = get_logger(__name__)


async def resolve_permission_refs(db: AsyncSession, refs: Sequence[str]) -> List[Permission]:
    """
    Normalize permission references (ids or ``resource:action`` identifiers)
    to Permission rows, preserving order and dropping duplicates.

    Raises:
        BadRequestError: if any reference matches no permission
    """
    if not refs:
        return []
    result = await db.execute(
        select(Permission).where(or_(Permission.id.in_(refs), Permission.identifier.in_(refs)))
    )
    by_ref: Dict[str, Permission] = {}
    for permission in result.scalars().all():
        by_ref[permission.id] = permission
        by_ref[permission.identifier] = permission

    missing = [ref for ref in refs if ref not in by_ref]
    if missing:
        raise BadRequestError(f"Unknown permissions: {', '.join(missing)}")

    resolved: Dict[str, Permission] = {}
    for ref in refs:
        permission = by_ref[ref]
        resolved.setdefault(permission.id, permission)
    return list(resolved.values())


class PolicyService:
    """
    CRUD over policies. Every read returns the policy with its permission
    objects loaded.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @service_boundary("Failed to create policy")
    async def create(self, data: PolicyCreate) -> Policy:
        if await self.find_by_identifier(data.identifier) is not None:
            raise ConflictError(f"Policy '{data.identifier}' already exists")

        policy = Policy(
            identifier=data.identifier,
            name=data.name,
            description=data.description,
            priority=data.priority,
            category=data.category.value,
            is_system=data.is_system,
            extra=data.metadata,
            permissions=await resolve_permission_refs(self.db, data.permissions),
        )
        self.db.add(policy)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Policy '{data.identifier}' already exists")

        log.info(f"Created policy {policy.identifier} with {len(policy.permissions)} permissions")
        return await self.find_by_id(policy.id)

    async def find_all(self) -> List[Policy]:
        result = await self.db.execute(
            select(Policy)
            .where(Policy.deleted_at.is_(None))
            .order_by(Policy.priority.desc(), Policy.identifier)
        )
        return list(result.scalars().all())

    async def find_by_id(self, policy_id: str) -> Policy:
        result = await self.db.execute(
            select(Policy)
            .where(Policy.id == policy_id)
            .execution_options(populate_existing=True)
        )
        policy = result.scalar_one_or_none()
        if policy is None:
            raise NotFoundError("Policy not found")
        return policy

    async def find_by_identifier(self, identifier: str) -> Optional[Policy]:
        result = await self.db.execute(select(Policy).where(Policy.identifier == identifier.lower()))
        return result.scalar_one_or_none()

    async def find_by_category(self, category: str) -> List[Policy]:
        result = await self.db.execute(
            select(Policy)
            .where(
                Policy.category == category,
                Policy.is_active.is_(True),
                Policy.deleted_at.is_(None),
            )
            .order_by(Policy.priority.desc())
        )
        return list(result.scalars().all())

    @service_boundary("Failed to update policy")
    async def update(self, policy_id: str, patch: PolicyUpdate) -> Policy:
        policy = await self.find_by_id(policy_id)

        update_data: Dict[str, Any] = patch_values(patch)
        if "permissions" in update_data:
            # Replacement, not merge
            refs = update_data.pop("permissions") or []
            policy.permissions = await resolve_permission_refs(self.db, refs)
        if "metadata" in update_data:
            update_data["extra"] = update_data.pop("metadata") or {}
        if update_data.get("category") is not None:
            update_data["category"] = patch.category.value
        for key, value in update_data.items():
            setattr(policy, key, value)

        await self.db.commit()
        return await self.find_by_id(policy_id)

    @service_boundary("Failed to add permission to policy")
    async def add_permission(self, policy_id: str, permission_id: str) -> Policy:
        policy = await self.find_by_id(policy_id)
        permission = await self.db.get(Permission, permission_id)
        if permission is None:
            raise NotFoundError("Permission not found")

        if all(p.id != permission.id for p in policy.permissions):
            policy.permissions.append(permission)
            await self.db.commit()
            log.info(f"Added {permission.identifier} to policy {policy.identifier}")
        return await self.find_by_id(policy_id)

    @service_boundary("Failed to remove permission from policy")
    async def remove_permission(self, policy_id: str, permission_id: str) -> Policy:
        policy = await self.find_by_id(policy_id)
        remaining = [p for p in policy.permissions if p.id != permission_id]
        if len(remaining) != len(policy.permissions):
            policy.permissions = remaining
            await self.db.commit()
            log.info(f"Removed permission {permission_id} from policy {policy.identifier}")
        return await self.find_by_id(policy_id)

    @service_boundary("Failed to delete policy")
    async def soft_delete(self, policy_id: str) -> Policy:
        policy = await self.find_by_id(policy_id)
        if policy.is_system:
            log.warning(f"Refused to delete system policy {policy.identifier}")
            raise InvariantViolationError("Cannot delete system policies")
        policy.soft_delete()
        await self.db.commit()
        log.info(f"Soft-deleted policy {policy.identifier}")
        return await self.find_by_id(policy_id)

    @service_boundary("Failed to restore policy")
    async def restore(self, policy_id: str) -> Policy:
        policy = await self.find_by_id(policy_id)
        policy.restore()
        await self.db.commit()
        return await self.find_by_id(policy_id)
