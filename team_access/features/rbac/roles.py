"""
Role store: named bundles of policies with a hierarchy level.

Keeps at most one default role: every write that sets ``is_default``
clears the flag on the other roles in the same transaction.
"""
from typing import Any, Dict, List, Optional, Sequence
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core.errors import (
    BadRequestError,
    ConflictError,
    InvariantViolationError,
    NotFoundError,
    service_boundary,
)
from team_access.features.rbac.models import Policy, Role
from team_access.features.rbac.schemas import RoleCreate, RoleUpdate, patch_values
from team_access.utils import get_logger


log = get_logger(__name__)


async def resolve_policy_refs(db: AsyncSession, refs: Sequence[str]) -> List[Policy]:
    """Normalize policy references (ids or identifiers) to Policy rows."""
    if not refs:
        return []
    result = await db.execute(
        select(Policy).where(or_(Policy.id.in_(refs), Policy.identifier.in_(refs)))
    )
    by_ref: Dict[str, Policy] = {}
    for policy in result.scalars().all():
        by_ref[policy.id] = policy
        by_ref[policy.identifier] = policy

    missing = [ref for ref in refs if ref not in by_ref]
    if missing:
        raise BadRequestError(f"Unknown policies: {', '.join(missing)}")

    resolved: Dict[str, Policy] = {}
    for ref in refs:
        policy = by_ref[ref]
        resolved.setdefault(policy.id, policy)
    return list(resolved.values())


class RoleService:
    """
    CRUD over roles. Reads return roles hydrated down to permissions
    (role -> policies -> permissions).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _demote_other_defaults(self, role_id: str) -> None:
        result = await self.db.execute(
            update(Role)
            .where(Role.is_default.is_(True), Role.id != role_id)
            .values(is_default=False)
        )
        if result.rowcount:
            log.info(f"Cleared default flag on {result.rowcount} role(s) in favour of {role_id}")

    @service_boundary("Failed to create role")
    async def create(self, data: RoleCreate) -> Role:
        if await self.find_by_identifier(data.identifier) is not None:
            raise ConflictError(f"Role '{data.identifier}' already exists")

        role = Role(
            identifier=data.identifier,
            name=data.name,
            description=data.description,
            level=data.level,
            is_system=data.is_system,
            is_default=data.is_default,
            extra=data.metadata,
            policies=await resolve_policy_refs(self.db, data.policies),
        )
        self.db.add(role)
        try:
            await self.db.flush()
            if role.is_default:
                await self._demote_other_defaults(role.id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(f"Role '{data.identifier}' already exists")

        log.info(f"Created role {role.identifier} (level={role.level}, default={role.is_default})")
        return await self.find_by_id(role.id)

    async def find_all(self) -> List[Role]:
        result = await self.db.execute(
            select(Role)
            .where(Role.deleted_at.is_(None))
            .order_by(Role.level.desc(), Role.identifier)
        )
        return list(result.scalars().all())

    async def find_by_id(self, role_id: str) -> Role:
        result = await self.db.execute(
            select(Role)
            .where(Role.id == role_id)
            .execution_options(populate_existing=True)
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFoundError("Role not found")
        return role

    async def find_by_identifier(self, identifier: str) -> Optional[Role]:
        result = await self.db.execute(select(Role).where(Role.identifier == identifier.lower()))
        return result.scalar_one_or_none()

    async def get_default_role(self) -> Role:
        result = await self.db.execute(
            select(Role)
            .where(
                Role.is_default.is_(True),
                Role.is_active.is_(True),
                Role.deleted_at.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        role = result.scalars().first()
        if role is None:
            raise NotFoundError("Default role not found")
        return role

    @service_boundary("Failed to set default role")
    async def set_default_role(self, role_id: str) -> Role:
        role = await self.find_by_id(role_id)
        if role.is_deleted:
            raise BadRequestError("A deleted role cannot be the default role")
        role.is_default = True
        await self._demote_other_defaults(role.id)
        await self.db.commit()
        log.info(f"Role {role.identifier} is now the default role")
        return await self.find_by_id(role_id)

    @service_boundary("Failed to update role")
    async def update(self, role_id: str, patch: RoleUpdate) -> Role:
        role = await self.find_by_id(role_id)

        update_data: Dict[str, Any] = patch_values(patch)
        if update_data.get("is_default") and role.is_deleted:
            raise BadRequestError("A deleted role cannot be the default role")
        if "policies" in update_data:
            refs = update_data.pop("policies") or []
            role.policies = await resolve_policy_refs(self.db, refs)
        if "metadata" in update_data:
            update_data["extra"] = update_data.pop("metadata") or {}
        for key, value in update_data.items():
            setattr(role, key, value)

        if update_data.get("is_default"):
            await self._demote_other_defaults(role.id)
        await self.db.commit()
        return await self.find_by_id(role_id)

    @service_boundary("Failed to add policy to role")
    async def add_policy(self, role_id: str, policy_id: str) -> Role:
        role = await self.find_by_id(role_id)
        policy = await self.db.get(Policy, policy_id)
        if policy is None:
            raise NotFoundError("Policy not found")

        if all(p.id != policy.id for p in role.policies):
            role.policies.append(policy)
            await self.db.commit()
            log.info(f"Added policy {policy.identifier} to role {role.identifier}")
        return await self.find_by_id(role_id)

    @service_boundary("Failed to remove policy from role")
    async def remove_policy(self, role_id: str, policy_id: str) -> Role:
        role = await self.find_by_id(role_id)
        remaining = [p for p in role.policies if p.id != policy_id]
        if len(remaining) != len(role.policies):
            role.policies = remaining
            await self.db.commit()
            log.info(f"Removed policy {policy_id} from role {role.identifier}")
        return await self.find_by_id(role_id)

    @service_boundary("Failed to delete role")
    async def soft_delete(self, role_id: str) -> Role:
        role = await self.find_by_id(role_id)
        if role.is_system:
            log.warning(f"Refused to delete system role {role.identifier}")
            raise InvariantViolationError("Cannot delete system roles")
        if role.is_default:
            log.warning(f"Refused to delete default role {role.identifier}")
            raise InvariantViolationError("Cannot delete default role")
        role.soft_delete()
        await self.db.commit()
        log.info(f"Soft-deleted role {role.identifier}")
        return await self.find_by_id(role_id)

    @service_boundary("Failed to restore role")
    async def restore(self, role_id: str) -> Role:
        role = await self.find_by_id(role_id)
        role.restore()
        await self.db.commit()
        return await self.find_by_id(role_id)
