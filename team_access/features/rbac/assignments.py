"""
Role assignments and authorization resolution.

An assignment is *effective* when it is active, not soft-deleted and not
expired. The capability set of an account is the plain union of every
active permission reachable through its effective assignments:

    assignment -> role -> policies -> permissions

There are no deny rules, so resolution never has to rank or reconcile
grants.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core import config
from team_access.core.errors import NotFoundError, ServiceError, service_boundary
from team_access.features.rbac.models import (
    Permission,
    Policy,
    Role,
    UserRoleAssignment,
    policy_permissions,
    role_policies,
)
from team_access.utils import as_utc, get_logger, utcnow


log = get_logger(__name__)


def effective_assignment(now: Optional[datetime] = None):
    """SQL predicate selecting effective assignments at ``now``."""
    now = now or utcnow()
    return and_(
        UserRoleAssignment.is_active.is_(True),
        UserRoleAssignment.deleted_at.is_(None),
        or_(UserRoleAssignment.expires_at.is_(None), UserRoleAssignment.expires_at > now),
    )


def _is_live(node) -> bool:
    return node.is_active and node.deleted_at is None


def collect_permissions(assignments: Sequence[UserRoleAssignment]) -> List[Permission]:
    """
    Union of the active permissions reachable from hydrated assignments,
    skipping deactivated or deleted roles and policies on the way.
    """
    permissions: Dict[str, Permission] = {}
    for assignment in assignments:
        role = assignment.role
        if role is None or not _is_live(role):
            continue
        for policy in role.policies:
            if not _is_live(policy):
                continue
            for permission in policy.permissions:
                if _is_live(permission):
                    permissions[permission.id] = permission
    return sorted(permissions.values(), key=lambda p: p.identifier)


class AssignmentService:
    """Assigns roles to accounts and resolves what those accounts may do."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, assignment_id: str) -> UserRoleAssignment:
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(UserRoleAssignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _find_live(self, user_id: str, role_id: str) -> Optional[UserRoleAssignment]:
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.deleted_at.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _find_effective(self, user_id: str, role_id: str) -> Optional[UserRoleAssignment]:
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                effective_assignment(),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    @service_boundary("Failed to assign role")
    async def assign(
        self,
        user_id: str,
        role_id: str,
        assigned_by: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        reason: Optional[str] = None,
    ) -> UserRoleAssignment:
        """
        Bind ``user_id`` to ``role_id``.

        - a live assignment for the pair is returned unchanged;
        - otherwise the most recent revoked one is restored in place;
        - otherwise a new assignment is created.

        A concurrent assign that wins the live-row unique index makes this
        call return the winner's row instead of failing.
        """
        role = await self.db.get(Role, role_id)
        if role is None or role.deleted_at is not None:
            raise NotFoundError("Role not found")

        existing = await self._find_live(user_id, role_id)
        if existing is not None:
            log.debug(f"User {user_id} already holds role {role_id}")
            return existing

        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.deleted_at.is_not(None),
            )
            .order_by(UserRoleAssignment.deleted_at.desc())
        )
        assignment = result.scalars().first()

        if assignment is not None:
            assignment.restore()
            assignment.assigned_by = assigned_by
            assignment.reason = reason or config.DEFAULT_ROLE_REASON
            assignment.expires_at = as_utc(expires_at)
            action = "Restored"
        else:
            assignment = UserRoleAssignment(
                user_id=user_id,
                role_id=role_id,
                assigned_by=assigned_by,
                assigned_at=utcnow(),
                expires_at=as_utc(expires_at),
                reason=reason,
            )
            self.db.add(assignment)
            action = "Created"

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            winner = await self._find_live(user_id, role_id)
            if winner is None:
                raise
            log.info(f"Concurrent assign of role {role_id} to {user_id}; using existing assignment")
            return winner

        log.info(f"{action} assignment of role {role.identifier} to user {user_id}")
        return await self._get(assignment.id)

    @service_boundary("Failed to revoke role")
    async def revoke(
        self, user_id: str, role_id: str, revoked_by: Optional[str] = None
    ) -> Optional[UserRoleAssignment]:
        """Soft-delete the effective assignment for the pair; ``None`` if there is none."""
        assignment = await self._find_effective(user_id, role_id)
        if assignment is None:
            log.debug(f"No effective assignment of role {role_id} for user {user_id} to revoke")
            return None

        assignment.revoke(revoked_by)
        await self.db.commit()
        log.info(f"Revoked role {role_id} from user {user_id} (by {revoked_by})")
        return await self._get(assignment.id)

    async def revoke_all(
        self, user_id: str, revoked_by: Optional[str] = None
    ) -> List[UserRoleAssignment]:
        """
        Revoke every effective assignment of ``user_id``.

        Each revoke commits on its own; a failure is logged and the rest are
        still attempted. Returns the assignments that were revoked.
        """
        result = await self.db.execute(
            select(UserRoleAssignment.role_id).where(
                UserRoleAssignment.user_id == user_id, effective_assignment()
            )
        )
        role_ids = list(result.scalars().all())

        revoked: List[UserRoleAssignment] = []
        for role_id in role_ids:
            try:
                assignment = await self.revoke(user_id, role_id, revoked_by)
            except ServiceError as exc:
                log.error(f"Failed to revoke role {role_id} from user {user_id}: {exc.message}")
                continue
            if assignment is not None:
                revoked.append(assignment)

        log.info(f"Revoked {len(revoked)}/{len(role_ids)} roles from user {user_id}")
        return revoked

    @service_boundary("Failed to extend role expiry")
    async def extend_expiry(
        self, user_id: str, role_id: str, days: int
    ) -> Optional[UserRoleAssignment]:
        assignment = await self._find_effective(user_id, role_id)
        if assignment is None:
            return None

        base = as_utc(assignment.expires_at) or utcnow()
        assignment.expires_at = base + timedelta(days=days)
        await self.db.commit()
        log.info(f"Extended role {role_id} for user {user_id} by {days} days")
        return await self._get(assignment.id)

    async def get_effective_roles(self, user_id: str) -> List[UserRoleAssignment]:
        """Effective assignments of ``user_id``, hydrated role -> policies -> permissions."""
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(UserRoleAssignment.user_id == user_id, effective_assignment())
            .order_by(UserRoleAssignment.assigned_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_effective_roles_for_users(self, user_ids: Sequence[str]) -> Dict[str, List[Role]]:
        """Effective roles for many accounts at once, keyed by user id."""
        roles: Dict[str, List[Role]] = defaultdict(list)
        if not user_ids:
            return roles
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(UserRoleAssignment.user_id.in_(user_ids), effective_assignment())
            .order_by(UserRoleAssignment.assigned_at)
        )
        for assignment in result.scalars().all():
            roles[assignment.user_id].append(assignment.role)
        return roles

    async def get_effective_permissions(self, user_id: str) -> List[Permission]:
        return collect_permissions(await self.get_effective_roles(user_id))

    async def has_role(self, user_id: str, role_id: str) -> bool:
        count = await self.db.scalar(
            select(func.count())
            .select_from(UserRoleAssignment)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                effective_assignment(),
            )
        )
        return bool(count)

    async def has_permission(self, user_id: str, resource: str, action: str) -> bool:
        """Single-query check that some effective grant path reaches ``resource:action``."""
        stmt = (
            select(Permission.id)
            .join(policy_permissions, policy_permissions.c.permission_id == Permission.id)
            .join(Policy, Policy.id == policy_permissions.c.policy_id)
            .join(role_policies, role_policies.c.policy_id == Policy.id)
            .join(Role, Role.id == role_policies.c.role_id)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                effective_assignment(),
                Role.is_active.is_(True),
                Role.deleted_at.is_(None),
                Policy.is_active.is_(True),
                Policy.deleted_at.is_(None),
                Permission.is_active.is_(True),
                Permission.deleted_at.is_(None),
                Permission.resource == resource,
                Permission.action == action,
            )
            .limit(1)
        )
        return (await self.db.scalar(stmt)) is not None

    async def get_identities_with_role(self, role_id: str) -> List[UserRoleAssignment]:
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(UserRoleAssignment.role_id == role_id, effective_assignment())
            .order_by(UserRoleAssignment.assigned_at)
        )
        return list(result.scalars().all())

    async def find_all(self) -> List[UserRoleAssignment]:
        result = await self.db.execute(
            select(UserRoleAssignment)
            .where(UserRoleAssignment.deleted_at.is_(None))
            .order_by(UserRoleAssignment.user_id, UserRoleAssignment.assigned_at)
        )
        return list(result.scalars().all())
