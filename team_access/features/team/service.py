"""
Admin account lifecycle.

Accounts move between ``active`` and ``suspended`` through ``suspend`` and
``reactivate``. Both run the same guard chain, in order:

1. the actor may not act on their own account;
2. the target must exist;
3. the target must not already be in the requested state;
4. an ``admin`` may not act on a ``super_admin``.

Status writes are version-checked, so of two concurrent transitions on one
account exactly one commits and the other gets ``ConflictError``.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from team_access.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceError,
    service_boundary,
)
from team_access.features.rbac.assignments import AssignmentService
from team_access.features.rbac.models import Role
from team_access.features.team.audit import AuditTrail
from team_access.features.team.models import AdminAccount, AdminUserStatus, AdminUserType
from team_access.features.team.provisioning import ProvisioningClient
from team_access.features.team.schemas import AdminCreate, AdminUpdate
from team_access.utils import get_logger


log = get_logger(__name__)

ADMIN_NOT_FOUND = "Admin user not found"
ADMIN_ALREADY_EXISTS = "Admin user with this email already exists"

# action -> (target status, self-action message, already-there message, insufficient message)
_TRANSITIONS: Dict[str, Tuple[AdminUserStatus, str, str, str]] = {
    "suspend": (
        AdminUserStatus.SUSPENDED,
        "You cannot suspend your own account",
        "Admin user is already suspended",
        "Insufficient permissions to suspend this admin",
    ),
    "reactivate": (
        AdminUserStatus.ACTIVE,
        "You cannot reactivate your own account",
        "Admin user is already active",
        "Insufficient permissions to reactivate this admin",
    ),
}

_AUDIT_ACTIONS = {"suspend": "ADMIN_SUSPENDED", "reactivate": "ADMIN_REACTIVATED"}


class TeamManagementService:
    """Creates, updates and moves admin accounts through their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        provisioning: ProvisioningClient,
        audit: Optional[AuditTrail] = None,
    ):
        self.db = db
        self.provisioning = provisioning
        self.audit = audit
        self.assignments = AssignmentService(db)

    async def _find(self, admin_id: str) -> Optional[AdminAccount]:
        result = await self.db.execute(
            select(AdminAccount)
            .where(AdminAccount.id == admin_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_by_email(self, email: str) -> Optional[AdminAccount]:
        result = await self.db.execute(select(AdminAccount).where(AdminAccount.email == email))
        return result.scalar_one_or_none()

    async def get_admin(self, admin_id: str) -> AdminAccount:
        admin = await self._find(admin_id)
        if admin is None:
            raise NotFoundError(ADMIN_NOT_FOUND)
        return admin

    async def get_roles(self, admin_id: str) -> List[Role]:
        """Effective roles of the account, oldest assignment first."""
        await self.get_admin(admin_id)
        assignments = await self.assignments.get_effective_roles(admin_id)
        return [assignment.role for assignment in assignments]

    async def list_admins(
        self,
        page: int = 1,
        page_size: int = 10,
        statuses: Optional[Sequence[AdminUserStatus]] = None,
    ) -> Tuple[List[Tuple[AdminAccount, List[Role]]], int]:
        """
        One page of accounts, newest first, each paired with its effective roles.

        Roles for the whole page are loaded in a single query.
        """
        conditions = []
        if statuses:
            conditions.append(AdminAccount.status.in_(list(statuses)))

        total = await self.db.scalar(
            select(func.count()).select_from(AdminAccount).where(*conditions)
        )
        result = await self.db.execute(
            select(AdminAccount)
            .where(*conditions)
            .order_by(AdminAccount.created_at.desc(), AdminAccount.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        admins = list(result.scalars().all())

        roles = await self.assignments.get_effective_roles_for_users([a.id for a in admins])
        return [(admin, roles.get(admin.id, [])) for admin in admins], total or 0

    @service_boundary("Failed to create admin user")
    async def create_admin(self, data: AdminCreate, auth_token: Optional[str] = None) -> AdminAccount:
        """
        Create an admin account.

        The external identity is provisioned first; the local row stores its
        subject id. A failure to assign the initial role is logged and does not
        fail the creation.
        """
        log.info(f"Admin creation attempt for {data.email} (type={data.type.value})")

        if await self._find_by_email(data.email) is not None:
            log.warning(f"Admin user with email {data.email} already exists")
            raise ConflictError(ADMIN_ALREADY_EXISTS)

        subject_id = await self.provisioning.create_external_identity(data.email, auth_token)

        admin = AdminAccount(
            email=data.email,
            name=data.name,
            type=data.type,
            status=data.status,
            external_subject_id=subject_id,
        )
        self.db.add(admin)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            log.warning(f"Concurrent creation of admin {data.email}")
            raise ConflictError(ADMIN_ALREADY_EXISTS)

        if data.role_id:
            try:
                await self.assignments.assign(admin.id, data.role_id, reason="Initial role")
            except ServiceError as exc:
                log.error(f"Failed to assign role {data.role_id} to new admin {admin.id}: {exc.message}")

        log.info(f"Admin user {admin.id} created for {data.email} (subject={subject_id}, role={data.role_id})")
        return await self.get_admin(admin.id)

    @service_boundary("Failed to update admin user")
    async def update_admin(self, admin_id: str, patch: AdminUpdate) -> AdminAccount:
        """
        Apply a partial update.

        A ``role_id`` key in the patch replaces the account's roles: every
        effective assignment is revoked, then the new role (if not null) is
        assigned.
        """
        update_data: Dict[str, Any] = patch.model_dump(exclude_unset=True)
        log.info(f"Admin update attempt for {admin_id}: fields={sorted(update_data)}")

        admin = await self._find(admin_id)
        if admin is None:
            log.warning(f"Admin user {admin_id} not found")
            raise NotFoundError(ADMIN_NOT_FOUND)

        email = update_data.get("email")
        if email and email != admin.email:
            other = await self._find_by_email(email)
            if other is not None and other.id != admin.id:
                log.warning(f"Email {email} already belongs to admin {other.id}")
                raise ConflictError(ADMIN_ALREADY_EXISTS)

        replace_roles = "role_id" in update_data
        role_id = update_data.pop("role_id", None)
        for key, value in update_data.items():
            if value is not None:
                setattr(admin, key, value)

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConflictError("Admin user was modified concurrently")
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(ADMIN_ALREADY_EXISTS)

        if replace_roles:
            await self.assignments.revoke_all(admin.id)
            if role_id:
                await self.assignments.assign(admin.id, role_id, reason="Role updated")

        log.info(f"Admin user {admin.id} updated (status={admin.status.value}, type={admin.type.value})")
        return await self.get_admin(admin.id)

    async def _transition(self, action: str, target_id: str, actor_id: str) -> AdminAccount:
        new_status, self_message, already_message, insufficient_message = _TRANSITIONS[action]
        log.info(f"Admin {action} attempt: target={target_id} actor={actor_id}")

        if actor_id == target_id:
            log.warning(f"Admin {actor_id} attempted to {action} their own account")
            raise ForbiddenError(self_message)

        target = await self._find(target_id)
        if target is None:
            log.warning(f"Target admin {target_id} not found")
            raise NotFoundError(ADMIN_NOT_FOUND)

        if target.status == new_status:
            log.warning(f"Admin {target_id} is already {new_status.value}")
            raise BadRequestError(already_message)

        actor = await self._find(actor_id)
        if (
            actor is not None
            and actor.type == AdminUserType.ADMIN
            and target.type == AdminUserType.SUPER_ADMIN
        ):
            log.warning(f"Admin {actor_id} attempted to {action} super admin {target_id}")
            raise ForbiddenError(insufficient_message)

        target.status = new_status
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            log.warning(f"Concurrent status change on admin {target_id}; {action} lost")
            raise ConflictError("Admin user was modified concurrently")

        log.info(f"Admin {target_id} is now {new_status.value} (by {actor_id})")

        if self.audit is not None:
            self.audit.fire(
                _AUDIT_ACTIONS[action],
                actor_id=actor_id,
                resource_type="admin_user",
                resource_id=target_id,
                details={"status": new_status.value},
            )
        return target

    @service_boundary("Failed to suspend admin user")
    async def suspend(self, target_id: str, actor_id: str) -> AdminAccount:
        return await self._transition("suspend", target_id, actor_id)

    @service_boundary("Failed to reactivate admin user")
    async def reactivate(self, target_id: str, actor_id: str) -> AdminAccount:
        return await self._transition("reactivate", target_id, actor_id)

    async def send_reset_link(self, email: str, auth_token: Optional[str] = None) -> None:
        await self.provisioning.send_password_reset_link(email, auth_token)
