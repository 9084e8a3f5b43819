import asyncio

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from team_access.core.errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
)
from team_access.features.rbac.assignments import AssignmentService
from team_access.features.rbac.models import Role
from team_access.features.rbac.roles import RoleService
from team_access.features.rbac.schemas import RoleCreate
from team_access.features.team.audit import AuditTrail
from team_access.features.team.models import AdminAccount, AdminUserStatus, AdminUserType, AuditLog
from team_access.features.team.schemas import AdminCreate, AdminUpdate
from team_access.features.team.service import TeamManagementService


@pytest.fixture()
def service(session: AsyncSession, auth_service, audit: AuditTrail) -> TeamManagementService:
    return TeamManagementService(session, auth_service.client(), audit)


async def _reload(session: AsyncSession, admin_id: str) -> AdminAccount:
    result = await session.execute(
        select(AdminAccount).where(AdminAccount.id == admin_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ============================================================================
# Suspend / reactivate
# ============================================================================

@pytest.mark.asyncio
async def test_suspend_then_reactivate(
    service: TeamManagementService, admins: dict[str, AdminAccount], audit: AuditTrail, session: AsyncSession
) -> None:
    alice, bob = admins["alice"], admins["bob"]

    suspended = await service.suspend(bob.id, alice.id)
    assert suspended.status == AdminUserStatus.SUSPENDED

    reactivated = await service.reactivate(bob.id, alice.id)
    assert reactivated.status == AdminUserStatus.ACTIVE

    await audit.drain()
    result = await session.execute(select(AuditLog).order_by(AuditLog.action))
    entries = [(e.action, e.actor_id, e.resource_id) for e in result.scalars().all()]
    assert entries == [
        ("ADMIN_REACTIVATED", alice.id, bob.id),
        ("ADMIN_SUSPENDED", alice.id, bob.id),
    ]


@pytest.mark.asyncio
async def test_cannot_suspend_self(service: TeamManagementService, admins: dict[str, AdminAccount]) -> None:
    alice = admins["alice"]

    with pytest.raises(ForbiddenError) as excinfo:
        await service.suspend(alice.id, alice.id)

    assert excinfo.value.message == "You cannot suspend your own account"


@pytest.mark.asyncio
async def test_self_check_precedes_existence_check(service: TeamManagementService) -> None:
    with pytest.raises(ForbiddenError):
        await service.reactivate("missing", "missing")


@pytest.mark.asyncio
async def test_suspend_missing_admin(service: TeamManagementService, admins: dict[str, AdminAccount]) -> None:
    with pytest.raises(NotFoundError):
        await service.suspend("01ARZ3NDEKTSV4RRFFQ69G5FAV", admins["alice"].id)


@pytest.mark.asyncio
async def test_suspend_twice_is_rejected(
    service: TeamManagementService, admins: dict[str, AdminAccount]
) -> None:
    await service.suspend(admins["bob"].id, admins["alice"].id)

    with pytest.raises(BadRequestError) as excinfo:
        await service.suspend(admins["bob"].id, admins["alice"].id)

    assert excinfo.value.message == "Admin user is already suspended"


@pytest.mark.asyncio
async def test_reactivate_active_admin_is_rejected(
    service: TeamManagementService, admins: dict[str, AdminAccount]
) -> None:
    with pytest.raises(BadRequestError) as excinfo:
        await service.reactivate(admins["bob"].id, admins["alice"].id)

    assert excinfo.value.message == "Admin user is already active"


@pytest.mark.asyncio
async def test_admin_cannot_suspend_super_admin(
    service: TeamManagementService, admins: dict[str, AdminAccount], session: AsyncSession
) -> None:
    with pytest.raises(ForbiddenError) as excinfo:
        await service.suspend(admins["super"].id, admins["alice"].id)

    assert excinfo.value.message == "Insufficient permissions to suspend this admin"
    assert (await _reload(session, admins["super"].id)).status == AdminUserStatus.ACTIVE


@pytest.mark.asyncio
async def test_already_suspended_wins_over_insufficient_permissions(
    service: TeamManagementService, admins: dict[str, AdminAccount], session: AsyncSession
) -> None:
    target = admins["super"]
    target.status = AdminUserStatus.SUSPENDED
    await session.commit()

    with pytest.raises(BadRequestError):
        await service.suspend(target.id, admins["alice"].id)


@pytest.mark.asyncio
async def test_super_admin_can_suspend_super_admin(
    service: TeamManagementService, admins: dict[str, AdminAccount], session: AsyncSession
) -> None:
    other = AdminAccount(email="root2@example.com", type=AdminUserType.SUPER_ADMIN)
    session.add(other)
    await session.commit()

    suspended = await service.suspend(other.id, admins["super"].id)

    assert suspended.status == AdminUserStatus.SUSPENDED


@pytest.mark.asyncio
async def test_cannot_reactivate_self(
    service: TeamManagementService, admins: dict[str, AdminAccount], session: AsyncSession
) -> None:
    alice = admins["alice"]
    alice.status = AdminUserStatus.SUSPENDED
    await session.commit()

    with pytest.raises(ForbiddenError) as excinfo:
        await service.reactivate(alice.id, alice.id)

    assert excinfo.value.message == "You cannot reactivate your own account"
    assert (await _reload(session, alice.id)).status == AdminUserStatus.SUSPENDED


@pytest.mark.asyncio
async def test_admin_cannot_reactivate_super_admin(
    service: TeamManagementService, admins: dict[str, AdminAccount], session: AsyncSession
) -> None:
    target = admins["super"]
    target.status = AdminUserStatus.SUSPENDED
    await session.commit()

    with pytest.raises(ForbiddenError) as excinfo:
        await service.reactivate(target.id, admins["alice"].id)

    assert excinfo.value.message == "Insufficient permissions to reactivate this admin"
    assert (await _reload(session, target.id)).status == AdminUserStatus.SUSPENDED


@pytest.mark.asyncio
async def test_concurrent_suspends_commit_once(
    session_factory: async_sessionmaker[AsyncSession],
    auth_service,
    audit: AuditTrail,
    admins: dict[str, AdminAccount],
) -> None:
    async def suspend():
        async with session_factory() as session:
            service = TeamManagementService(session, auth_service.client(), audit)
            return await service.suspend(admins["bob"].id, admins["alice"].id)

    results = await asyncio.gather(suspend(), suspend(), return_exceptions=True)

    succeeded = [r for r in results if isinstance(r, AdminAccount)]
    failed = [r for r in results if not isinstance(r, AdminAccount)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], (ConflictError, BadRequestError))

    await audit.drain()
    async with session_factory() as session:
        bob = await _reload(session, admins["bob"].id)
        assert bob.status == AdminUserStatus.SUSPENDED
        assert bob.version == 2
        entries = (await session.execute(select(AuditLog))).scalars().all()
        assert len(entries) == 1


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_suspend(
    session: AsyncSession, auth_service, admins: dict[str, AdminAccount], caplog
) -> None:
    def broken_session():
        raise RuntimeError("audit store down")

    audit = AuditTrail(broken_session)
    service = TeamManagementService(session, auth_service.client(), audit)

    suspended = await service.suspend(admins["bob"].id, admins["alice"].id)
    await audit.drain()

    assert suspended.status == AdminUserStatus.SUSPENDED
    assert "Failed to write audit event" in caplog.text


# ============================================================================
# Create / update
# ============================================================================

@pytest.mark.asyncio
async def test_create_admin_provisions_identity(
    service: TeamManagementService, auth_service, reader_role: Role
) -> None:
    auth_service.signup = (201, {"data": {"userSub": "sub-carol"}})

    created = await service.create_admin(
        AdminCreate(email="Carol@Example.com", name="Carol", role_id=reader_role.id), auth_token="tok"
    )

    assert created.email == "carol@example.com"
    assert created.external_subject_id == "sub-carol"
    assert created.status == AdminUserStatus.ACTIVE
    assert created.type == AdminUserType.ADMIN
    assert [r.id for r in await service.get_roles(created.id)] == [reader_role.id]
    assert auth_service.requests[0].headers["Authorization"] == "Bearer tok"


def test_create_admin_accepts_legacy_superadmin_type() -> None:
    assert AdminCreate(email="x@example.com", type="superadmin").type == AdminUserType.SUPER_ADMIN


@pytest.mark.asyncio
async def test_create_admin_with_existing_email_skips_provisioning(
    service: TeamManagementService, auth_service, admins: dict[str, AdminAccount]
) -> None:
    with pytest.raises(ConflictError):
        await service.create_admin(AdminCreate(email="alice@example.com"))

    assert auth_service.requests == []


@pytest.mark.asyncio
async def test_create_admin_surfaces_auth_service_errors(
    service: TeamManagementService, auth_service, session: AsyncSession
) -> None:
    auth_service.signup = (409, {"message": "User already exists"})
    with pytest.raises(ConflictError):
        await service.create_admin(AdminCreate(email="dave@example.com"))

    auth_service.error = httpx.ConnectTimeout("timed out")
    with pytest.raises(ServiceUnavailableError):
        await service.create_admin(AdminCreate(email="dave@example.com"))

    result = await session.execute(select(AdminAccount).where(AdminAccount.email == "dave@example.com"))
    assert result.scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_create_admin_survives_role_assignment_failure(service: TeamManagementService) -> None:
    created = await service.create_admin(
        AdminCreate(email="erin@example.com", role_id="01ARZ3NDEKTSV4RRFFQ69G5FAV")
    )

    assert created.id
    assert await service.get_roles(created.id) == []


@pytest.mark.asyncio
async def test_update_replaces_roles(
    service: TeamManagementService, session: AsyncSession, admins: dict[str, AdminAccount], reader_role: Role
) -> None:
    bob = admins["bob"]
    roles = RoleService(session)
    auditor = await roles.create(RoleCreate(identifier="auditor", name="Auditor"))
    editor = await roles.create(RoleCreate(identifier="editor", name="Editor"))
    assignments = AssignmentService(session)
    await assignments.assign(bob.id, reader_role.id)
    await assignments.assign(bob.id, auditor.id)

    await service.update_admin(bob.id, AdminUpdate(name="Robert"))
    assert sorted(r.id for r in await service.get_roles(bob.id)) == sorted([reader_role.id, auditor.id])

    updated = await service.update_admin(bob.id, AdminUpdate(role_id=editor.id))
    assert updated.name == "Robert"
    assert [r.id for r in await service.get_roles(bob.id)] == [editor.id]

    await service.update_admin(bob.id, AdminUpdate(role_id=None))
    assert await service.get_roles(bob.id) == []


@pytest.mark.asyncio
async def test_update_email_must_stay_unique(
    service: TeamManagementService, admins: dict[str, AdminAccount]
) -> None:
    with pytest.raises(ConflictError):
        await service.update_admin(admins["bob"].id, AdminUpdate(email="alice@example.com"))

    updated = await service.update_admin(admins["bob"].id, AdminUpdate(email="bob@example.com"))
    assert updated.email == "bob@example.com"


@pytest.mark.asyncio
async def test_update_missing_admin(service: TeamManagementService) -> None:
    with pytest.raises(NotFoundError):
        await service.update_admin("01ARZ3NDEKTSV4RRFFQ69G5FAV", AdminUpdate(name="Nobody"))


# ============================================================================
# Reads
# ============================================================================

@pytest.mark.asyncio
async def test_list_admins_pages_and_filters(
    service: TeamManagementService, admins: dict[str, AdminAccount], reader_role: Role, session: AsyncSession
) -> None:
    await AssignmentService(session).assign(admins["alice"].id, reader_role.id)
    await service.suspend(admins["bob"].id, admins["alice"].id)

    rows, total = await service.list_admins(page=1, page_size=2)
    assert total == 3
    assert len(rows) == 2

    rows, total = await service.list_admins(page=2, page_size=2)
    assert total == 3
    assert len(rows) == 1

    rows, total = await service.list_admins(statuses=[AdminUserStatus.SUSPENDED])
    assert total == 1
    assert [admin.id for admin, _ in rows] == [admins["bob"].id]

    rows, _ = await service.list_admins(page_size=10)
    roles = {admin.id: [r.identifier for r in admin_roles] for admin, admin_roles in rows}
    assert roles[admins["alice"].id] == ["user-reader"]
    assert roles[admins["bob"].id] == []


@pytest.mark.asyncio
async def test_get_roles_of_missing_admin(service: TeamManagementService) -> None:
    with pytest.raises(NotFoundError):
        await service.get_roles("01ARZ3NDEKTSV4RRFFQ69G5FAV")


@pytest.mark.asyncio
async def test_send_reset_link_maps_not_found(service: TeamManagementService, auth_service) -> None:
    auth_service.reset = (404, {"message": "User not found"})

    with pytest.raises(NotFoundError):
        await service.send_reset_link("ghost@example.com")
