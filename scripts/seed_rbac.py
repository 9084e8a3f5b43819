"""
Seed script to populate the default access-control graph.

Creates, if missing:
- one permission per (resource, action) guarded by the API
- one policy per resource area, plus a read-only policy
- the system roles, with ``team-viewer`` as the default role
- optionally a first super admin (``SEED_SUPER_ADMIN_EMAIL``, with its
  external subject id in ``SEED_SUPER_ADMIN_SUB``)

Usage:
    python -m scripts.seed_rbac
"""
import asyncio
import os
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from team_access.core.database.engine import AsyncSessionLocal, init_db
from team_access.features.rbac.models import PermissionAction, PolicyCategory
from team_access.features.rbac.permissions import PermissionService
from team_access.features.rbac.policies import PolicyService
from team_access.features.rbac.roles import RoleService
from team_access.features.rbac.schemas import PermissionCreate, PolicyCreate, RoleCreate
from team_access.features.team.models import AdminAccount, AdminUserType
from team_access.utils import get_logger


log = get_logger(__name__)


RESOURCES = {
    "permission": "permissions",
    "policy": "policies",
    "role": "roles",
    "user_role": "role assignments",
    "admin_user": "admin users",
}

CRUD_ACTIONS = [
    PermissionAction.CREATE,
    PermissionAction.READ,
    PermissionAction.UPDATE,
    PermissionAction.DELETE,
    PermissionAction.LIST,
]

DEFAULT_POLICIES = {
    "rbac-management": {
        "name": "Access control management",
        "category": PolicyCategory.ADMIN,
        "priority": 90,
        "permissions": [
            f"{resource}:{action.value}"
            for resource in ("permission", "policy", "role", "user_role")
            for action in CRUD_ACTIONS
        ],
    },
    "team-management": {
        "name": "Team management",
        "category": PolicyCategory.ADMIN,
        "priority": 80,
        "permissions": [f"admin_user:{action.value}" for action in CRUD_ACTIONS],
    },
    "read-only": {
        "name": "Read-only access",
        "category": PolicyCategory.USER,
        "priority": 10,
        "permissions": [
            f"{resource}:{action}"
            for resource in RESOURCES
            for action in ("read", "list")
        ],
    },
}

DEFAULT_ROLES = {
    "access-admin": {
        "name": "Access administrator",
        "description": "Manages the access-control graph and the team",
        "level": 90,
        "policies": ["rbac-management", "team-management"],
        "is_default": False,
    },
    "team-manager": {
        "name": "Team manager",
        "description": "Manages admin accounts",
        "level": 50,
        "policies": ["team-management", "read-only"],
        "is_default": False,
    },
    "team-viewer": {
        "name": "Team viewer",
        "description": "Read-only access to everything",
        "level": 10,
        "policies": ["read-only"],
        "is_default": True,
    },
}


async def seed_permissions(db: AsyncSession) -> int:
    service = PermissionService(db)
    created = 0
    for resource, label in RESOURCES.items():
        for action in CRUD_ACTIONS:
            identifier = f"{resource}:{action.value}"
            if await service.find_by_identifier(identifier) is not None:
                log.debug(f"Permission '{identifier}' already exists, skipping")
                continue
            await service.create(PermissionCreate(
                resource=resource,
                action=action,
                name=f"{action.value.capitalize()} {label}",
            ))
            created += 1
    log.info(f"Created {created} permissions")
    return created


async def seed_policies(db: AsyncSession) -> None:
    service = PolicyService(db)
    for identifier, policy in DEFAULT_POLICIES.items():
        if await service.find_by_identifier(identifier) is not None:
            log.debug(f"Policy '{identifier}' already exists, skipping")
            continue
        await service.create(PolicyCreate(identifier=identifier, is_system=True, **policy))
        log.info(f"Created policy '{identifier}' with {len(policy['permissions'])} permissions")


async def seed_roles(db: AsyncSession) -> None:
    service = RoleService(db)
    for identifier, role in DEFAULT_ROLES.items():
        if await service.find_by_identifier(identifier) is not None:
            log.debug(f"Role '{identifier}' already exists, skipping")
            continue
        await service.create(RoleCreate(identifier=identifier, is_system=True, **role))
        log.info(f"Created role '{identifier}'")


async def seed_super_admin(db: AsyncSession) -> None:
    email = os.environ.get("SEED_SUPER_ADMIN_EMAIL")
    if not email:
        return
    result = await db.execute(select(AdminAccount).where(AdminAccount.email == email.lower()))
    if result.scalar_one_or_none() is not None:
        log.debug(f"Super admin {email} already exists, skipping")
        return
    db.add(AdminAccount(
        email=email.lower(),
        name="Super Admin",
        type=AdminUserType.SUPER_ADMIN,
        external_subject_id=os.environ.get("SEED_SUPER_ADMIN_SUB"),
    ))
    await db.commit()
    log.info(f"Created super admin {email}")


async def main():
    log.info("Starting access-control seeding...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed_permissions(db)
            await seed_policies(db)
            await seed_roles(db)
            await seed_super_admin(db)
        except Exception as e:
            log.error(f"Error seeding access control: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Seeding completed successfully!")
    for identifier, role in DEFAULT_ROLES.items():
        log.info(f"  - {identifier}: {role['description']}")


if __name__ == "__main__":
    asyncio.run(main())
