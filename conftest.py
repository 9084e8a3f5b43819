"""Shared pytest fixtures: a throwaway SQLite database per test and an API client."""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable, Iterator
from typing import Any

import httpx
import jwt
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from team_access.core.database.engine import build_engine, build_sessionmaker, get_db, init_db
from team_access.features.rbac.permissions import PermissionService
from team_access.features.rbac.policies import PolicyService
from team_access.features.rbac.roles import RoleService
from team_access.features.rbac.schemas import PermissionCreate, PolicyCreate, RoleCreate
from team_access.features.team.audit import AuditTrail
from team_access.features.team.dependencies import get_audit_trail, get_provisioning_client
from team_access.features.team.models import AdminAccount, AdminUserType
from team_access.features.team.provisioning import ProvisioningClient


AUTH_SERVICE_URL = "http://auth.test"


class AuthServiceStub:
    """Scripted responses for the provisioning service, served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.signup: tuple[int, Any] = (201, {"data": {"userSub": "sub-created"}})
        self.reset: tuple[int, Any] = (200, {"message": "sent"})
        self.error: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        status_code, body = self.signup if request.url.path.endswith("/signup") else self.reset
        return httpx.Response(status_code, json=body)

    def client(self) -> ProvisioningClient:
        return ProvisioningClient(
            base_url=AUTH_SERVICE_URL, timeout=1, transport=httpx.MockTransport(self.handler)
        )


@pytest_asyncio.fixture()
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine with the schema created."""

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'team-access.sqlite'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
def auth_service() -> AuthServiceStub:
    return AuthServiceStub()


@pytest_asyncio.fixture()
async def audit(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AuditTrail]:
    """Audit trail on the test database; pending writes are awaited at teardown."""

    audit = AuditTrail(session_factory)
    yield audit
    await audit.drain()


@pytest.fixture()
def make_token() -> Callable[..., str]:
    """Build a bearer token carrying an admin's subject and email claims."""

    def _make(admin: AdminAccount) -> str:
        claims = {"sub": admin.external_subject_id, "email": admin.email}
        return jwt.encode(claims, "test-secret", algorithm="HS256")

    return _make


@pytest_asyncio.fixture()
async def admins(session: AsyncSession) -> dict[str, AdminAccount]:
    """A super admin and two plain admins."""

    accounts = {
        "super": AdminAccount(
            email="root@example.com", name="Root", type=AdminUserType.SUPER_ADMIN,
            external_subject_id="sub-root",
        ),
        "alice": AdminAccount(email="alice@example.com", name="Alice", external_subject_id="sub-alice"),
        "bob": AdminAccount(email="bob@example.com", name="Bob", external_subject_id="sub-bob"),
    }
    session.add_all(accounts.values())
    await session.commit()
    return accounts


@pytest_asyncio.fixture()
async def reader_role(session: AsyncSession):
    """A ``user-reader`` role granting ``user:read`` through one policy."""

    await PermissionService(session).create(
        PermissionCreate(resource="user", action="read", name="Read users")
    )
    await PolicyService(session).create(
        PolicyCreate(identifier="user-readers", name="User readers", permissions=["user:read"])
    )
    return await RoleService(session).create(
        RoleCreate(identifier="user-reader", name="User reader", policies=["user-readers"])
    )


@pytest.fixture()
def app(
    session_factory: async_sessionmaker[AsyncSession],
    auth_service: AuthServiceStub,
    audit: AuditTrail,
) -> Iterator[FastAPI]:
    from team_access.main import app

    async def _get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_provisioning_client] = auth_service.client
    app.dependency_overrides[get_audit_trail] = lambda: audit
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the FastAPI app."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

