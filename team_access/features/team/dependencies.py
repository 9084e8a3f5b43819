"""
FastAPI dependencies for authentication and the team services.
"""
from typing import Annotated, Optional
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from team_access.core.database.engine import AsyncSessionLocal, get_db
from team_access.core.errors import ForbiddenError, UnauthorizedError
from team_access.features.team.audit import AuditTrail
from team_access.features.team.models import AdminAccount, AdminUserStatus
from team_access.features.team.provisioning import ProvisioningClient
from team_access.features.team.service import TeamManagementService
from team_access.utils import get_logger


log = get_logger(__name__)

security = HTTPBearer(auto_error=False)

audit_trail = AuditTrail(AsyncSessionLocal)


def verify_jwt_token(token: str) -> dict:
    """
    Decode a bearer token and return its claims.

    Signatures are checked by the identity provider in front of this service;
    here only the claims and expiry are read.

    Raises:
        UnauthorizedError: If the token is malformed or expired
    """
    try:
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token has expired")
    except jwt.InvalidTokenError as e:
        log.info(f"Rejected bearer token: {e}")
        raise UnauthorizedError("Invalid token")


async def get_bearer_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)]
) -> str:
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("No token provided")
    return credentials.credentials


async def get_current_admin(
    token: Annotated[str, Depends(get_bearer_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AdminAccount:
    """
    Resolve the admin account behind the bearer token.

    The account is matched on the token's ``sub`` (external subject id) or,
    failing that, its email claim. Suspended or inactive accounts are refused.
    """
    payload = verify_jwt_token(token)
    subject_id = payload.get("sub")
    email = payload.get("email") or payload.get("cognito:username")
    if not subject_id and not email:
        raise UnauthorizedError("Invalid token payload")

    admin = None
    if subject_id:
        admin = await db.scalar(select(AdminAccount).where(AdminAccount.external_subject_id == subject_id))
    if admin is None and email:
        admin = await db.scalar(select(AdminAccount).where(AdminAccount.email == email.lower()))
    if admin is None:
        log.warning(f"No admin account for token subject={subject_id} email={email}")
        raise UnauthorizedError("Admin account not found")

    if admin.status != AdminUserStatus.ACTIVE:
        raise ForbiddenError(f"Admin account is {admin.status.value}")

    return admin


def get_provisioning_client() -> ProvisioningClient:
    return ProvisioningClient()


def get_audit_trail() -> AuditTrail:
    return audit_trail


async def get_team_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    provisioning: Annotated[ProvisioningClient, Depends(get_provisioning_client)],
    audit: Annotated[AuditTrail, Depends(get_audit_trail)],
) -> TeamManagementService:
    return TeamManagementService(db, provisioning, audit)


def get_authorization_header(request: Request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
