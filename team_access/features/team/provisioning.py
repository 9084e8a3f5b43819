"""
Client for the account provisioning service.

The provisioning service owns credentials: it creates the external identity
for a new admin and sends password reset links. Its HTTP failures are
translated into the service error taxonomy here so callers never see httpx
exceptions.
"""
from typing import Any, Dict, Optional, Tuple, Type

import httpx

from team_access.core import config
from team_access.core.errors import (
    BadRequestError,
    ConflictError,
    InternalError,
    NotFoundError,
    ServiceError,
    ServiceUnavailableError,
)
from team_access.utils import get_logger


log = get_logger(__name__)

SIGNUP_PATH = "/api/auth/support-admin/signup"
RESET_LINK_PATH = "/api/auth/support-admin/send-reset-link"


def _response_message(response: httpx.Response) -> Optional[str]:
    """Extract ``message`` from an error body; list messages are joined."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    message = body.get("message")
    if isinstance(message, list):
        return ", ".join(str(m) for m in message)
    return message or None


class ProvisioningClient:
    """
    Async client for the provisioning collaborator.

    Every call carries the configured timeout; connection failures and
    timeouts surface as ``ServiceUnavailableError``.
    """

    def __init__(
        self,
        base_url: str = config.AUTH_SERVICE_BASE_URL,
        timeout: float = config.AUTH_SERVICE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        auth_token: Optional[str],
        status_errors: Dict[int, Tuple[Type[ServiceError], str]],
        failure_message: str,
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(path, json=payload, headers=headers)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            log.error(f"Auth service unreachable at {self.base_url}{path}: {exc!r}")
            raise ServiceUnavailableError("Auth service is currently unavailable") from exc
        except httpx.HTTPError as exc:
            log.error(f"Auth service call to {path} failed: {exc!r}")
            raise InternalError(failure_message) from exc

        if response.is_success:
            return response

        message = _response_message(response)
        log.error(
            "Auth service call to %s failed with %s: %s",
            path, response.status_code, message or response.text[:200],
        )
        raise self._translate(response.status_code, message, status_errors, failure_message)

    @staticmethod
    def _translate(
        status_code: int,
        message: Optional[str],
        status_errors: Dict[int, Tuple[Type[ServiceError], str]],
        failure_message: str,
    ) -> ServiceError:
        if status_code == 400:
            return BadRequestError(message or "Auth service validation failed")
        if status_code in status_errors:
            error_cls, default_message = status_errors[status_code]
            return error_cls(message or default_message)
        return InternalError(message or failure_message)

    async def create_external_identity(self, email: str, auth_token: Optional[str] = None) -> str:
        """
        Create the user in the provisioning service.

        Returns:
            The external subject id (``userSub``) of the new identity
        """
        log.info(f"Calling auth service to create user {email}")
        response = await self._post(
            SIGNUP_PATH,
            {"email": email},
            auth_token,
            status_errors={409: (ConflictError, "User already exists in auth service")},
            failure_message="Failed to create user in auth service",
        )
        body = response.json()
        data = body.get("data") or {}
        subject_id = data.get("userSub")
        if not subject_id:
            log.error(f"Auth service signup for {email} returned no userSub")
            raise InternalError("Failed to create user in auth service")
        log.info(f"Auth service user created for {email} ({subject_id})")
        return subject_id

    async def send_password_reset_link(self, email: str, auth_token: Optional[str] = None) -> None:
        log.info(f"Requesting password reset link for {email}")
        await self._post(
            RESET_LINK_PATH,
            {"email": email},
            auth_token,
            status_errors={404: (NotFoundError, "User not found")},
            failure_message="Failed to send password reset link",
        )
        log.info(f"Password reset link sent to {email}")
