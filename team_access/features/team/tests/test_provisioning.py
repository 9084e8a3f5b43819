import json

import httpx
import pytest

from team_access.core.errors import (
    BadRequestError,
    ConflictError,
    InternalError,
    NotFoundError,
    ServiceUnavailableError,
)
from team_access.features.team.provisioning import ProvisioningClient


def _client(handler) -> ProvisioningClient:
    return ProvisioningClient(base_url="http://auth.test/", timeout=1, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_signup_returns_subject_and_forwards_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"data": {"userSub": "sub-123"}})

    subject = await _client(handler).create_external_identity("new@example.com", auth_token="tok")

    assert subject == "sub-123"
    assert str(seen[0].url) == "http://auth.test/api/auth/support-admin/signup"
    assert seen[0].headers["Authorization"] == "Bearer tok"
    assert json.loads(seen[0].content) == {"email": "new@example.com"}


@pytest.mark.asyncio
async def test_signup_without_token_sends_no_authorization() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": {"userSub": "sub-1"}})

    await _client(handler).create_external_identity("new@example.com")

    assert "Authorization" not in seen[0].headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "body", "error", "message"),
    [
        (409, {"message": "exists"}, ConflictError, "exists"),
        (409, {}, ConflictError, "User already exists in auth service"),
        (400, {"message": ["email must be valid", "email too long"]}, BadRequestError,
         "email must be valid, email too long"),
        (400, {"message": "bad email"}, BadRequestError, "bad email"),
        (500, {"message": "boom"}, InternalError, "boom"),
        (502, {}, InternalError, "Failed to create user in auth service"),
    ],
)
async def test_signup_error_mapping(status_code, body, error, message) -> None:
    client = _client(lambda request: httpx.Response(status_code, json=body))

    with pytest.raises(error) as excinfo:
        await client.create_external_identity("new@example.com")

    assert excinfo.value.message == message


@pytest.mark.asyncio
async def test_signup_without_subject_is_internal_error() -> None:
    client = _client(lambda request: httpx.Response(201, json={"data": {}}))

    with pytest.raises(InternalError):
        await client.create_external_identity("new@example.com")


@pytest.mark.asyncio
@pytest.mark.parametrize("exc_type", [httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout])
async def test_unreachable_auth_service_is_unavailable(exc_type) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_type("unreachable", request=request)

    with pytest.raises(ServiceUnavailableError) as excinfo:
        await _client(handler).create_external_identity("new@example.com")

    assert excinfo.value.message == "Auth service is currently unavailable"


@pytest.mark.asyncio
async def test_reset_link_maps_404_to_not_found() -> None:
    client = _client(lambda request: httpx.Response(404, json={"message": "no such user"}))

    with pytest.raises(NotFoundError) as excinfo:
        await client.send_password_reset_link("ghost@example.com")

    assert excinfo.value.message == "no such user"


@pytest.mark.asyncio
async def test_reset_link_409_is_not_a_conflict() -> None:
    client = _client(lambda request: httpx.Response(409, json={}))

    with pytest.raises(InternalError) as excinfo:
        await client.send_password_reset_link("someone@example.com")

    assert excinfo.value.message == "Failed to send password reset link"


@pytest.mark.asyncio
async def test_reset_link_success() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"message": "sent"})

    await _client(handler).send_password_reset_link("someone@example.com", auth_token="tok")

    assert seen[0].url.path == "/api/auth/support-admin/send-reset-link"
