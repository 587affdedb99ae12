"""Tests for HTTP error mapping in the API client."""
import httpx
import pytest

from pomoflow.cloud import ApiClient
from pomoflow.errors import (
    AuthenticationError, AuthorizationError, NotFoundError,
    TransientIOError, ValidationError,
)


def client_for(handler) -> ApiClient:
    return ApiClient("http://testserver/api", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
@pytest.mark.parametrize("status, error_class", [
    (400, ValidationError),
    (401, AuthenticationError),
    (403, AuthorizationError),
    (404, NotFoundError),
    (500, TransientIOError),
    (502, TransientIOError),
])
async def test_status_codes_map_to_errors(status, error_class):
    api = client_for(lambda request: httpx.Response(status, json={"msg": "nope"}))
    with pytest.raises(error_class) as info:
        await api.get("/tasks")
    assert info.value.message == "nope"
    await api.aclose()


@pytest.mark.asyncio
async def test_server_error_without_body():
    api = client_for(lambda request: httpx.Response(503))
    with pytest.raises(TransientIOError, match=r"Server error \(503\)"):
        await api.get("/tasks")
    await api.aclose()


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    api = client_for(handler)
    with pytest.raises(TransientIOError, match="timed out"):
        await api.put("/tasks/abc/incrementPomodoro")
    await api.aclose()


@pytest.mark.asyncio
async def test_login_picks_identifier_field():
    seen = []

    def handler(request):
        seen.append(request.read())
        return httpx.Response(200, json={"msg": "ok"})

    api = client_for(handler)
    await api.login("alice@example.com", "pw")
    await api.login("alice", "pw")

    assert b'"email"' in seen[0]
    assert b'"username"' in seen[1]
    await api.aclose()


@pytest.mark.asyncio
async def test_empty_body_returns_empty_dict():
    api = client_for(lambda request: httpx.Response(204))
    assert await api.delete("/tasks/abc") == {}
    await api.aclose()
