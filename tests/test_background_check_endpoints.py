try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import json
import time

import httpx
import pytest
from jose import jwt

from fakes import DummyAPIFactory, DummyOAuthClient
from oauth_bridge.clients.sqlite_store import CredentialNotFoundError, SQLiteTokenStore
from oauth_bridge.core.config import get_settings
from oauth_bridge.main import app

ALLOWED_ORIGIN = "https://api.planningcenteronline.com"
EVIL_ORIGIN = "https://evil.example"


def _identity(organization_id: int = 42, *, key: str | None = None) -> str:
    signing_key = key or get_settings().provider.client_secret[:100]
    return jwt.encode(
        {"data": {"org": {"id": organization_id}, "person": {"id": 1}}},
        signing_key,
        algorithm="HS256",
    )


@pytest.fixture()
def tenant(tmp_path):
    from oauth_bridge import dependencies

    store = SQLiteTokenStore(str(tmp_path / "tokens.sqlite3"))
    store.upsert(
        42,
        {
            "access_token": "tenant-token",
            "refresh_token": "tenant-refresh",
            "expires_at": int(time.time()) + 3600,
        },
    )
    oauth_client = DummyOAuthClient()
    api_factory = DummyAPIFactory()

    app.dependency_overrides.update(
        {
            dependencies.get_token_store: lambda: store,
            dependencies.get_oauth_provider_client: lambda: oauth_client,
            dependencies.get_api_client_factory: lambda: api_factory,
        }
    )

    yield store, oauth_client, api_factory

    app.dependency_overrides.clear()


async def _request(method: str, path: str, *, origin: str, body: dict | None = None):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        return await client.request(method, path, json=body, headers={"Origin": origin})


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/add_background_check", "/delete_background_check"])
async def test_preflight_allows_known_origin(tenant, path):
    response = await _request("OPTIONS", path, origin=ALLOWED_ORIGIN)

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
    assert response.headers["access-control-allow-methods"] == "POST"


@pytest.mark.anyio
async def test_preflight_succeeds_without_grant_for_unknown_origin(tenant):
    response = await _request("OPTIONS", "/add_background_check", origin=EVIL_ORIGIN)

    assert response.status_code == 200
    assert "access-control-allow-origin" not in response.headers


@pytest.mark.anyio
async def test_add_background_check(tenant):
    _, _, api_factory = tenant

    response = await _request(
        "POST",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        body={"personId": 7, "identity": _identity()},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "added"}
    assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
    assert api_factory.calls == [("add", "tenant-token", "7", "report_clear")]


@pytest.mark.anyio
async def test_post_from_unknown_origin_gets_no_cors_headers(tenant):
    response = await _request(
        "POST",
        "/add_background_check",
        origin=EVIL_ORIGIN,
        body={"personId": "7", "identity": _identity()},
    )

    assert "access-control-allow-origin" not in response.headers


@pytest.mark.anyio
async def test_delete_removes_every_check(tenant):
    _, _, api_factory = tenant
    api_factory.checks = ["c1", "c2"]

    response = await _request(
        "POST",
        "/delete_background_check",
        origin=ALLOWED_ORIGIN,
        body={"personId": "7", "identity": _identity()},
    )

    assert response.json() == {"status": "deleted"}
    assert api_factory.calls == [
        ("delete", "tenant-token", "7", "c1"),
        ("delete", "tenant-token", "7", "c2"),
    ]


@pytest.mark.anyio
@pytest.mark.parametrize(
    "identity",
    [None, "garbage", _identity(key="not-the-shared-secret")],
)
async def test_untrusted_identity_is_rejected(tenant, identity):
    _, _, api_factory = tenant

    response = await _request(
        "POST",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        body={"personId": "7", "identity": identity},
    )

    assert response.status_code == 401
    assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
    assert api_factory.calls == []


@pytest.mark.anyio
async def test_unknown_organization_is_unauthorized(tenant):
    response = await _request(
        "POST",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        body={"personId": "7", "identity": _identity(organization_id=99)},
    )

    assert response.status_code == 401


@pytest.mark.anyio
async def test_expiring_tenant_token_is_refreshed_before_the_call(tenant):
    store, oauth_client, api_factory = tenant
    store.upsert(
        42,
        {
            "access_token": "tenant-token",
            "refresh_token": "tenant-refresh",
            "expires_at": int(time.time()) - 10,
        },
    )

    response = await _request(
        "POST",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        body={"personId": "7", "identity": _identity()},
    )

    assert response.status_code == 200
    assert oauth_client.refresh_calls == ["tenant-refresh"]
    assert api_factory.calls[0][1] == "refreshed-1"
    assert store.get(42).access_token == "refreshed-1"


@pytest.mark.anyio
async def test_rejected_tenant_token_is_discarded(tenant):
    store, _, api_factory = tenant
    api_factory.rejected.add("tenant-token")

    response = await _request(
        "POST",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        body={"personId": "7", "identity": _identity()},
    )

    assert response.status_code == 401
    with pytest.raises(CredentialNotFoundError):
        store.get(42)


async def _raw_request(method: str, path: str, *, origin: str, headers: dict, content=None):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        return await client.request(
            method, path, content=content, headers={"Origin": origin, **headers}
        )


@pytest.mark.anyio
async def test_preflight_grants_content_type_header(tenant):
    response = await _raw_request(
        "OPTIONS",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        headers={
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "content-type",
        },
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-headers"] == "Content-Type"


@pytest.mark.anyio
@pytest.mark.parametrize("content_type", ["text/plain", "text/plain;charset=UTF-8"])
async def test_simple_post_with_plain_text_body(tenant, content_type):
    _, _, api_factory = tenant

    response = await _raw_request(
        "POST",
        "/add_background_check",
        origin=ALLOWED_ORIGIN,
        headers={"Content-Type": content_type},
        content=json.dumps({"personId": 7, "identity": _identity()}),
    )

    assert response.status_code == 200
    assert response.json() == {"status": "added"}
    assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
    assert api_factory.calls == [("add", "tenant-token", "7", "report_clear")]


@pytest.mark.anyio
@pytest.mark.parametrize("content", ["", "not json", "[]", json.dumps({"identity": "x"})])
async def test_malformed_body_is_bad_request_with_cors_headers(tenant, content):
    _, _, api_factory = tenant

    response = await _raw_request(
        "POST",
        "/delete_background_check",
        origin=ALLOWED_ORIGIN,
        headers={"Content-Type": "text/plain"},
        content=content,
    )

    assert response.status_code == 400
    assert response.headers["access-control-allow-origin"] == ALLOWED_ORIGIN
    assert api_factory.calls == []
