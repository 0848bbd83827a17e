from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from oauth_bridge.clients.oauth_provider import (
    OAuthInvalidGrantError,
    OAuthProviderUnavailableError,
)
from oauth_bridge.clients.sqlite_store import CredentialNotFoundError, SQLiteTokenStore
from oauth_bridge.services.request_context import TOKEN_ID_KEY, RequestContext
from oauth_bridge.services.token_lifecycle import (
    CredentialRevokedError,
    NotAuthenticatedError,
    RefreshUnavailableError,
    TokenLifecycleService,
)


def _epoch(delta: timedelta) -> int:
    return int((datetime.now(timezone.utc) + delta).timestamp())


class DummyOAuthClient:
    def __init__(self, *, error: Exception | None = None, payload: dict | None = None) -> None:
        self.error = error
        self.payload = payload
        self.calls: list[str] = []
        self.revoked: list[str] = []

    async def refresh_token(self, refresh_token: str) -> dict:
        self.calls.append(refresh_token)
        if self.error is not None:
            raise self.error
        if self.payload is not None:
            return dict(self.payload)
        return {
            "access_token": f"refreshed-{len(self.calls)}",
            "refresh_token": "rotated-refresh",
            "expires_in": 3600,
        }

    async def revoke(self, access_token: str) -> None:
        self.revoked.append(access_token)


class DummyAPIClient:
    def __init__(self, organization_id: str) -> None:
        self.organization_id = organization_id

    async def me(self) -> dict:
        return {"data": {"id": "1"}, "meta": {"parent": {"id": self.organization_id}}}


class DummyAPIFactory:
    def __init__(self, organization_id: str = "42") -> None:
        self.organization_id = organization_id
        self.tokens: list[str] = []

    def build(self, access_token: str) -> DummyAPIClient:
        self.tokens.append(access_token)
        return DummyAPIClient(self.organization_id)


@pytest.fixture()
def store(tmp_path) -> SQLiteTokenStore:
    return SQLiteTokenStore(str(tmp_path / "tokens.sqlite3"))


def _service(store, oauth_client, factory=None) -> TokenLifecycleService:
    return TokenLifecycleService(
        store=store,
        oauth_client=oauth_client,
        api_client_factory=factory or DummyAPIFactory(),
        refresh_padding=timedelta(seconds=300),
    )


@pytest.mark.asyncio
async def test_fresh_token_is_not_refreshed(store) -> None:
    oauth_client = DummyOAuthClient()
    store.upsert(
        42,
        {
            "access_token": "a",
            "refresh_token": "r",
            "expires_at": _epoch(timedelta(hours=1)),
        },
    )

    record = await _service(store, oauth_client).organization_token(42)

    assert record.access_token == "a"
    assert oauth_client.calls == []


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once_and_persisted(store) -> None:
    oauth_client = DummyOAuthClient()
    store.upsert(
        42,
        {
            "access_token": "stale",
            "refresh_token": "r1",
            "expires_at": _epoch(timedelta(seconds=-10)),
        },
    )

    record = await _service(store, oauth_client).organization_token(42)

    assert oauth_client.calls == ["r1"]
    assert record.access_token == "refreshed-1"

    stored = store.get(42)
    assert stored.access_token == "refreshed-1"
    assert stored.refresh_token == "rotated-refresh"
    expected = datetime.now(timezone.utc) + timedelta(seconds=3600)
    assert abs((stored.expires_at - expected).total_seconds()) < 5
    assert stored.raw_payload["expires_in"] == 3600


@pytest.mark.asyncio
async def test_token_inside_padding_is_refreshed(store) -> None:
    oauth_client = DummyOAuthClient()
    store.upsert(
        42,
        {
            "access_token": "soon",
            "refresh_token": "r1",
            "expires_at": _epoch(timedelta(seconds=120)),
        },
    )

    await _service(store, oauth_client).organization_token(42)

    assert oauth_client.calls == ["r1"]


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_provider_omits_it(store) -> None:
    oauth_client = DummyOAuthClient(payload={"access_token": "new", "expires_in": 60})
    store.upsert(42, {"access_token": "old", "refresh_token": "keep-me", "expires_at": 1})

    await _service(store, oauth_client).organization_token(42)

    assert store.get(42).refresh_token == "keep-me"


@pytest.mark.asyncio
async def test_token_without_refresh_token_is_returned_as_is(store) -> None:
    oauth_client = DummyOAuthClient()
    store.upsert(
        42, {"access_token": "only-access", "expires_at": _epoch(timedelta(seconds=-10))}
    )

    service = _service(store, oauth_client)
    record = await service.organization_token(42)
    forced = await service.organization_token(42, refresh=True)

    assert record.access_token == forced.access_token == "only-access"
    assert oauth_client.calls == []


@pytest.mark.asyncio
async def test_non_expiring_token_only_refreshes_on_request(store) -> None:
    oauth_client = DummyOAuthClient()
    store.upsert(42, {"access_token": "forever", "refresh_token": "r"})

    service = _service(store, oauth_client)
    assert (await service.organization_token(42)).access_token == "forever"
    assert oauth_client.calls == []

    assert (await service.organization_token(42, refresh=True)).access_token == "refreshed-1"
    assert oauth_client.calls == ["r"]


@pytest.mark.asyncio
async def test_unknown_organization_is_not_authenticated(store) -> None:
    with pytest.raises(NotAuthenticatedError):
        await _service(store, DummyOAuthClient()).organization_token(99)


@pytest.mark.asyncio
async def test_rejected_refresh_discards_credential(store) -> None:
    oauth_client = DummyOAuthClient(error=OAuthInvalidGrantError("invalid_grant"))
    store.upsert(42, {"access_token": "a", "refresh_token": "revoked", "expires_at": 1})

    with pytest.raises(CredentialRevokedError):
        await _service(store, oauth_client).organization_token(42)

    with pytest.raises(CredentialNotFoundError):
        store.get(42)


class RotatedElsewhereOAuthClient:
    """Another worker redeems the refresh token first, so this attempt is rejected."""

    def __init__(self, store: SQLiteTokenStore) -> None:
        self.store = store
        self.calls: list[str] = []

    async def refresh_token(self, refresh_token: str) -> dict:
        self.calls.append(refresh_token)
        self.store.upsert(
            42,
            {
                "access_token": "new",
                "refresh_token": "r2",
                "expires_at": _epoch(timedelta(hours=1)),
            },
        )
        raise OAuthInvalidGrantError("invalid_grant")


@pytest.mark.asyncio
async def test_lost_refresh_race_returns_winners_token(store) -> None:
    store.upsert(42, {"access_token": "stale", "refresh_token": "r1", "expires_at": 1})
    oauth_client = RotatedElsewhereOAuthClient(store)

    record = await _service(store, oauth_client).organization_token(42)

    assert oauth_client.calls == ["r1"]
    assert record.access_token == "new"
    assert store.get(42).access_token == "new"


@pytest.mark.asyncio
async def test_lost_refresh_race_keeps_session_signed_in(store) -> None:
    record_id = store.upsert(
        42, {"access_token": "stale", "refresh_token": "r1", "expires_at": 1}
    )
    context = RequestContext(session={TOKEN_ID_KEY: record_id})

    record = await _service(store, RotatedElsewhereOAuthClient(store)).session_token(context)

    assert record is not None
    assert record.access_token == "new"
    assert context.session[TOKEN_ID_KEY] == record_id


@pytest.mark.asyncio
async def test_transient_refresh_failure_keeps_credential(store) -> None:
    oauth_client = DummyOAuthClient(error=OAuthProviderUnavailableError("timeout"))
    store.upsert(42, {"access_token": "a", "refresh_token": "r", "expires_at": 1})

    with pytest.raises(RefreshUnavailableError):
        await _service(store, oauth_client).organization_token(42)

    assert store.get(42).access_token == "a"


@pytest.mark.asyncio
async def test_session_token_clears_reference_when_revoked(store) -> None:
    oauth_client = DummyOAuthClient(error=OAuthInvalidGrantError("invalid_grant"))
    record_id = store.upsert(42, {"access_token": "a", "refresh_token": "r", "expires_at": 1})
    context = RequestContext(session={TOKEN_ID_KEY: record_id, "other": "kept"})

    result = await _service(store, oauth_client).session_token(context)

    assert result is None
    assert TOKEN_ID_KEY not in context.session
    assert context.session["other"] == "kept"


@pytest.mark.asyncio
async def test_session_token_without_reference(store) -> None:
    context = RequestContext(session={})

    assert await _service(store, DummyOAuthClient()).session_token(context) is None


@pytest.mark.asyncio
async def test_session_token_binds_refreshed_record(store) -> None:
    record_id = store.upsert(42, {"access_token": "a", "refresh_token": "r", "expires_at": 1})
    context = RequestContext(session={TOKEN_ID_KEY: record_id})

    record = await _service(store, DummyOAuthClient()).session_token(context)

    assert record is not None
    assert context.credential == record
    assert context.session[TOKEN_ID_KEY] == record_id


@pytest.mark.asyncio
async def test_store_authorization_keys_token_by_organization(store) -> None:
    factory = DummyAPIFactory(organization_id="314")
    service = _service(store, DummyOAuthClient(), factory)

    record = await service.store_authorization(
        {"access_token": "fresh", "refresh_token": "r", "expires_in": 7200}
    )

    assert factory.tokens == ["fresh"]
    assert record.organization_id == 314
    stored = store.get(314)
    assert stored.id == record.id
    assert stored.raw_payload["expires_at"] > _epoch(timedelta(seconds=7000))


@pytest.mark.asyncio
async def test_revoke_discards_and_clears_session(store) -> None:
    oauth_client = DummyOAuthClient()
    record_id = store.upsert(42, {"access_token": "a"})
    context = RequestContext(session={TOKEN_ID_KEY: record_id, "oauth_state": "x"})
    service = _service(store, oauth_client)

    record = await service.session_token(context)
    await service.revoke(record, context)

    assert oauth_client.revoked == ["a"]
    assert dict(context.session) == {}
    with pytest.raises(CredentialNotFoundError):
        store.get(42)
