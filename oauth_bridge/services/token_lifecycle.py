"""
Helpers for retrieving, refreshing and retiring stored OAuth tokens.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from oauth_bridge.clients.oauth_provider import (
    OAuthInvalidGrantError,
    OAuthProviderClient,
    OAuthProviderUnavailableError,
)
from oauth_bridge.clients.resource_api import (
    ResourceAPIClientFactory,
    organization_id_from_me,
)
from oauth_bridge.clients.sqlite_store import CredentialNotFoundError, SQLiteTokenStore
from oauth_bridge.models.credentials import StoredCredential, normalize_token_payload
from oauth_bridge.services.request_context import RequestContext

logger = logging.getLogger(__name__)

REFRESH_PADDING = timedelta(seconds=300)


class NotAuthenticatedError(Exception):
    """Raised when no usable credential exists for the caller."""


class CredentialRevokedError(NotAuthenticatedError):
    """Raised when the provider declares the stored credential invalid."""


class RefreshUnavailableError(Exception):
    """Raised when a refresh failed transiently; the stored credential is kept."""


class TokenLifecycleService:
    """Keeps stored tokens usable and reconciles refresh results with the store."""

    def __init__(
        self,
        *,
        store: SQLiteTokenStore,
        oauth_client: OAuthProviderClient,
        api_client_factory: ResourceAPIClientFactory,
        refresh_padding: timedelta = REFRESH_PADDING,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._api = api_client_factory
        self._padding = refresh_padding

    async def ensure_fresh(
        self, record: StoredCredential, *, refresh: bool = False
    ) -> StoredCredential:
        """Return ``record`` or its refreshed successor, ready for an upstream call."""
        if not (refresh or record.needs_refresh(padding=self._padding)):
            return record
        if not record.refreshable:
            logger.warning(
                "Refresh requested for organization %s but no refresh token is stored",
                record.organization_id,
            )
            return record

        refreshed_at = datetime.now(timezone.utc)
        try:
            payload = await self._oauth.refresh_token(record.refresh_token)
        except OAuthInvalidGrantError as exc:
            if not self._store.discard(
                record.organization_id, access_token=record.access_token
            ):
                successor = self._successor(record)
                if successor is not None:
                    logger.info(
                        "Organization %s was refreshed concurrently; using the stored token",
                        record.organization_id,
                    )
                    return successor
            logger.info(
                "Provider rejected refresh for organization %s; token discarded",
                record.organization_id,
            )
            raise CredentialRevokedError(
                "Stored credential is no longer valid; re-authorization required."
            ) from exc
        except OAuthProviderUnavailableError as exc:
            raise RefreshUnavailableError(
                "Token refresh is temporarily unavailable; try again shortly."
            ) from exc

        payload = normalize_token_payload(payload, issued_at=refreshed_at)
        if not payload.get("refresh_token"):
            payload["refresh_token"] = record.refresh_token
        record_id = self._store.upsert(record.organization_id, payload)
        logger.info("Refreshed token for organization %s", record.organization_id)
        return StoredCredential.from_payload(
            payload, organization_id=record.organization_id, id=record_id
        )

    def _successor(self, record: StoredCredential) -> Optional[StoredCredential]:
        """The tenant's current row, if it has replaced ``record``'s token."""
        try:
            current = self._store.get(record.organization_id)
        except CredentialNotFoundError:
            return None
        if current.access_token == record.access_token:
            return None
        return current

    async def organization_token(
        self, organization_id: int, *, refresh: bool = False
    ) -> StoredCredential:
        """Return a usable token for a tenant, refreshing it when near expiry."""
        try:
            record = self._store.get(organization_id)
        except CredentialNotFoundError as exc:
            raise NotAuthenticatedError(
                f"Organization {organization_id} has not authorized this application."
            ) from exc
        return await self.ensure_fresh(record, refresh=refresh)

    async def session_token(
        self, context: RequestContext, *, refresh: bool = False
    ) -> Optional[StoredCredential]:
        """Resolve the session's credential; ``None`` means the browser must sign in."""
        token_id = context.token_id
        if token_id is None:
            return None
        try:
            record = self._store.get_by_id(token_id)
            record = await self.ensure_fresh(record, refresh=refresh)
        except (CredentialNotFoundError, CredentialRevokedError):
            context.clear_credential()
            return None
        context.bind(record)
        return record

    async def store_authorization(self, payload: Dict[str, Any]) -> StoredCredential:
        """Persist a freshly exchanged token under the organization it belongs to."""
        payload = normalize_token_payload(payload)
        me = await self._api.build(payload["access_token"]).me()
        organization_id = organization_id_from_me(me)
        record_id = self._store.upsert(organization_id, payload)
        logger.info("Stored authorization for organization %s", organization_id)
        return StoredCredential.from_payload(
            payload, organization_id=organization_id, id=record_id
        )

    def invalidate(
        self, record: StoredCredential, context: Optional[RequestContext] = None
    ) -> None:
        """Forget a credential the resource API has rejected."""
        self._store.discard(record.organization_id, access_token=record.access_token)
        if context is not None:
            context.clear_credential()

    async def revoke(self, record: StoredCredential, context: RequestContext) -> None:
        """Revoke the session's token with the provider and sign the browser out."""
        try:
            await self._oauth.revoke(record.access_token)
        except OAuthInvalidGrantError:
            logger.info("Token for organization %s was already invalid", record.organization_id)
        self._store.discard(record.organization_id, access_token=record.access_token)
        context.clear()


__all__ = [
    "CredentialRevokedError",
    "NotAuthenticatedError",
    "REFRESH_PADDING",
    "RefreshUnavailableError",
    "TokenLifecycleService",
]
