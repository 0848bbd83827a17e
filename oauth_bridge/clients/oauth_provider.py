"""
OAuth provider utilities.

These helpers build the consent redirect, exchange authorization codes and
drive the refresh and revocation endpoints of the provider.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from typing import Any, Dict
from urllib.parse import urlencode

import httpx

from oauth_bridge.core.config import ProviderSettings
from oauth_bridge.utils.http import is_retryable_status

logger = logging.getLogger(__name__)


class OAuthStateError(Exception):
    """Raised when an OAuth state value is forged, malformed or stale."""


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str, *, ttl_seconds: int = 900) -> None:
        self._secret_key = secret_key.encode("utf-8")
        self._ttl = timedelta(seconds=ttl_seconds)

    def encode(self, payload: Dict[str, Any]) -> str:
        body = {**payload, "issued_at": datetime.now(timezone.utc).isoformat()}
        serialized = json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")
        signature = hmac.new(self._secret_key, serialized, sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise OAuthStateError("Malformed OAuth state.") from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise OAuthStateError("Invalid OAuth state signature.")

        payload = json.loads(serialized)
        try:
            issued_at = datetime.fromisoformat(payload["issued_at"])
        except (KeyError, TypeError, ValueError) as exc:
            raise OAuthStateError("Missing issued_at in OAuth state.") from exc
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) - issued_at > self._ttl:
            raise OAuthStateError("OAuth state has expired.")
        return payload


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint returns an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OAuthInvalidGrantError(OAuthTokenExchangeError):
    """The provider rejected the grant: the token or refresh token is dead."""


class OAuthProviderUnavailableError(OAuthTokenExchangeError):
    """The provider could not be reached or failed transiently."""


class OAuthProviderClient:
    """Build authorization URLs and call the provider's token endpoints."""

    AUTHORIZE_PATH = "/oauth/authorize"
    TOKEN_PATH = "/oauth/token"
    REVOKE_PATH = "/oauth/revoke"

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        redirect_uri: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._redirect_uri = redirect_uri
        self._transport = transport

    @property
    def token_url(self) -> str:
        return f"{self._settings.api_url}{self.TOKEN_PATH}"

    def build_authorization_url(self, state: str) -> str:
        """Construct the provider's consent URL."""
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": self._settings.scope,
            "state": state,
        }
        return f"{self._settings.api_url}{self.AUTHORIZE_PATH}?{urlencode(params)}"

    async def _post_form(self, path: str, data: Dict[str, Any]) -> httpx.Response:
        url = f"{self._settings.api_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.request_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, data=data)
        except httpx.TransportError as exc:
            logger.warning("OAuth provider unreachable at %s: %s", path, exc.__class__.__name__)
            raise OAuthProviderUnavailableError(
                f"OAuth provider unreachable at {path}."
            ) from exc

        if response.status_code == httpx.codes.OK:
            return response
        if is_retryable_status(response.status_code):
            raise OAuthProviderUnavailableError(
                f"OAuth provider failed with HTTP {response.status_code}.",
                status_code=response.status_code,
            )
        raise OAuthInvalidGrantError(
            _describe_error(response), status_code=response.status_code
        )

    @staticmethod
    def _token_payload(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned invalid JSON.") from exc
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise OAuthTokenExchangeError("Incomplete token payload returned by the provider.")
        return payload

    async def exchange_authorization_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for a token payload."""
        response = await self._post_form(
            self.TOKEN_PATH,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._redirect_uri,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
            },
        )
        return self._token_payload(response)

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Trade a refresh token for a new token payload."""
        response = await self._post_form(
            self.TOKEN_PATH,
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
            },
        )
        return self._token_payload(response)

    async def revoke(self, access_token: str) -> None:
        """Ask the provider to revoke an access token."""
        await self._post_form(
            self.REVOKE_PATH,
            {
                "token": access_token,
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
            },
        )


def _describe_error(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Token endpoint returned HTTP {response.status_code}."
    if isinstance(body, dict) and body.get("error"):
        description = body.get("error_description")
        return f"{body['error']}: {description}" if description else str(body["error"])
    return f"Token endpoint returned HTTP {response.status_code}."


__all__ = [
    "OAuthInvalidGrantError",
    "OAuthProviderClient",
    "OAuthProviderUnavailableError",
    "OAuthStateEncoder",
    "OAuthStateError",
    "OAuthTokenExchangeError",
]
