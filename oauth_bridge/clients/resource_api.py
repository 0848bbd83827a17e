"""
Client for the provider's resource API, authenticated with a tenant's bearer token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from oauth_bridge.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)


class ResourceAPIError(Exception):
    """Raised when the resource API fails for a reason other than authorization."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ResourceAPIUnauthorizedError(ResourceAPIError):
    """Raised when the resource API rejects the bearer token."""


class ResourceAPIClient:
    """Issue authenticated JSON requests against the resource API."""

    def __init__(
        self,
        *,
        access_token: str,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._retry_config = retry_config

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Accept": "application/json",
            },
        )

    def _check(self, method: str, path: str, response: httpx.Response) -> None:
        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise ResourceAPIUnauthorizedError(
                f"{method} {path} rejected the access token.",
                status_code=response.status_code,
            )
        if response.is_error:
            logger.warning("%s %s failed with HTTP %s", method, path, response.status_code)
            raise ResourceAPIError(
                f"{method} {path} failed with HTTP {response.status_code}.",
                status_code=response.status_code,
            )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == httpx.codes.NO_CONTENT or not response.content:
            return {}
        return response.json()

    async def get(self, path: str, **params: Any) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client.get, path, params=params or None, retry_config=self._retry_config
                )
        except httpx.TransportError as exc:
            raise ResourceAPIError(f"GET {path} could not reach the resource API.") from exc
        self._check("GET", path, response)
        return self._json(response)

    async def post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(path, json=payload)
        except httpx.TransportError as exc:
            raise ResourceAPIError(f"POST {path} could not reach the resource API.") from exc
        self._check("POST", path, response)
        return self._json(response)

    async def delete(self, path: str) -> None:
        try:
            async with self._client() as client:
                response = await client.delete(path)
        except httpx.TransportError as exc:
            raise ResourceAPIError(f"DELETE {path} could not reach the resource API.") from exc
        self._check("DELETE", path, response)

    async def me(self) -> Dict[str, Any]:
        """Return the person document for the token's owner."""
        return await self.get("/people/v2/me")

    async def list_background_checks(self, person_id: str | int) -> list[Dict[str, Any]]:
        document = await self.get(f"/people/v2/people/{person_id}/background_checks")
        return list(document.get("data") or [])

    async def add_background_check(
        self, person_id: str | int, *, status: str = "report_clear"
    ) -> Dict[str, Any]:
        return await self.post(
            f"/people/v2/people/{person_id}/background_checks",
            {"data": {"attributes": {"status": status}}},
        )

    async def delete_background_check(
        self, person_id: str | int, check_id: str | int
    ) -> None:
        await self.delete(f"/people/v2/people/{person_id}/background_checks/{check_id}")


class ResourceAPIClientFactory:
    """Wrap bearer tokens into independent resource API clients."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    def build(self, access_token: str) -> ResourceAPIClient:
        return ResourceAPIClient(
            access_token=access_token,
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )


def organization_id_from_me(document: Dict[str, Any]) -> int:
    """Extract the owning organization's id from a ``me`` document."""
    try:
        return int(document["meta"]["parent"]["id"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ResourceAPIError("Person document does not name its organization.") from exc


__all__ = [
    "ResourceAPIClient",
    "ResourceAPIClientFactory",
    "ResourceAPIError",
    "ResourceAPIUnauthorizedError",
    "organization_id_from_me",
]
