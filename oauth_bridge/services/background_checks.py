"""Tenant-scoped background check operations invoked by the provider's web UI."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from oauth_bridge.clients.resource_api import (
    ResourceAPIClient,
    ResourceAPIClientFactory,
    ResourceAPIUnauthorizedError,
)
from oauth_bridge.services.token_lifecycle import TokenLifecycleService

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLEAR_STATUS = "report_clear"


class BackgroundCheckService:
    """Run background check calls with the organization's stored token."""

    def __init__(
        self,
        *,
        lifecycle: TokenLifecycleService,
        api_client_factory: ResourceAPIClientFactory,
    ) -> None:
        self._lifecycle = lifecycle
        self._api = api_client_factory

    async def _with_client(
        self,
        organization_id: int,
        operation: Callable[[ResourceAPIClient], Awaitable[T]],
    ) -> T:
        record = await self._lifecycle.organization_token(organization_id)
        try:
            return await operation(self._api.build(record.access_token))
        except ResourceAPIUnauthorizedError:
            logger.info(
                "Resource API rejected token for organization %s; discarding it",
                organization_id,
            )
            self._lifecycle.invalidate(record)
            raise

    async def add(self, organization_id: int, person_id: str) -> dict[str, Any]:
        return await self._with_client(
            organization_id,
            lambda client: client.add_background_check(person_id, status=CLEAR_STATUS),
        )

    async def remove_all(self, organization_id: int, person_id: str) -> int:
        """Delete every background check on file for the person; returns the count."""

        async def _remove(client: ResourceAPIClient) -> int:
            checks = await client.list_background_checks(person_id)
            for check in checks:
                await client.delete_background_check(person_id, check["id"])
            return len(checks)

        return await self._with_client(organization_id, _remove)


__all__ = ["BackgroundCheckService"]
