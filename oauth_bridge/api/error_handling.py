"""Translate domain exceptions into JSON error responses."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from oauth_bridge.clients.oauth_provider import (
    OAuthProviderUnavailableError,
    OAuthStateError,
    OAuthTokenExchangeError,
)
from oauth_bridge.clients.resource_api import (
    ResourceAPIError,
    ResourceAPIUnauthorizedError,
)
from oauth_bridge.services.identity import IdentityVerificationError
from oauth_bridge.services.token_lifecycle import (
    NotAuthenticatedError,
    RefreshUnavailableError,
)

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 30


def _error_response(
    request: Request,
    status_code: int,
    detail: str,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    log_fn = logger.error if status_code >= 500 else logger.warning
    log_fn("%s %s -> %s: %s", request.method, request.url.path, int(status_code), detail)

    merged = dict(getattr(request.state, "cors_headers", None) or {})
    merged.update(headers or {})
    return JSONResponse(
        status_code=status_code, content={"detail": detail}, headers=merged or None
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent handlers for authentication and upstream failures."""

    @app.exception_handler(NotAuthenticatedError)
    async def handle_not_authenticated(request: Request, exc: NotAuthenticatedError):
        return _error_response(request, HTTPStatus.UNAUTHORIZED, str(exc))

    @app.exception_handler(IdentityVerificationError)
    async def handle_identity_error(request: Request, exc: IdentityVerificationError):
        return _error_response(
            request, HTTPStatus.UNAUTHORIZED, "Identity assertion rejected."
        )

    @app.exception_handler(ResourceAPIUnauthorizedError)
    async def handle_upstream_unauthorized(
        request: Request, exc: ResourceAPIUnauthorizedError
    ):
        return _error_response(
            request,
            HTTPStatus.UNAUTHORIZED,
            "Stored credential was rejected; re-authorization required.",
        )

    @app.exception_handler(ResourceAPIError)
    async def handle_upstream_error(request: Request, exc: ResourceAPIError):
        return _error_response(request, HTTPStatus.BAD_GATEWAY, str(exc))

    @app.exception_handler(RefreshUnavailableError)
    async def handle_refresh_unavailable(request: Request, exc: RefreshUnavailableError):
        return _error_response(
            request,
            HTTPStatus.SERVICE_UNAVAILABLE,
            str(exc),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )

    @app.exception_handler(OAuthProviderUnavailableError)
    async def handle_provider_unavailable(
        request: Request, exc: OAuthProviderUnavailableError
    ):
        return _error_response(
            request,
            HTTPStatus.SERVICE_UNAVAILABLE,
            "OAuth provider is temporarily unavailable.",
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )

    @app.exception_handler(OAuthTokenExchangeError)
    async def handle_exchange_error(request: Request, exc: OAuthTokenExchangeError):
        return _error_response(
            request, HTTPStatus.BAD_REQUEST, "Failed to exchange authorization code."
        )

    @app.exception_handler(OAuthStateError)
    async def handle_state_error(request: Request, exc: OAuthStateError):
        return _error_response(request, HTTPStatus.BAD_REQUEST, str(exc))


__all__ = ["register_exception_handlers"]
