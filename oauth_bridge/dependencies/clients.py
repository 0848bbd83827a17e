"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Process-wide collaborators are cached; the lifecycle and business services are
assembled per request through ``Depends`` so each collaborator can be
overridden on its own.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from oauth_bridge.clients import (
    OAuthProviderClient,
    OAuthStateEncoder,
    ResourceAPIClientFactory,
    SQLiteTokenStore,
)
from oauth_bridge.core.config import AppSettings, get_settings
from oauth_bridge.services import (
    BackgroundCheckService,
    CrossOriginGate,
    IdentityVerifier,
    RequestContext,
    TokenCipherService,
    TokenLifecycleService,
)
from oauth_bridge.services.identity import derive_identity_key

from .config import get_app_settings


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.provider.client_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    """Provide the shared SQLite token store."""
    settings = _settings()
    return SQLiteTokenStore(
        settings.tokens.db_path, token_cipher=get_token_cipher_service()
    )


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide an OAuth state encoder derived from the session secret."""
    settings = _settings()
    return OAuthStateEncoder(
        secret_key=settings.session.secret_key,
        ttl_seconds=settings.tokens.state_ttl_seconds,
    )


@lru_cache()
def get_oauth_provider_client() -> OAuthProviderClient:
    """Create a singleton OAuth provider client."""
    settings = _settings()
    return OAuthProviderClient(settings.provider, redirect_uri=settings.redirect_uri)


@lru_cache()
def get_api_client_factory() -> ResourceAPIClientFactory:
    """Provide the factory that wraps tokens into resource API clients."""
    settings = _settings()
    return ResourceAPIClientFactory(
        base_url=settings.provider.api_url,
        timeout=settings.provider.request_timeout_seconds,
    )


@lru_cache()
def get_identity_verifier() -> IdentityVerifier:
    """Provide the verifier for signed identity assertions."""
    settings = _settings()
    key = derive_identity_key(
        settings.provider.client_secret, settings.security.identity_secret
    )
    return IdentityVerifier(key=key)


@lru_cache()
def get_cors_gate() -> CrossOriginGate:
    """Provide the allow-list gate for cross-origin callers."""
    return CrossOriginGate(_settings().cors.allowed_origins)


def get_token_lifecycle_service(
    store: Annotated[SQLiteTokenStore, Depends(get_token_store)],
    oauth_client: Annotated[OAuthProviderClient, Depends(get_oauth_provider_client)],
    api_client_factory: Annotated[
        ResourceAPIClientFactory, Depends(get_api_client_factory)
    ],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> TokenLifecycleService:
    """Build a token lifecycle service over the shared store and clients."""
    return TokenLifecycleService(
        store=store,
        oauth_client=oauth_client,
        api_client_factory=api_client_factory,
        refresh_padding=timedelta(seconds=settings.tokens.refresh_padding_seconds),
    )


def get_background_check_service(
    lifecycle: Annotated[TokenLifecycleService, Depends(get_token_lifecycle_service)],
    api_client_factory: Annotated[
        ResourceAPIClientFactory, Depends(get_api_client_factory)
    ],
) -> BackgroundCheckService:
    """Build the background check service for server-to-server calls."""
    return BackgroundCheckService(
        lifecycle=lifecycle, api_client_factory=api_client_factory
    )


def get_request_context(request: Request) -> RequestContext:
    """Wrap the signed browser session for the current request."""
    return RequestContext(session=request.session)


__all__ = [
    "get_api_client_factory",
    "get_background_check_service",
    "get_cors_gate",
    "get_identity_verifier",
    "get_oauth_provider_client",
    "get_oauth_state_encoder",
    "get_request_context",
    "get_token_cipher_service",
    "get_token_lifecycle_service",
    "get_token_store",
]
