"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_api_client_factory,
    get_background_check_service,
    get_cors_gate,
    get_identity_verifier,
    get_oauth_provider_client,
    get_oauth_state_encoder,
    get_request_context,
    get_token_cipher_service,
    get_token_lifecycle_service,
    get_token_store,
)
from .config import get_app_settings

__all__ = [
    "get_api_client_factory",
    "get_app_settings",
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
