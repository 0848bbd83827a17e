"""Expose constructed client wrappers."""

from .oauth_provider import OAuthProviderClient, OAuthStateEncoder
from .resource_api import ResourceAPIClient, ResourceAPIClientFactory
from .sqlite_store import SQLiteTokenStore

__all__ = [
    "OAuthProviderClient",
    "OAuthStateEncoder",
    "ResourceAPIClient",
    "ResourceAPIClientFactory",
    "SQLiteTokenStore",
]
