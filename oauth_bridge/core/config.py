"""
Application configuration models and helpers.

Centralizes settings management so the routes, the token lifecycle service and
the upstream clients share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class ProviderSettings(BaseSettings):
    """Configuration required for talking to the OAuth provider and its API."""

    client_id: str = Field(..., validation_alias="OAUTH_APP_ID")
    client_secret: str = Field(..., validation_alias="OAUTH_SECRET")
    scope: str = Field("people", validation_alias="SCOPE")
    api_url: str = Field(
        "https://api.planningcenteronline.com",
        validation_alias="API_URL",
        description="Base URL for both the OAuth endpoints and the resource API.",
    )
    request_timeout_seconds: float = Field(10.0, validation_alias="UPSTREAM_TIMEOUT")

    @field_validator("api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class SessionSettings(BaseSettings):
    """Browser session cookie configuration."""

    secret_key: str = Field(..., validation_alias="SESSION_SECRET")
    cookie_name: str = Field("session", validation_alias="SESSION_COOKIE")
    max_age_seconds: int = Field(14 * 24 * 60 * 60, validation_alias="SESSION_MAX_AGE")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description="Secret used to derive the symmetric key for encrypting stored tokens.",
    )
    identity_secret: Optional[str] = Field(
        None,
        validation_alias="IDENTITY_SECRET",
        description=(
            "Dedicated HMAC key for identity assertions. Falls back to the "
            "leading characters of the OAuth client secret when omitted."
        ),
    )


class TokenSettings(BaseSettings):
    """Token storage and refresh behaviour."""

    db_path: str = Field("data.sqlite3", validation_alias="TOKEN_DB_PATH")
    refresh_padding_seconds: int = Field(
        300,
        validation_alias="TOKEN_EXPIRATION_PADDING",
        description="Refresh a token when it is within this many seconds of expiring.",
    )
    state_ttl_seconds: int = Field(900, validation_alias="OAUTH_STATE_TTL")


class CorsSettings(BaseSettings):
    """Origins allowed to call the server-to-server endpoints from a browser."""

    allowed_origins: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "http://api.pco.test",
            "https://api-staging.planningcenteronline.com",
            "https://api.planningcenteronline.com",
        ),
        validation_alias="CORS_ALLOWED_ORIGINS",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _split_origins(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing origins as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(origin.strip() for origin in value.split(",") if origin.strip())


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    domain: str = Field(
        "http://localhost:4567",
        validation_alias="DOMAIN",
        description="Public base URL of this application, used for the OAuth redirect.",
    )
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    tokens: TokenSettings = Field(default_factory=TokenSettings)
    cors: CorsSettings = Field(default_factory=CorsSettings)

    @property
    def redirect_uri(self) -> str:
        return f"{self.domain.rstrip('/')}/auth/complete"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "CorsSettings",
    "ProviderSettings",
    "SecuritySettings",
    "SessionSettings",
    "TokenSettings",
    "get_settings",
]
