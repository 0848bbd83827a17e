"""
Domain models for OAuth token persistence.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def normalize_token_payload(
    payload: Dict[str, Any], *, issued_at: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Return a copy of a provider token payload with an absolute ``expires_at``.

    Providers answer with a relative ``expires_in``; storing only that value
    would make every re-read look freshly issued. The absolute expiry is
    recorded as integer epoch seconds next to the untouched provider fields.
    """
    normalized = dict(payload)
    if normalized.get("expires_at") is None and normalized.get("expires_in") is not None:
        issued = issued_at or datetime.now(timezone.utc)
        normalized["expires_at"] = int(issued.timestamp()) + int(normalized["expires_in"])
    return normalized


class StoredCredential(BaseModel):
    """A tenant's OAuth token as held in the token store."""

    id: Optional[int] = Field(None, description="Store row identity.")
    organization_id: int = Field(..., description="Tenant that owns the token.")
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(
        cls,
        payload: Dict[str, Any],
        *,
        organization_id: int,
        id: Optional[int] = None,
    ) -> "StoredCredential":
        """Build a credential from a normalized provider token payload."""
        access_token = payload.get("access_token")
        if not access_token:
            raise ValueError("Token payload is missing an access_token.")

        expires_at = None
        raw_expires_at = payload.get("expires_at")
        if raw_expires_at is not None:
            expires_at = datetime.fromtimestamp(int(raw_expires_at), tz=timezone.utc)

        return cls(
            id=id,
            organization_id=organization_id,
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            expires_at=expires_at,
            raw_payload=dict(payload),
        )

    @property
    def refreshable(self) -> bool:
        return bool(self.refresh_token)

    def needs_refresh(
        self, *, padding: timedelta, now: Optional[datetime] = None
    ) -> bool:
        """True when the token expires within ``padding`` and can be refreshed."""
        if self.expires_at is None or not self.refreshable:
            return False
        current = now or datetime.now(timezone.utc)
        return self.expires_at < current + padding


__all__ = ["StoredCredential", "normalize_token_payload"]
