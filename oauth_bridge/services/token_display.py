"""
Display-only summaries of a stored token.

Nothing here may feed an authorization decision: the id token claims are read
without signature verification purely so the home document can show them.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from jose import JWTError, jwt

from oauth_bridge.models.credentials import StoredCredential


def mask_token(value: Optional[str], visible: int = 4) -> Optional[str]:
    if not value:
        return None
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}…{value[-visible:]}"


def unverified_id_token_claims(id_token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not id_token:
        return None
    try:
        return jwt.get_unverified_claims(id_token)
    except JWTError:
        return None


def summarize_token(record: StoredCredential) -> Dict[str, Any]:
    return {
        "organization_id": record.organization_id,
        "access_token": mask_token(record.access_token),
        "refresh_token": mask_token(record.refresh_token),
        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        "scope": record.raw_payload.get("scope"),
        "id_token_claims": unverified_id_token_claims(record.raw_payload.get("id_token")),
    }


__all__ = ["mask_token", "summarize_token", "unverified_id_token_claims"]
