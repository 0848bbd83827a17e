"""Verification of the signed identity assertions sent by the provider's web UI."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from pydantic import BaseModel

logger = logging.getLogger(__name__)

IDENTITY_ALGORITHM = "HS256"
DERIVED_KEY_LENGTH = 100


class IdentityVerificationError(Exception):
    """Raised when an identity assertion cannot be trusted."""


class IdentityClaims(BaseModel):
    """Verified claims naming the tenant and the person acting in it."""

    organization_id: int
    person_id: str
    raw: Dict[str, Any] = {}


def derive_identity_key(client_secret: str, identity_secret: Optional[str] = None) -> str:
    """
    Return the HMAC key for identity assertions.

    A dedicated ``identity_secret`` wins. Otherwise the provider signs with
    the leading characters of this application's OAuth client secret.
    """
    if identity_secret:
        return identity_secret
    if not client_secret:
        raise ValueError("An OAuth client secret is required to derive the identity key.")
    return client_secret[:DERIVED_KEY_LENGTH]


class IdentityVerifier:
    """Check an assertion's signature, then extract the organization it speaks for."""

    def __init__(self, *, key: str) -> None:
        self._key = key

    def verify(self, assertion: str | None) -> IdentityClaims:
        if not assertion or not isinstance(assertion, str):
            raise IdentityVerificationError("Identity assertion is missing.")

        try:
            claims = jwt.decode(assertion, self._key, algorithms=[IDENTITY_ALGORITHM])
        except JWTError as exc:
            logger.warning("Rejected identity assertion: %s", exc)
            raise IdentityVerificationError(f"Invalid identity assertion: {exc}") from exc

        # The provider nests the identity under "data".
        identity = claims.get("data", claims)
        if not isinstance(identity, dict):
            raise IdentityVerificationError("Identity assertion payload is malformed.")

        organization = identity.get("org")
        raw_org_id = organization.get("id") if isinstance(organization, dict) else None
        if raw_org_id is None:
            raise IdentityVerificationError("Identity assertion does not name an organization.")
        try:
            organization_id = int(raw_org_id)
        except (TypeError, ValueError) as exc:
            raise IdentityVerificationError("Organization id must be an integer.") from exc

        person = identity.get("person")
        person_id = person.get("id") if isinstance(person, dict) else None
        if person_id is None:
            raise IdentityVerificationError("Identity assertion does not name a person.")

        return IdentityClaims(
            organization_id=organization_id,
            person_id=str(person_id),
            raw=identity,
        )


__all__ = [
    "IdentityClaims",
    "IdentityVerificationError",
    "IdentityVerifier",
    "derive_identity_key",
]
