"""Symmetric encryption utilities for protecting stored token payloads."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Encrypt and decrypt token payloads using a derived Fernet key."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise ValueError(
                "Failed to decrypt token; invalid ciphertext or wrong secret."
            ) from exc
        return plaintext.decode("utf-8")

    def seal_payload(self, payload: Dict[str, Any]) -> str:
        """Serialize and encrypt a token payload for storage."""
        return self.encrypt(json.dumps(payload, separators=(",", ":"), sort_keys=True))

    def open_payload(self, sealed: str) -> Dict[str, Any]:
        """Decrypt and deserialize a stored token payload."""
        return json.loads(self.decrypt(sealed))


__all__ = ["TokenCipherService"]
