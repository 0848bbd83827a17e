"""SQLite-backed token store keyed by organization."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, TYPE_CHECKING

from oauth_bridge.models.credentials import StoredCredential

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from oauth_bridge.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class CredentialNotFoundError(Exception):
    """Raised when no token is stored for the requested key."""


class ConstraintViolation(Exception):
    """Raised when a storage-layer uniqueness constraint rejects a write."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class SQLiteTokenStore:
    """One row per organization: ``tokens(id, organization_id UNIQUE, token)``."""

    def __init__(
        self,
        db_path: str,
        *,
        token_cipher: "TokenCipherService | None" = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._cipher = token_cipher
        self._timeout = timeout_seconds
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path, timeout=self._timeout, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tokens (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    organization_id INTEGER NOT NULL UNIQUE,
                    token TEXT NOT NULL
                )
                """
            )

    def _serialize(self, payload: Dict[str, Any]) -> str:
        if self._cipher is not None:
            return self._cipher.seal_payload(payload)
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)

    def _deserialize(self, token: str) -> Dict[str, Any]:
        if self._cipher is not None:
            return self._cipher.open_payload(token)
        return json.loads(token)

    def _to_credential(self, row: sqlite3.Row) -> StoredCredential:
        return StoredCredential.from_payload(
            self._deserialize(row["token"]),
            organization_id=row["organization_id"],
            id=row["id"],
        )

    def get(self, organization_id: int) -> StoredCredential:
        """Return the token stored for an organization."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, organization_id, token FROM tokens WHERE organization_id = ?",
                (organization_id,),
            ).fetchone()
        if not row:
            raise CredentialNotFoundError(
                f"No OAuth token stored for organization {organization_id}."
            )
        return self._to_credential(row)

    def get_by_id(self, token_id: int) -> StoredCredential:
        """Return the token stored under a row id (the browser session's reference)."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT id, organization_id, token FROM tokens WHERE id = ?",
                (token_id,),
            ).fetchone()
        if not row:
            raise CredentialNotFoundError(f"No OAuth token stored with id {token_id}.")
        return self._to_credential(row)

    def _insert(self, organization_id: int, token: str) -> int:
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO tokens (organization_id, token) VALUES (?, ?)",
                    (organization_id, token),
                )
                return int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(
                "Token already stored for organization.",
                {"organization_id": organization_id},
            ) from exc

    def upsert(self, organization_id: int, payload: Dict[str, Any]) -> int:
        """
        Insert or fully replace the token for an organization.

        The insert is attempted first; when the uniqueness constraint rejects
        it (an earlier authorization or a concurrent refresher owns the row)
        the row is updated in place and its id re-read. Returns the row id.
        """
        token = self._serialize(payload)
        try:
            return self._insert(organization_id, token)
        except ConstraintViolation:
            logger.debug("Token row exists for organization %s; updating", organization_id)

        with self._transaction() as conn:
            conn.execute(
                "UPDATE tokens SET token = ? WHERE organization_id = ?",
                (token, organization_id),
            )
            row = conn.execute(
                "SELECT id FROM tokens WHERE organization_id = ?",
                (organization_id,),
            ).fetchone()
        if not row:
            # Deleted between the failed insert and the update; start over.
            return self.upsert(organization_id, payload)
        return int(row["id"])

    def discard(self, organization_id: int, *, access_token: str) -> bool:
        """Delete the organization's row only while it still holds ``access_token``."""
        with self._transaction() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT id, organization_id, token FROM tokens WHERE organization_id = ?",
                (organization_id,),
            ).fetchone()
            if not row or self._to_credential(row).access_token != access_token:
                return False
            conn.execute("DELETE FROM tokens WHERE id = ?", (row["id"],))
        return True


__all__ = ["ConstraintViolation", "CredentialNotFoundError", "SQLiteTokenStore"]
