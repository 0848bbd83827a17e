"""Per-request view of the browser session's credential reference."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, MutableMapping, Optional

from oauth_bridge.models.credentials import StoredCredential

TOKEN_ID_KEY = "token_id"
OAUTH_STATE_KEY = "oauth_state"


@dataclass
class RequestContext:
    """Holds the session reference and, once resolved, the credential it points to."""

    session: MutableMapping[str, Any] = field(default_factory=dict)
    credential: Optional[StoredCredential] = None

    @property
    def token_id(self) -> Optional[int]:
        value = self.session.get(TOKEN_ID_KEY)
        return int(value) if value is not None else None

    def bind(self, credential: StoredCredential) -> None:
        self.credential = credential
        self.session[TOKEN_ID_KEY] = credential.id

    def clear_credential(self) -> None:
        self.credential = None
        self.session.pop(TOKEN_ID_KEY, None)

    def clear(self) -> None:
        self.credential = None
        self.session.clear()


__all__ = ["OAUTH_STATE_KEY", "RequestContext", "TOKEN_ID_KEY"]
