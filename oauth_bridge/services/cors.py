"""Cross-origin gate for the server-to-server endpoints."""

from __future__ import annotations

from typing import Dict, Iterable, Optional

from starlette.responses import Response


class CrossOriginGate:
    """Grant cross-origin POST access to an exact allow-list of origins."""

    ALLOWED_METHODS = "POST"
    ALLOWED_HEADERS = "Content-Type"

    def __init__(self, allowed_origins: Iterable[str]) -> None:
        self._allowed = frozenset(origin.rstrip("/") for origin in allowed_origins)

    def should_allow(self, origin: Optional[str]) -> bool:
        return bool(origin) and origin in self._allowed

    def headers_for(self, origin: Optional[str]) -> Dict[str, str]:
        """CORS headers for ``origin``; empty when the origin is not allowed."""
        if not self.should_allow(origin):
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": self.ALLOWED_METHODS,
            "Access-Control-Allow-Headers": self.ALLOWED_HEADERS,
        }

    def apply(self, response: Response, origin: Optional[str]) -> Dict[str, str]:
        """Set the CORS headers for ``origin`` on ``response`` and return them."""
        headers = self.headers_for(origin)
        response.headers.update(headers)
        response.headers["Vary"] = "Origin"
        return headers


__all__ = ["CrossOriginGate"]
