"""Service layer exports."""

from .background_checks import BackgroundCheckService
from .cors import CrossOriginGate
from .identity import IdentityClaims, IdentityVerifier
from .request_context import RequestContext
from .token_cipher import TokenCipherService
from .token_lifecycle import TokenLifecycleService

__all__ = [
    "BackgroundCheckService",
    "CrossOriginGate",
    "IdentityClaims",
    "IdentityVerifier",
    "RequestContext",
    "TokenCipherService",
    "TokenLifecycleService",
]
