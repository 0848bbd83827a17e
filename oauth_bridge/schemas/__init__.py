"""Public schema exports."""

from .integration import BackgroundCheckRequest, IntegrationStatus

__all__ = [
    "BackgroundCheckRequest",
    "IntegrationStatus",
]
