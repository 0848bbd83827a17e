"""HTTP utilities providing retry/backoff semantics."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import httpx


class RetryConfig:
    def __init__(self, *, attempts: int = 3, backoff_seconds: float = 0.5) -> None:
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in (408, 429)


async def request_with_retry(
    func: Callable[..., Awaitable[httpx.Response]],
    *args,
    retry_config: RetryConfig | None = None,
    **kwargs,
) -> httpx.Response:
    """
    Await ``func`` until it yields a non-retryable response.

    Transport errors and 5xx/408/429 responses are retried with linear
    backoff. Any other response, including 4xx, is returned to the caller
    untouched so authorization failures are never retried.
    """
    config = retry_config or RetryConfig()
    attempt = 0

    while True:
        attempt += 1
        try:
            response = await func(*args, **kwargs)
        except httpx.TransportError:
            if attempt >= config.attempts:
                raise
        else:
            if not is_retryable_status(response.status_code) or attempt >= config.attempts:
                return response
        await asyncio.sleep(config.backoff_seconds * attempt)


__all__ = ["RetryConfig", "is_retryable_status", "request_with_retry"]
