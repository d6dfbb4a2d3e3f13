"""Retry helper wrapping Tenacity, for teardown calls only.

Observation never retries (the poller re-samples instead); cleanup calls such
as deleting an agent that is still disconnecting may fail transiently.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .errors import TransportError


def retryable(*exc_types: type[BaseException], attempts: int = 3):
    """Decorator factory for retry logic with exponential backoff + jitter.

    Example:
        @retryable(TransportError)
        async def delete(): ...
    """
    if not exc_types:
        exc_types = (TransportError,)

    def _decorator(fn: Callable[..., Awaitable[Any]]):
        return retry(
            reraise=True,
            stop=stop_after_attempt(attempts),
            wait=wait_exponential_jitter(multiplier=0.2, max=2),
            retry=retry_if_exception_type(exc_types),
        )(fn)

    return _decorator
