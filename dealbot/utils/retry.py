"""Backoff for catalog feed requests that fail in transport."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

# HTTP status errors are not retried; the feed client turns them into FeedError.
RETRY_EXCEPTIONS = (OSError, asyncio.TimeoutError, httpx.TransportError)


def retry_async(func: Callable[..., Awaitable], *, attempts: int = 3, base_delay: float = 1.0):
    """Wrap ``func`` so transport failures are retried with doubling, jittered delays.

    The last failure propagates unchanged once ``attempts`` calls have failed.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        delay = base_delay
        for attempt in range(1, attempts + 1):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS as exc:
                if attempt >= attempts:
                    raise
                logger.warning("Attempt %s/%s failed (%s); retrying", attempt, attempts, exc)
                await asyncio.sleep(delay * (1 + random.random()))
                delay *= 2
    return wrapper
