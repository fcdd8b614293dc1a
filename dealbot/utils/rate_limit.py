"""Keeps catalog polling under the feed's request rate."""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict


class RateLimiter:
    """Spaces requests to the same host at least ``1 / rate`` seconds apart.

    A cycle walks every page of every subscribed store against one catalog
    host, so calls are serialized per host. ``rate <= 0`` turns spacing off.
    """

    def __init__(self, *, rate: float = 1.0) -> None:
        self.rate = rate
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._last_request: dict[str, float] = {}

    @property
    def interval(self) -> float:
        return 1.0 / self.rate if self.rate > 0 else 0.0

    async def wait_for_host(self, host: str) -> None:
        if not self.interval:
            return
        async with self._locks[host]:
            last = self._last_request.get(host)
            if last is not None:
                remaining = self.interval - (time.monotonic() - last)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_request[host] = time.monotonic()
