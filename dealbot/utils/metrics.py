"""Injectable counter sink for pipeline observability."""

from __future__ import annotations

import logging
from collections import Counter

logger = logging.getLogger(__name__)


class Metrics:
    """Counts named events; each component receives one instead of sharing globals."""

    def __init__(self, prefix: str = "dealbot") -> None:
        self.prefix = prefix
        self._counts: Counter[str] = Counter()

    def increment(self, name: str, value: int = 1) -> None:
        self._counts[name] += value
        logger.debug("%s.%s += %s", self.prefix, name, value)

    def get(self, name: str) -> int:
        return self._counts[name]

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)
