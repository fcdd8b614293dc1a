"""Catalog feed client."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import ValidationError

from dealbot.ingest.models import FeedEnvelope, FeedPage, RawDeal
from dealbot.utils.metrics import Metrics
from dealbot.utils.rate_limit import RateLimiter
from dealbot.utils.retry import retry_async

logger = logging.getLogger(__name__)

API_PATH = "/api/deal/list"
DEFAULT_BASE_URL = "https://yepsavings.com"
DEFAULT_COOKIE = "ezoictest=stable"


class FeedError(RuntimeError):
    """The catalog could not produce a page of deals for a location."""

    def __init__(self, store_id: int, message: str) -> None:
        super().__init__(f"store {store_id}: {message}")
        self.store_id = store_id


class CatalogClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        cookie: str | None = None,
        timeout: float | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        session: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
        metrics: Metrics | None = None,
        retries: int = 3,
    ) -> None:
        self.base_url = (base_url or os.environ.get("CATALOG_BASE_URL", DEFAULT_BASE_URL)).rstrip("/")
        self.page_size = page_size or int(os.environ.get("CATALOG_PAGE_SIZE", "100"))
        self.max_pages = max_pages or int(os.environ.get("CATALOG_MAX_PAGES", "20"))
        timeout = timeout or float(os.environ.get("CATALOG_TIMEOUT", "10"))
        headers = {
            "Cookie": cookie or os.environ.get("CATALOG_COOKIE", DEFAULT_COOKIE),
            "Accept": "application/json",
        }
        self.session = session or httpx.AsyncClient(timeout=timeout)
        self._headers = headers
        self._rate_limiter = rate_limiter or RateLimiter(rate=float(os.environ.get("CATALOG_RATE", "1.0")))
        self.metrics = metrics or Metrics()
        self.retries = retries

    async def close(self) -> None:
        await self.session.aclose()

    async def fetch_page(self, store_id: int, page: int = 1, page_size: int | None = None) -> FeedPage:
        url = f"{self.base_url}{API_PATH}"
        params = {"storeId": store_id, "page": page, "pageSize": page_size or self.page_size}
        await self._rate_limiter.wait_for_host(urlparse(url).netloc)
        self.metrics.increment("feed.requests")
        try:
            response = await retry_async(self.session.get, attempts=self.retries)(
                url, params=params, headers=self._headers
            )
        except (httpx.HTTPError, OSError, asyncio.TimeoutError) as exc:
            self.metrics.increment("feed.errors")
            raise FeedError(store_id, f"request failed: {exc.__class__.__name__}") from exc
        if response.status_code != 200:
            self.metrics.increment("feed.errors")
            raise FeedError(store_id, f"HTTP {response.status_code}")
        try:
            envelope = FeedEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            self.metrics.increment("feed.errors")
            raise FeedError(store_id, "malformed response envelope") from exc
        if envelope.code != 200 or not isinstance(envelope.data, dict):
            self.metrics.increment("feed.errors")
            raise FeedError(store_id, f"API error {envelope.code}: {envelope.message or envelope.data}")
        return self._parse_page(store_id, page, envelope.data)

    async def fetch_all(self, store_id: int) -> list[RawDeal]:
        first = await self.fetch_page(store_id, 1)
        deals = list(first.deals)
        last_page = min(first.total_pages, self.max_pages)
        if first.total_pages > self.max_pages:
            logger.warning(
                "Store %s reports %s pages; reading only the first %s", store_id, first.total_pages, self.max_pages
            )
        for page in range(2, last_page + 1):
            result = await self.fetch_page(store_id, page)
            if not result.deals and not result.rejected:
                break
            deals.extend(result.deals)
        logger.info("Fetched %s deals for store %s", len(deals), store_id)
        return deals

    def _parse_page(self, store_id: int, page: int, data: dict[str, Any]) -> FeedPage:
        goods = data.get("goods") or []
        if not isinstance(goods, list):
            raise FeedError(store_id, "goods is not a list")
        result = FeedPage(store_id=store_id, page=page, total_pages=_total_pages(data.get("totalPage")))
        for item in goods:
            try:
                result.deals.append(RawDeal.model_validate(item))
            except ValidationError as exc:
                result.rejected += 1
                item_id = item.get("id") if isinstance(item, dict) else None
                logger.warning(
                    "Rejected feed item %s for store %s: %s", item_id, store_id, exc.errors(include_url=False)
                )
        self.metrics.increment("feed.records", len(result.deals))
        if result.rejected:
            self.metrics.increment("feed.rejected", result.rejected)
        return result


def _total_pages(value: Any) -> int:
    try:
        return max(int(value), 1)
    except (TypeError, ValueError):
        return 1
