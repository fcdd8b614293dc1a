"""Reconcile catalog records with stored deals."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from sqlalchemy.exc import SQLAlchemyError

from dealbot.db.models import Deal
from dealbot.db.store import DealStore
from dealbot.ingest.models import RawDeal
from dealbot.utils.dates import utcnow
from dealbot.utils.metrics import Metrics

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("current_price", "source_price", "discount_price")


@dataclass(slots=True)
class SyncResult:
    store_id: int
    products_created: int = 0
    products_updated: int = 0
    deals_created: int = 0
    deals_updated: int = 0
    deals_superseded: int = 0
    deals_expired_now: list[int] = field(default_factory=list)
    new_deals: list[Deal] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def records_processed(self) -> int:
        return self.deals_created + self.deals_updated


@dataclass(slots=True)
class _Applied:
    deal: Deal
    product_created: bool
    deal_created: bool
    is_new: bool
    expired: bool


class DealSynchronizer:
    def __init__(
        self,
        store: DealStore,
        *,
        metrics: Metrics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.metrics = metrics or Metrics()
        self._clock = clock

    def synchronize(self, raw_deals: Iterable[RawDeal], store_id: int) -> SyncResult:
        """Write each record and classify it as created, updated or newly latest.

        Records are committed one at a time; a store failure on one record is
        logged and the rest of the batch continues.
        """
        now = self._clock()
        result = SyncResult(store_id=store_id)
        latest: dict[int, set[int]] = defaultdict(set)
        for raw in raw_deals:
            try:
                applied = self._apply(raw, store_id, now)
            except SQLAlchemyError:
                logger.exception("Failed to store deal %s for store %s", raw.deal_id, store_id)
                result.failed.append(raw.deal_id)
                self.metrics.increment("sync.failed")
                continue
            _merge(result, applied)
            if raw.is_latest:
                latest[applied.deal.product_id].add(raw.deal_id)
        result.deals_superseded = self._supersede(latest, store_id)

        self.metrics.increment("sync.deals_created", result.deals_created)
        self.metrics.increment("sync.deals_updated", result.deals_updated)
        self.metrics.increment("sync.new_deals", len(result.new_deals))
        logger.info(
            "Store %s: %s created, %s updated, %s new, %s expired, %s failed",
            store_id,
            result.deals_created,
            result.deals_updated,
            len(result.new_deals),
            len(result.deals_expired_now),
            len(result.failed),
        )
        return result

    def _supersede(self, latest: dict[int, set[int]], store_id: int) -> int:
        # Every id the batch asserts as latest keeps its flag, so re-polling the
        # same page never produces a fresh edge.
        superseded = 0
        for product_id, deal_ids in latest.items():
            try:
                superseded += self.store.supersede_deals(product_id, store_id, deal_ids)
            except SQLAlchemyError:
                logger.exception("Failed to supersede deals of product %s at store %s", product_id, store_id)
        return superseded

    def expire_stale(self, now: datetime | None = None) -> int:
        """Deactivate every active deal whose end time has passed."""
        now = now or self._clock()
        expired = 0
        for deal in self.store.active_deals():
            if not deal.has_expired(now):
                continue
            try:
                self.store.deactivate_deal(deal.deal_id)
            except SQLAlchemyError:
                logger.exception("Failed to expire deal %s", deal.deal_id)
                continue
            expired += 1
        if expired:
            logger.info("Expired %s stale deals", expired)
        self.metrics.increment("sync.expired", expired)
        return expired

    def _apply(self, raw: RawDeal, store_id: int, now: datetime) -> _Applied:
        product = self.store.get_product(raw.upc_code)
        product_created = product is None
        if product is None:
            product = self.store.create_product(_product_values(raw))
        else:
            product = self.store.touch_product(raw.upc_code, _display_values(raw))

        existing = self.store.get_deal(raw.deal_id)
        values = _deal_values(raw, product.id, store_id)
        if existing is None:
            end_time = raw.end_time
            expired = end_time is not None and end_time <= now
            deal = self.store.create_deal({**values, "is_active": not expired})
            is_new = raw.is_latest
        else:
            was_latest = existing.is_latest
            end_time = raw.end_time or existing.end_time
            expired = end_time is not None and end_time <= now
            for name in PRICE_FIELDS:
                if values[name] is None:
                    del values[name]
            values.update(end_time=end_time, is_active=not expired)
            deal = self.store.update_deal(raw.deal_id, values)
            # Edge-triggered: staying latest across polls is not news.
            is_new = raw.is_latest and not was_latest

        return _Applied(
            deal=deal,
            product_created=product_created,
            deal_created=existing is None,
            is_new=is_new,
            expired=expired,
        )


def _merge(result: SyncResult, applied: _Applied) -> None:
    if applied.product_created:
        result.products_created += 1
    else:
        result.products_updated += 1
    if applied.deal_created:
        result.deals_created += 1
    else:
        result.deals_updated += 1
    if applied.expired:
        result.deals_expired_now.append(applied.deal.deal_id)
    if applied.is_new:
        result.new_deals.append(applied.deal)


def _display_values(raw: RawDeal) -> dict[str, Any]:
    values = {"name": raw.name, "spec": raw.spec, "image_url": raw.image_url}
    return {key: value for key, value in values.items() if value is not None}


def _product_values(raw: RawDeal) -> dict[str, Any]:
    return {
        "upc_code": raw.upc_code,
        "brand": raw.brand,
        "name": raw.name,
        "spec": raw.spec,
        "category_id": raw.category_id,
        "second_category_id": raw.second_category_id,
        "image_url": raw.image_url,
    }


def _deal_values(raw: RawDeal, product_id: int, store_id: int) -> dict[str, Any]:
    return {
        "deal_id": raw.deal_id,
        "product_id": product_id,
        "store_id": store_id,
        "current_price": raw.current_price,
        "source_price": raw.source_price,
        "discount_price": raw.discount_price,
        "discount_type": raw.discount_type,
        "start_time": raw.created_at,
        "end_time": raw.end_time,
        "is_latest": raw.is_latest,
        "likes_count": raw.likes_count,
        "forwards_count": raw.forwards_count,
        "comments_count": raw.comments_count,
        "raw_data": raw.snapshot(),
    }
