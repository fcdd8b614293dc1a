"""Row models returned by the deal store."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping


def _from_row(cls, row: Mapping[str, Any], prefix: str = ""):
    return cls(**{field.name: row[f"{prefix}{field.name}"] for field in fields(cls)})


@dataclass(slots=True)
class Product:
    id: int
    upc_code: str
    brand: str
    name: str | None
    spec: str | None
    category_id: int | None
    second_category_id: int | None
    image_url: str | None
    frequency: int

    @classmethod
    def from_row(cls, row: Mapping[str, Any], prefix: str = "") -> "Product":
        return _from_row(cls, row, prefix)

    @property
    def title(self) -> str:
        return f"{self.brand} {self.name}" if self.name else self.brand


@dataclass(slots=True)
class Deal:
    id: int
    deal_id: int
    product_id: int
    store_id: int
    current_price: Decimal | None
    source_price: Decimal | None
    discount_price: Decimal | None
    discount_type: int | None
    start_time: datetime | None
    end_time: datetime | None
    is_active: bool
    is_latest: bool
    likes_count: int
    forwards_count: int
    comments_count: int
    first_seen_at: datetime
    last_updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any], prefix: str = "") -> "Deal":
        return _from_row(cls, row, prefix)

    def has_expired(self, now: datetime) -> bool:
        return self.end_time is not None and self.end_time <= now


@dataclass(slots=True)
class DealView:
    """A deal joined with its product, as needed for targeting and rendering."""

    deal: Deal
    product: Product

    @property
    def deal_id(self) -> int:
        return self.deal.deal_id

    @property
    def store_id(self) -> int:
        return self.deal.store_id

    @property
    def category_id(self) -> int | None:
        return self.product.category_id


@dataclass(slots=True, frozen=True)
class Recipient:
    telegram_id: int
    store_id: int | None
    notifications_enabled: bool
    category_ids: frozenset[int] = frozenset()
