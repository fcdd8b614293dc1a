"""Ingestion data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dealbot.utils.dates import parse_feed_timestamp, to_utc_naive


@dataclass(slots=True, frozen=True)
class Store:
    id: int
    name: str


@dataclass(slots=True, frozen=True)
class Category:
    id: int
    name: str
    emoji: str = ""

    @property
    def label(self) -> str:
        return f"{self.emoji} {self.name}".strip()


class RawDeal(BaseModel):
    """One validated item from the catalog feed."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", str_strip_whitespace=True)

    deal_id: int = Field(alias="id")
    brand: str
    name: str | None = None
    spec: str | None = None
    upc_code: str = Field(alias="itm_upc_code", min_length=1)
    category_id: int | None = Field(default=None, alias="fk_goods_type")
    second_category_id: int | None = Field(default=None, alias="fk_goods_second_type")
    image_url: str | None = Field(default=None, alias="goods_img")
    current_price: Decimal | None = Field(default=None, alias="cur_price")
    source_price: Decimal | None = None
    discount_price: Decimal | None = None
    discount_type: int | None = None
    created_at: datetime | None = Field(default=None, alias="create_time")
    end_time: datetime | None = None
    is_latest: bool = False
    likes_count: int = Field(default=0, alias="likesCount")
    forwards_count: int = Field(default=0, alias="forwardsCount")
    comments_count: int = Field(default=0, alias="commentsCount")

    @field_validator("name", "spec", "image_url", mode="before")
    @classmethod
    def _blank_text(cls, value: Any) -> Any:
        return None if value == "" else value

    @field_validator("current_price", "source_price", "discount_price", mode="before")
    @classmethod
    def _blank_price(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return value

    @field_validator("current_price", "source_price", "discount_price")
    @classmethod
    def _non_negative(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and (not value.is_finite() or value < 0):
            raise ValueError("price must be a non-negative number")
        return value

    @field_validator("created_at", "end_time", mode="before")
    @classmethod
    def _timestamp(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            return parse_feed_timestamp(value)
        if isinstance(value, datetime):
            return to_utc_naive(value)
        return value

    @field_validator("is_latest", mode="before")
    @classmethod
    def _latest_flag(cls, value: Any) -> Any:
        return False if value is None else value

    def has_expired(self, now: datetime) -> bool:
        return self.end_time is not None and self.end_time <= now

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FeedEnvelope(BaseModel):
    code: int
    message: str = ""
    data: str | dict[str, Any] | None = None


@dataclass(slots=True)
class FeedPage:
    store_id: int
    page: int
    deals: list[RawDeal] = field(default_factory=list)
    total_pages: int = 1
    rejected: int = 0
