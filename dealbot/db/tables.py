"""Table definitions for the deal store."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    Table,
    Text,
)

metadata = MetaData()

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("upc_code", Text, nullable=False, unique=True),
    Column("brand", Text, nullable=False),
    Column("name", Text),
    Column("spec", Text),
    Column("category_id", Integer),
    Column("second_category_id", Integer),
    Column("image_url", Text),
    Column("frequency", Integer, nullable=False, default=0),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

deals = Table(
    "deals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("deal_id", Integer, nullable=False, unique=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
    Column("store_id", Integer, nullable=False),
    Column("current_price", Numeric(10, 2)),
    Column("source_price", Numeric(10, 2)),
    Column("discount_price", Numeric(10, 2)),
    Column("discount_type", Integer),
    Column("start_time", DateTime),
    Column("end_time", DateTime),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("is_latest", Boolean, nullable=False, default=False),
    Column("likes_count", Integer, nullable=False, default=0),
    Column("forwards_count", Integer, nullable=False, default=0),
    Column("comments_count", Integer, nullable=False, default=0),
    Column("raw_data", JSON),
    Column("first_seen_at", DateTime, nullable=False),
    Column("last_updated_at", DateTime, nullable=False),
    Index("idx_deals_store_active", "store_id", "is_active"),
    Index("idx_deals_product", "product_id"),
)

recipients = Table(
    "recipients",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("telegram_id", BigInteger, nullable=False, unique=True),
    Column("username", Text),
    Column("first_name", Text),
    Column("store_id", Integer),
    Column("notifications_enabled", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, nullable=False),
    Column("last_active_at", DateTime, nullable=False),
)

# No rows for a recipient means "all categories".
recipient_categories = Table(
    "recipient_categories",
    metadata,
    Column("recipient_id", BigInteger, primary_key=True, autoincrement=False),
    Column("category_id", Integer, primary_key=True, autoincrement=False),
)

deal_preferences = Table(
    "deal_preferences",
    metadata,
    Column("recipient_id", BigInteger, primary_key=True, autoincrement=False),
    Column("deal_id", Integer, primary_key=True, autoincrement=False),
    Column("is_favorite", Boolean, nullable=False, default=False),
    Column("is_hidden", Boolean, nullable=False, default=False),
    Column("in_cart", Boolean, nullable=False, default=False),
    Column("updated_at", DateTime, nullable=False),
    Index("idx_deal_prefs_deal", "deal_id"),
)

notification_log = Table(
    "notification_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("recipient_id", BigInteger, nullable=False),
    Column("deal_id", Integer, nullable=False),
    Column("kind", Text, nullable=False),
    Column("sent_at", DateTime, nullable=False),
    Column("was_successful", Boolean, nullable=False),
)

digest_sent = Table(
    "digest_sent",
    metadata,
    Column("recipient_id", BigInteger, primary_key=True, autoincrement=False),
    Column("deal_id", Integer, primary_key=True, autoincrement=False),
    Column("sent_at", DateTime, nullable=False),
)
