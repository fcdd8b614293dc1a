"""Deal store backed by SQLAlchemy Core.

Each public method opens its own transaction, so every operation is
independently atomic and nothing spans a whole synchronization batch.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Iterable

from sqlalchemy import DateTime, bindparam, func, insert, select, text, update
from sqlalchemy.engine import Engine

from dealbot.db import tables
from dealbot.db.models import Deal, DealView, Product, Recipient
from dealbot.ingest import load_categories
from dealbot.utils.dates import utcnow

_PRODUCT_PREFIX = "product__"


def _deal_view_select():
    product_columns = [column.label(f"{_PRODUCT_PREFIX}{column.name}") for column in tables.products.c]
    return select(tables.deals, *product_columns).join(
        tables.products, tables.products.c.id == tables.deals.c.product_id
    )


def _deal_view(row) -> DealView:
    return DealView(deal=Deal.from_row(row), product=Product.from_row(row, prefix=_PRODUCT_PREFIX))


class DealStore:
    def __init__(self, engine: Engine, *, clock: Callable[[], datetime] = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    # Products

    def get_product(self, upc_code: str) -> Product | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tables.products).where(tables.products.c.upc_code == upc_code)
            ).mappings().first()
        return Product.from_row(row) if row else None

    def create_product(self, values: dict[str, Any]) -> Product:
        now = self._clock()
        with self.engine.begin() as conn:
            conn.execute(
                insert(tables.products).values({"frequency": 1, "created_at": now, "updated_at": now, **values})
            )
            row = conn.execute(
                select(tables.products).where(tables.products.c.upc_code == values["upc_code"])
            ).mappings().one()
        return Product.from_row(row)

    def touch_product(self, upc_code: str, values: dict[str, Any]) -> Product:
        """Refresh display fields and count one more sighting."""
        with self.engine.begin() as conn:
            conn.execute(
                update(tables.products)
                .where(tables.products.c.upc_code == upc_code)
                .values(
                    frequency=tables.products.c.frequency + 1,
                    updated_at=self._clock(),
                    **values,
                )
            )
            row = conn.execute(
                select(tables.products).where(tables.products.c.upc_code == upc_code)
            ).mappings().one()
        return Product.from_row(row)

    # Deals

    def get_deal(self, deal_id: int) -> Deal | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tables.deals).where(tables.deals.c.deal_id == deal_id)
            ).mappings().first()
        return Deal.from_row(row) if row else None

    def create_deal(self, values: dict[str, Any]) -> Deal:
        now = self._clock()
        with self.engine.begin() as conn:
            conn.execute(
                insert(tables.deals).values({"first_seen_at": now, "last_updated_at": now, **values})
            )
            row = conn.execute(
                select(tables.deals).where(tables.deals.c.deal_id == values["deal_id"])
            ).mappings().one()
        return Deal.from_row(row)

    def update_deal(self, deal_id: int, values: dict[str, Any]) -> Deal:
        with self.engine.begin() as conn:
            conn.execute(
                update(tables.deals)
                .where(tables.deals.c.deal_id == deal_id)
                .values({"last_updated_at": self._clock(), **values})
            )
            row = conn.execute(
                select(tables.deals).where(tables.deals.c.deal_id == deal_id)
            ).mappings().one()
        return Deal.from_row(row)

    def supersede_deals(self, product_id: int, store_id: int, keep_deal_ids: Iterable[int]) -> int:
        """Clear the latest flag on the product's other deals at this store."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(tables.deals)
                .where(
                    tables.deals.c.product_id == product_id,
                    tables.deals.c.store_id == store_id,
                    tables.deals.c.deal_id.notin_(list(keep_deal_ids)),
                    tables.deals.c.is_latest.is_(True),
                )
                .values(is_latest=False, last_updated_at=self._clock())
            )
            return result.rowcount

    def active_deals(self) -> list[Deal]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(tables.deals).where(tables.deals.c.is_active.is_(True)).order_by(tables.deals.c.id)
            ).mappings().all()
        return [Deal.from_row(row) for row in rows]

    def deactivate_deal(self, deal_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                update(tables.deals)
                .where(tables.deals.c.deal_id == deal_id)
                .values(is_active=False, last_updated_at=self._clock())
            )

    def has_active_deals(self, store_id: int) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(tables.deals)
                .where(tables.deals.c.store_id == store_id, tables.deals.c.is_active.is_(True))
            ).scalar_one()
        return count > 0

    def get_deal_view(self, deal_id: int) -> DealView | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _deal_view_select().where(tables.deals.c.deal_id == deal_id)
            ).mappings().first()
        return _deal_view(row) if row else None

    def active_deal_views(self, store_id: int) -> list[DealView]:
        """Active deals for a store, newest first."""
        query = (
            _deal_view_select()
            .where(tables.deals.c.store_id == store_id, tables.deals.c.is_active.is_(True))
            .order_by(tables.deals.c.first_seen_at.desc(), tables.deals.c.id.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [_deal_view(row) for row in rows]

    # Recipients

    def get_recipient(self, telegram_id: int) -> Recipient | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tables.recipients).where(tables.recipients.c.telegram_id == telegram_id)
            ).mappings().first()
            if row is None:
                return None
            categories = self._categories(conn, [telegram_id])
        return _recipient(row, categories)

    def list_recipients(self, *, enabled_only: bool = True) -> list[Recipient]:
        query = select(tables.recipients).order_by(tables.recipients.c.telegram_id)
        if enabled_only:
            query = query.where(tables.recipients.c.notifications_enabled.is_(True))
        return self._load_recipients(query)

    def recipients_for_store(self, store_id: int) -> list[Recipient]:
        query = (
            select(tables.recipients)
            .where(
                tables.recipients.c.store_id == store_id,
                tables.recipients.c.notifications_enabled.is_(True),
            )
            .order_by(tables.recipients.c.telegram_id)
        )
        return self._load_recipients(query)

    def subscribed_store_ids(self) -> list[int]:
        """Distinct locations of recipients with notifications enabled."""
        query = text(
            """
            SELECT DISTINCT store_id
            FROM recipients
            WHERE notifications_enabled = TRUE AND store_id IS NOT NULL
            ORDER BY store_id
            """
        )
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(query)]

    def upsert_recipient(
        self,
        telegram_id: int,
        *,
        store_id: int | None = None,
        notifications_enabled: bool = True,
        username: str | None = None,
        first_name: str | None = None,
    ) -> Recipient:
        now = self._clock()
        values = {
            "store_id": store_id,
            "notifications_enabled": notifications_enabled,
            "username": username,
            "first_name": first_name,
            "last_active_at": now,
        }
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(tables.recipients.c.id).where(tables.recipients.c.telegram_id == telegram_id)
            ).first()
            if exists:
                conn.execute(
                    update(tables.recipients)
                    .where(tables.recipients.c.telegram_id == telegram_id)
                    .values(**values)
                )
            else:
                conn.execute(
                    insert(tables.recipients).values(telegram_id=telegram_id, created_at=now, **values)
                )
        recipient = self.get_recipient(telegram_id)
        if recipient is None:
            raise RuntimeError(f"Recipient {telegram_id} missing after upsert")
        return recipient

    def set_categories(self, telegram_id: int, category_ids: Iterable[int] | None) -> None:
        """Replace a recipient's category filter; None or empty stores "all categories"."""
        selected = set(category_ids or ())
        unknown = selected - {category.id for category in load_categories()}
        if unknown:
            raise ValueError(f"Unknown category ids: {sorted(unknown)}")
        with self.engine.begin() as conn:
            conn.execute(
                tables.recipient_categories.delete().where(
                    tables.recipient_categories.c.recipient_id == telegram_id
                )
            )
            if selected:
                conn.execute(
                    insert(tables.recipient_categories),
                    [{"recipient_id": telegram_id, "category_id": category_id} for category_id in sorted(selected)],
                )

    # Per-deal preferences

    def set_deal_preference(
        self,
        telegram_id: int,
        deal_id: int,
        *,
        favorite: bool | None = None,
        hidden: bool | None = None,
        in_cart: bool | None = None,
    ) -> None:
        changes = {
            key: value
            for key, value in (("is_favorite", favorite), ("is_hidden", hidden), ("in_cart", in_cart))
            if value is not None
        }
        key = (
            tables.deal_preferences.c.recipient_id == telegram_id,
            tables.deal_preferences.c.deal_id == deal_id,
        )
        with self.engine.begin() as conn:
            exists = conn.execute(select(tables.deal_preferences.c.deal_id).where(*key)).first()
            if exists:
                conn.execute(
                    update(tables.deal_preferences).where(*key).values(updated_at=self._clock(), **changes)
                )
            else:
                conn.execute(
                    insert(tables.deal_preferences).values(
                        {
                            "recipient_id": telegram_id,
                            "deal_id": deal_id,
                            "is_favorite": False,
                            "is_hidden": False,
                            "in_cart": False,
                            "updated_at": self._clock(),
                            **changes,
                        }
                    )
                )

    def hidden_deal_ids(self, telegram_id: int) -> set[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(tables.deal_preferences.c.deal_id).where(
                    tables.deal_preferences.c.recipient_id == telegram_id,
                    tables.deal_preferences.c.is_hidden.is_(True),
                )
            )
            return {row[0] for row in rows}

    def recipients_hiding(self, deal_id: int) -> set[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(tables.deal_preferences.c.recipient_id).where(
                    tables.deal_preferences.c.deal_id == deal_id,
                    tables.deal_preferences.c.is_hidden.is_(True),
                )
            )
            return {row[0] for row in rows}

    def favorite_recipients(self, deal_id: int) -> list[int]:
        """Recipients who favorited a deal, still want notifications and have not hidden it."""
        query = text(
            """
            SELECT p.recipient_id
            FROM deal_preferences p
            JOIN recipients r ON r.telegram_id = p.recipient_id
            WHERE p.deal_id = :deal_id
              AND p.is_favorite = TRUE
              AND p.is_hidden = FALSE
              AND r.notifications_enabled = TRUE
            ORDER BY p.recipient_id
            """
        )
        with self.engine.connect() as conn:
            return [row[0] for row in conn.execute(query, {"deal_id": deal_id})]

    # Notification records

    def log_notification(self, recipient_id: int, deal_id: int, *, kind: str, success: bool) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(tables.notification_log).values(
                    recipient_id=recipient_id,
                    deal_id=deal_id,
                    kind=kind,
                    sent_at=self._clock(),
                    was_successful=success,
                )
            )

    def notification_history(self, recipient_id: int) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(tables.notification_log)
                .where(tables.notification_log.c.recipient_id == recipient_id)
                .order_by(tables.notification_log.c.id)
            ).mappings().all()
        return [dict(row) for row in rows]

    def digest_sent_at(self, telegram_id: int) -> dict[int, datetime]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(tables.digest_sent.c.deal_id, tables.digest_sent.c.sent_at).where(
                    tables.digest_sent.c.recipient_id == telegram_id
                )
            )
            return {deal_id: sent_at for deal_id, sent_at in rows}

    def was_digest_sent(self, telegram_id: int, deal_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(tables.digest_sent.c.deal_id).where(
                    tables.digest_sent.c.recipient_id == telegram_id,
                    tables.digest_sent.c.deal_id == deal_id,
                )
            ).first()
        return row is not None

    def mark_digest_sent(self, telegram_id: int, deal_id: int) -> None:
        statement = text(
            """
            INSERT INTO digest_sent (recipient_id, deal_id, sent_at)
            VALUES (:recipient_id, :deal_id, :sent_at)
            ON CONFLICT (recipient_id, deal_id) DO NOTHING
            """
        ).bindparams(bindparam("sent_at", type_=DateTime()))
        with self.engine.begin() as conn:
            conn.execute(
                statement,
                {"recipient_id": telegram_id, "deal_id": deal_id, "sent_at": self._clock()},
            )

    # Helpers

    def _load_recipients(self, query) -> list[Recipient]:
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
            categories = self._categories(conn, [row["telegram_id"] for row in rows])
        return [_recipient(row, categories) for row in rows]

    @staticmethod
    def _categories(conn, telegram_ids: list[int]) -> dict[int, set[int]]:
        grouped: dict[int, set[int]] = defaultdict(set)
        if not telegram_ids:
            return grouped
        rows = conn.execute(
            select(tables.recipient_categories).where(
                tables.recipient_categories.c.recipient_id.in_(telegram_ids)
            )
        )
        for recipient_id, category_id in rows:
            grouped[recipient_id].add(category_id)
        return grouped


def _recipient(row, categories: dict[int, set[int]]) -> Recipient:
    return Recipient(
        telegram_id=row["telegram_id"],
        store_id=row["store_id"],
        notifications_enabled=row["notifications_enabled"],
        category_ids=frozenset(categories.get(row["telegram_id"], ())),
    )
