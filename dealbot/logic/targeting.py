"""Recipient/deal eligibility."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Iterable

from dealbot.db.models import DealView, Recipient
from dealbot.db.store import DealStore


@dataclass(slots=True, frozen=True)
class CategoryFilter:
    """A recipient's category preferences.

    The empty set is the one "all categories" sentinel; any other set
    admits only its members.
    """

    category_ids: frozenset[int] = frozenset()

    @classmethod
    def of(cls, category_ids: Iterable[int] | None) -> "CategoryFilter":
        return cls(frozenset(category_ids or ()))

    @property
    def matches_all(self) -> bool:
        return not self.category_ids

    def admits(self, category_id: int | None) -> bool:
        if self.matches_all:
            return True
        return category_id is not None and category_id in self.category_ids


def is_eligible(recipient: Recipient, deal: DealView, hidden: AbstractSet[int]) -> bool:
    if not recipient.notifications_enabled:
        return False
    if recipient.store_id is None or recipient.store_id != deal.store_id:
        return False
    if not CategoryFilter.of(recipient.category_ids).admits(deal.category_id):
        return False
    return deal.deal_id not in hidden


def eligible_recipients(store: DealStore, deal: DealView) -> list[Recipient]:
    """Recipients who should hear about a deal, ordered by identity. Reads only."""
    hiding = store.recipients_hiding(deal.deal_id)
    eligible = []
    for recipient in store.recipients_for_store(deal.store_id):
        hidden = {deal.deal_id} if recipient.telegram_id in hiding else set()
        if is_eligible(recipient, deal, hidden):
            eligible.append(recipient)
    return sorted(eligible, key=lambda recipient: recipient.telegram_id)


def eligible_deals(store: DealStore, recipient: Recipient) -> list[DealView]:
    """Active deals at the recipient's location that pass the same filter, newest first."""
    if not recipient.notifications_enabled or recipient.store_id is None:
        return []
    hidden = store.hidden_deal_ids(recipient.telegram_id)
    return [deal for deal in store.active_deal_views(recipient.store_id) if is_eligible(recipient, deal, hidden)]
