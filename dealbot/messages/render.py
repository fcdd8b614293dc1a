"""Message rendering for the chat channel."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from dealbot.db.models import DealView
from dealbot.ingest import category_by_id
from dealbot.logic.pricing import format_price, percent_off, savings, validity
from dealbot.utils.channel import Buttons, OutboundMessage

TEMPLATE_DIR = Path(__file__).with_name("templates")
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
)

SHOW_MORE_LABEL = "👇 Show More Deals"


def render(name: str, **context: Any) -> str:
    return ENV.get_template(name).render(**context).strip()


def deal_buttons(deal_id: int) -> Buttons:
    return [[("❤️ Favorite", f"favorite:{deal_id}"), ("👁️ Hide", f"hide:{deal_id}")]]


def deal_card(view: DealView, *, now: datetime | None = None) -> str:
    deal = view.deal
    category = category_by_id(view.category_id)
    return render(
        "deal.html",
        title=view.product.title,
        category=category.label if category else None,
        savings=format_price(savings(deal)),
        percent=percent_off(deal.current_price, deal.source_price),
        original=format_price(deal.source_price),
        current=format_price(deal.current_price),
        validity=validity(deal, now),
    )


def deal_message(recipient_id: int, view: DealView, *, now: datetime | None = None) -> OutboundMessage:
    return OutboundMessage(
        recipient_id=recipient_id,
        text=deal_card(view, now=now),
        photo_url=view.product.image_url,
        buttons=deal_buttons(view.deal_id),
    )


def digest_header(recipient_id: int, count: int) -> OutboundMessage:
    return OutboundMessage(recipient_id=recipient_id, text=render("digest_header.html", count=count))


def digest_more(recipient_id: int, first: int, last: int, cursor: str) -> OutboundMessage:
    return OutboundMessage(
        recipient_id=recipient_id,
        text=render("digest_more.html", first=first, last=last),
        buttons=[[(SHOW_MORE_LABEL, cursor)]],
    )


def digest_end(recipient_id: int) -> OutboundMessage:
    return OutboundMessage(recipient_id=recipient_id, text=render("digest_end.html"))


def favorite_back(recipient_id: int) -> OutboundMessage:
    return OutboundMessage(recipient_id=recipient_id, text=render("favorite_back.html"))
