"""Outbound messaging channel (Telegram Bot API or log-only)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
CAPTION_LIMIT = 1024

Buttons = list[list[tuple[str, str]]]


class ChannelError(RuntimeError):
    pass


@dataclass(slots=True)
class OutboundMessage:
    recipient_id: int
    text: str
    photo_url: str | None = None
    buttons: Buttons | None = None


class NotificationChannel:
    """Fire-and-forget sender. A failed send raises ChannelError and is never retried here."""

    def __init__(self, *, session: httpx.AsyncClient | None = None) -> None:
        self.provider = os.environ.get("CHANNEL_PROVIDER", "log")
        self.bot_token = os.environ.get("TELEGRAM_BOT_TOKEN")
        if self.provider == "telegram" and not self.bot_token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN is required when CHANNEL_PROVIDER=telegram")
        self.session = session or httpx.AsyncClient(timeout=15.0)

    async def close(self) -> None:
        await self.session.aclose()

    async def send(self, message: OutboundMessage) -> None:
        if self.provider == "telegram":
            await self._send_telegram(message)
        else:
            headline = message.text.splitlines()[0] if message.text else ""
            logger.info("Message (log) → %s: %s", message.recipient_id, headline)

    async def _send_telegram(self, message: OutboundMessage) -> None:
        payload: dict[str, Any] = {"chat_id": message.recipient_id, "parse_mode": "HTML"}
        if message.buttons:
            payload["reply_markup"] = _inline_keyboard(message.buttons)
        # Captions are capped by Telegram; long cards go out as plain messages.
        if message.photo_url and len(message.text) <= CAPTION_LIMIT:
            method = "sendPhoto"
            payload.update(photo=message.photo_url, caption=message.text)
        else:
            method = "sendMessage"
            payload.update(text=message.text, disable_web_page_preview=True)

        url = f"{TELEGRAM_API}/bot{self.bot_token}/{method}"
        try:
            response = await self.session.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise ChannelError(f"{method} to {message.recipient_id} failed: {exc.__class__.__name__}") from exc
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok", False):
            description = body.get("description") or response.reason_phrase
            raise ChannelError(f"{method} to {message.recipient_id} rejected ({response.status_code}): {description}")


def _inline_keyboard(buttons: Buttons) -> dict[str, Any]:
    return {
        "inline_keyboard": [
            [{"text": label, "callback_data": data} for label, data in row] for row in buttons
        ]
    }
