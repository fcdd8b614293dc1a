"""Sequential, jittered delivery of deal notifications."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Sequence

from sqlalchemy.exc import SQLAlchemyError

from dealbot.db.models import Deal, DealView, Recipient
from dealbot.db.store import DealStore
from dealbot.logic.targeting import eligible_recipients
from dealbot.messages.render import deal_message, favorite_back
from dealbot.utils.channel import ChannelError, NotificationChannel, OutboundMessage
from dealbot.utils.dates import utcnow
from dealbot.utils.metrics import Metrics

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Seconds between consecutive sends in a batch.
BATCH_JITTER = (0.5, 1.5)


@dataclass(slots=True)
class BatchResult:
    success: int = 0
    failed: int = 0
    delivered: list[int] = field(default_factory=list)


class Dispatcher:
    def __init__(
        self,
        store: DealStore,
        channel: NotificationChannel,
        *,
        sleep: Sleep = asyncio.sleep,
        jitter: tuple[float, float] = BATCH_JITTER,
        metrics: Metrics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.channel = channel
        self.jitter = jitter
        self.metrics = metrics or Metrics()
        self._sleep = sleep
        self._clock = clock

    async def notify_one(self, recipient_id: int, view: DealView, *, kind: str = "deal") -> bool:
        """Send one deal card and record the outcome. Never raises on channel failure."""
        message = deal_message(recipient_id, view, now=self._clock())
        success = await self.send_notice(message)
        try:
            self.store.log_notification(recipient_id, view.deal_id, kind=kind, success=success)
        except SQLAlchemyError:
            logger.exception("Could not record %s notification of deal %s to %s", kind, view.deal_id, recipient_id)
        return success

    async def notify_batch(
        self, recipients: Sequence[Recipient], view: DealView, *, kind: str = "deal"
    ) -> BatchResult:
        result = BatchResult()
        for index, recipient in enumerate(recipients):
            if index:
                await self.pause()
            if await self.notify_one(recipient.telegram_id, view, kind=kind):
                result.success += 1
                result.delivered.append(recipient.telegram_id)
            else:
                result.failed += 1
        return result

    async def notify_favorite_reappeared(self, deal: Deal) -> BatchResult:
        """Tell everyone who favorited a deal that it is back, once per deal."""
        result = BatchResult()
        if not deal.is_active:
            return result
        view = self.store.get_deal_view(deal.deal_id)
        if view is None:
            logger.warning("Deal %s vanished before favorite notification", deal.deal_id)
            return result
        recipients = self.store.favorite_recipients(deal.deal_id)
        if recipients:
            logger.info("Notifying %s favoriters that deal %s is back", len(recipients), deal.deal_id)

        attempted = False
        for recipient_id in recipients:
            try:
                if self.store.was_digest_sent(recipient_id, deal.deal_id):
                    continue
                if attempted:
                    await self.pause()
                attempted = True
                if await self._send_favorite(recipient_id, view):
                    self.store.mark_digest_sent(recipient_id, deal.deal_id)
                    result.success += 1
                    result.delivered.append(recipient_id)
                else:
                    result.failed += 1
            except SQLAlchemyError:
                logger.exception("Favorite notification of deal %s to %s failed", deal.deal_id, recipient_id)
                result.failed += 1
        return result

    async def alert_new_deal(self, deal: Deal) -> BatchResult:
        """Broadcast a new deal to every eligible recipient not yet told about it."""
        if not deal.is_active:
            return BatchResult()
        view = self.store.get_deal_view(deal.deal_id)
        if view is None:
            return BatchResult()
        recipients = [
            recipient
            for recipient in eligible_recipients(self.store, view)
            if not self.store.was_digest_sent(recipient.telegram_id, deal.deal_id)
        ]
        result = await self.notify_batch(recipients, view, kind="alert")
        for recipient_id in result.delivered:
            try:
                self.store.mark_digest_sent(recipient_id, deal.deal_id)
            except SQLAlchemyError:
                logger.exception("Could not mark deal %s as sent to %s", deal.deal_id, recipient_id)
        return result

    async def send_notice(self, message: OutboundMessage) -> bool:
        try:
            await self.channel.send(message)
        except ChannelError as exc:
            logger.warning("Send to %s failed: %s", message.recipient_id, exc)
            self.metrics.increment("dispatch.failed")
            return False
        self.metrics.increment("dispatch.sent")
        return True

    async def pause(self) -> None:
        await self._sleep(random.uniform(*self.jitter))

    async def _send_favorite(self, recipient_id: int, view: DealView) -> bool:
        if not await self.send_notice(favorite_back(recipient_id)):
            self.store.log_notification(recipient_id, view.deal_id, kind="favorite", success=False)
            return False
        return await self.notify_one(recipient_id, view, kind="favorite")
