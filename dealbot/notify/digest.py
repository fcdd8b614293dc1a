"""Paginated daily digest driven by a client-held offset."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from dealbot.db.store import DealStore
from dealbot.logic.targeting import eligible_deals
from dealbot.messages.render import digest_end, digest_header, digest_more
from dealbot.notify.dispatch import Dispatcher, Sleep
from dealbot.utils.cursor import encode_cursor
from dealbot.utils.dates import local_day_start, utcnow
from dealbot.utils.metrics import Metrics

logger = logging.getLogger(__name__)

DIGEST_SEND_DELAY = 0.3


@dataclass(slots=True)
class DigestPage:
    recipient_id: int
    offset: int
    status: str
    sent: int = 0
    failed: int = 0
    next_offset: int | None = None
    cursor: str | None = None


class DigestPaginator:
    def __init__(
        self,
        store: DealStore,
        dispatcher: Dispatcher,
        *,
        page_size: int | None = None,
        sleep: Sleep = asyncio.sleep,
        delay: float = DIGEST_SEND_DELAY,
        metrics: Metrics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.page_size = page_size or int(os.environ.get("DIGEST_PAGE_SIZE", "10"))
        self.delay = delay
        self.metrics = metrics or Metrics()
        self._sleep = sleep
        self._clock = clock

    async def send_page(self, recipient_id: int, offset: int = 0) -> DigestPage:
        """Send one page of the recipient's digest starting at ``offset``.

        The list is the recipient's eligible deals minus anything delivered
        before today (local time). Deals delivered earlier today keep their
        position so offsets handed out in continuation tokens stay valid, but
        they are never sent twice.
        """
        if offset < 0:
            raise ValueError("offset must be non-negative")
        recipient = self.store.get_recipient(recipient_id)
        if recipient is None or not recipient.notifications_enabled:
            return DigestPage(recipient_id, offset, status="disabled")

        day_start = local_day_start(self._clock())
        sent_at = self.store.digest_sent_at(recipient_id)
        deals = [
            view
            for view in eligible_deals(self.store, recipient)
            if view.deal_id not in sent_at or sent_at[view.deal_id] >= day_start
        ]
        unsent = [view for view in deals if view.deal_id not in sent_at]
        page = deals[offset : offset + self.page_size]

        if offset == 0 and not unsent:
            return DigestPage(recipient_id, offset, status="empty")
        if not page:
            await self.dispatcher.send_notice(digest_end(recipient_id))
            return DigestPage(recipient_id, offset, status="end")

        outcome = DigestPage(recipient_id, offset, status="sent")
        pending = False
        if offset == 0:
            await self.dispatcher.send_notice(digest_header(recipient_id, len(unsent)))
            pending = True
        for view in page:
            if view.deal_id in sent_at:
                continue
            if pending:
                await self._sleep(self.delay)
            pending = True
            if not await self.dispatcher.notify_one(recipient_id, view, kind="digest"):
                outcome.failed += 1
                continue
            outcome.sent += 1
            try:
                self.store.mark_digest_sent(recipient_id, view.deal_id)
            except SQLAlchemyError:
                logger.exception("Could not mark deal %s as sent to %s", view.deal_id, recipient_id)

        next_offset = offset + self.page_size
        has_more = any(view.deal_id not in sent_at for view in deals[next_offset:])
        if len(page) == self.page_size and has_more:
            outcome.next_offset = next_offset
            outcome.cursor = encode_cursor(next_offset)
            await self.dispatcher.send_notice(
                digest_more(recipient_id, offset + 1, offset + len(page), outcome.cursor)
            )

        self.metrics.increment("digest.pages")
        self.metrics.increment("digest.sent", outcome.sent)
        logger.info(
            "Digest page at %s for %s: %s sent, %s failed", offset, recipient_id, outcome.sent, outcome.failed
        )
        return outcome
