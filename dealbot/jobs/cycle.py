"""One synchronization and notification cycle across all subscribed locations."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from dealbot.db.models import Deal
from dealbot.db.session import create_engine_from_env
from dealbot.db.store import DealStore
from dealbot.ingest.catalog import CatalogClient, FeedError
from dealbot.ingest.sync import DealSynchronizer
from dealbot.notify.digest import DigestPaginator
from dealbot.notify.dispatch import Dispatcher, Sleep
from dealbot.utils.channel import NotificationChannel
from dealbot.utils.dates import utcnow
from dealbot.utils.metrics import Metrics

logger = logging.getLogger(__name__)

RECIPIENT_DELAY = 1.5

# Cycles never overlap within a process; the worker runs one task at a time across processes.
_CYCLE_LOCK = threading.Lock()


@dataclass(slots=True)
class CycleReport:
    trigger: str
    started_at: datetime
    status: str = "running"
    finished_at: datetime | None = None
    locations: list[int] = field(default_factory=list)
    records_processed: int = 0
    new_deals: int = 0
    deals_expired: int = 0
    digests_sent: int = 0
    favorite_sends: int = 0
    alert_sends: int = 0
    errors: dict[int, str] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["errors"] = {str(location): message for location, message in self.errors.items()}
        return data


class CycleError(RuntimeError):
    def __init__(self, report: CycleReport, message: str) -> None:
        super().__init__(message)
        self.report = report


def instant_alerts_enabled() -> bool:
    return os.environ.get("INSTANT_ALERTS", "0").lower() in {"1", "true", "yes"}


class CycleRunner:
    def __init__(
        self,
        store: DealStore,
        feed: CatalogClient,
        synchronizer: DealSynchronizer,
        dispatcher: Dispatcher,
        paginator: DigestPaginator,
        *,
        sleep: Sleep = asyncio.sleep,
        recipient_delay: float = RECIPIENT_DELAY,
        instant_alerts: bool | None = None,
        lock: threading.Lock | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.feed = feed
        self.synchronizer = synchronizer
        self.dispatcher = dispatcher
        self.paginator = paginator
        self.recipient_delay = recipient_delay
        self.instant_alerts = instant_alerts_enabled() if instant_alerts is None else instant_alerts
        self._sleep = sleep
        self._lock = lock or _CYCLE_LOCK
        self._clock = clock

    async def run(self, trigger: str = "scheduled", store_id: int | None = None) -> CycleReport:
        if not self._lock.acquire(blocking=False):
            logger.warning("A cycle is already running; skipping %s trigger", trigger)
            now = self._clock()
            return CycleReport(trigger=trigger, started_at=now, finished_at=now, status="skipped")
        try:
            return await self._run(trigger, store_id)
        finally:
            self._lock.release()

    async def _run(self, trigger: str, store_id: int | None) -> CycleReport:
        report = CycleReport(trigger=trigger, started_at=self._clock())
        logger.info("Starting %s cycle%s", trigger, f" for store {store_id}" if store_id is not None else "")
        try:
            locations = self.store.subscribed_store_ids()
            if store_id is not None:
                locations = [location for location in locations if location == store_id]
                if not locations:
                    logger.info("No enabled recipient uses store %s; nothing to refresh", store_id)
            report.locations = locations
            for location in locations:
                await self._sync_location(location, report, targeted=store_id is not None)
            report.deals_expired = self.synchronizer.expire_stale()
            await self._digest_pass(report)
        except Exception as exc:
            report.status = "failed"
            report.finished_at = self._clock()
            logger.critical("Cycle %s failed", trigger, exc_info=True)
            raise CycleError(report, f"{trigger} cycle failed: {exc}") from exc

        report.status = "completed"
        report.finished_at = self._clock()
        logger.info(
            "Cycle %s completed: %s locations, %s records, %s new deals, %s expired, %s digest sends, %s errors",
            trigger,
            len(report.locations),
            report.records_processed,
            report.new_deals,
            report.deals_expired,
            report.digests_sent,
            len(report.errors),
        )
        return report

    async def _sync_location(self, location: int, report: CycleReport, *, targeted: bool) -> None:
        try:
            if targeted and self.store.has_active_deals(location):
                logger.info("Store %s already has active deals; skipping refresh", location)
                return
            raw_deals = await self.feed.fetch_all(location)
            result = await asyncio.get_running_loop().run_in_executor(
                None, self.synchronizer.synchronize, raw_deals, location
            )
        except FeedError as exc:
            logger.warning("Skipping store %s: %s", location, exc)
            report.errors[location] = str(exc)
            return
        except Exception as exc:
            logger.exception("Synchronizing store %s failed", location)
            report.errors[location] = str(exc)
            return

        report.records_processed += result.records_processed
        report.new_deals += len(result.new_deals)
        for deal in result.new_deals:
            try:
                await self._announce(deal, report)
            except Exception as exc:
                logger.exception("Notifications for deal %s at store %s failed", deal.deal_id, location)
                report.errors[location] = str(exc)

    async def _announce(self, deal: Deal, report: CycleReport) -> None:
        favorites = await self.dispatcher.notify_favorite_reappeared(deal)
        report.favorite_sends += favorites.success
        if self.instant_alerts:
            alerts = await self.dispatcher.alert_new_deal(deal)
            report.alert_sends += alerts.success

    async def _digest_pass(self, report: CycleReport) -> None:
        # Every enabled recipient, whichever location the cycle refreshed.
        recipients = self.store.list_recipients(enabled_only=True)
        for index, recipient in enumerate(recipients):
            if index:
                await self._sleep(self.recipient_delay)
            try:
                page = await self.paginator.send_page(recipient.telegram_id, 0)
            except SQLAlchemyError:
                logger.exception("Digest for %s failed", recipient.telegram_id)
                continue
            report.digests_sent += page.sent


async def run_cycle(trigger: str = "scheduled", store_id: int | None = None) -> CycleReport:
    """Build a runner from the environment and run one cycle."""
    load_dotenv()
    engine = create_engine_from_env()
    store = DealStore(engine)
    metrics = Metrics()
    feed = CatalogClient(metrics=metrics)
    channel = NotificationChannel()
    dispatcher = Dispatcher(store, channel, metrics=metrics)
    runner = CycleRunner(
        store,
        feed,
        DealSynchronizer(store, metrics=metrics),
        dispatcher,
        DigestPaginator(store, dispatcher, metrics=metrics),
    )
    try:
        return await runner.run(trigger, store_id)
    finally:
        await feed.close()
        await channel.close()
        engine.dispose()
        logger.debug("Cycle metrics: %s", metrics.snapshot())
