"""Celery configuration for scheduled jobs."""

from __future__ import annotations

import asyncio
import os

from celery import Celery
from celery.schedules import crontab

from dealbot.utils.dates import timezone_name
from dealbot.utils.log import configure_logging

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

DEFAULT_SCHEDULE = "0 7 * * *"


def parse_schedule(expression: str) -> crontab:
    """Turn a five-field cron expression into a Celery crontab."""
    fields = expression.split()
    if len(fields) != 5:
        raise ValueError(f"Expected five cron fields, got {expression!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


celery_app = Celery("dealbot", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()
celery_app.conf.worker_concurrency = 1
celery_app.conf.beat_schedule = {
    "deal-cycle": {
        "task": "dealbot.jobs.cycle.run_cycle",
        "schedule": parse_schedule(os.environ.get("CYCLE_SCHEDULE", DEFAULT_SCHEDULE)),
        "kwargs": {"trigger": "scheduled"},
    },
}


@celery_app.task(name="dealbot.jobs.cycle.run_cycle")
def run_cycle_task(trigger: str = "scheduled", store_id: int | None = None) -> dict:  # pragma: no cover - executed by worker
    from dealbot.jobs.cycle import run_cycle

    configure_logging()
    return asyncio.run(run_cycle(trigger, store_id)).summary()
