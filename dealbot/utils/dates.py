"""Datetime helpers.

Timestamps are stored as naive UTC; the local timezone only matters when
reading feed values without an offset and when deciding where a day starts.
"""

from __future__ import annotations

import math
import os
from datetime import datetime, timedelta

import pendulum

DEFAULT_TZ = "America/Edmonton"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utcnow() -> datetime:
    return pendulum.now("UTC").naive()


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = pendulum.instance(value, tz=timezone_name())
    return pendulum.instance(value).in_timezone("UTC").naive()


def parse_feed_timestamp(value: str) -> datetime:
    """Parse a catalog timestamp, assuming local time when no offset is given."""
    parsed = pendulum.parse(value, tz=timezone_name())
    if not isinstance(parsed, datetime):
        raise ValueError(f"Not a timestamp: {value!r}")
    return parsed.in_timezone("UTC").naive()


def local_day_start(now: datetime | None = None) -> datetime:
    """Return the start of the current local day as naive UTC."""
    current = pendulum.instance(now or utcnow(), tz="UTC").in_timezone(timezone_name())
    return current.start_of("day").in_timezone("UTC").naive()


def days_until(end: datetime, now: datetime | None = None) -> int:
    remaining = end - (now or utcnow())
    return math.ceil(remaining / timedelta(days=1))


def to_local(value: datetime) -> pendulum.DateTime:
    return pendulum.instance(value, tz="UTC").in_timezone(timezone_name())


def format_date(value: datetime) -> str:
    return to_local(value).strftime("%d-%m-%Y")
