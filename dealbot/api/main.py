"""FastAPI application for manual cycles and digest continuation."""

from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Any, AsyncIterator, Callable

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine

from dealbot.db.session import create_engine_from_env
from dealbot.db.store import DealStore
from dealbot.jobs.celery_app import run_cycle_task
from dealbot.notify.digest import DigestPaginator
from dealbot.notify.dispatch import Dispatcher
from dealbot.utils.channel import NotificationChannel
from dealbot.utils.cursor import InvalidCursor, decode_cursor
from dealbot.utils.log import configure_logging

logger = logging.getLogger(__name__)

load_dotenv()
configure_logging()

app = FastAPI(title="Dealbot API")


class CycleRequest(BaseModel):
    store_id: int | None = None


class CycleQueued(BaseModel):
    task_id: str
    trigger: str
    store_id: int | None = None


class DigestRequest(BaseModel):
    recipient_id: int
    cursor: str = Field(max_length=64)


class DigestResponse(BaseModel):
    recipient_id: int
    offset: int
    status: str
    sent: int
    failed: int
    next_offset: int | None = None
    cursor: str | None = None


def get_engine() -> Engine:
    return create_engine_from_env()


def get_store(engine: Engine = Depends(get_engine)) -> DealStore:
    return DealStore(engine)


async def get_channel() -> AsyncIterator[NotificationChannel]:
    channel = NotificationChannel()
    try:
        yield channel
    finally:
        await channel.close()


def get_paginator(
    store: DealStore = Depends(get_store),
    channel: NotificationChannel = Depends(get_channel),
) -> DigestPaginator:
    return DigestPaginator(store, Dispatcher(store, channel))


def get_enqueue() -> Callable[..., Any]:
    return run_cycle_task.delay


@app.post("/cycles", response_model=CycleQueued, status_code=202)
async def queue_cycle(payload: CycleRequest, enqueue: Callable[..., Any] = Depends(get_enqueue)) -> CycleQueued:
    # The worker runs one task at a time, so manual and scheduled cycles never overlap.
    result = enqueue(trigger="manual", store_id=payload.store_id)
    logger.info("Queued manual cycle %s for store %s", result.id, payload.store_id)
    return CycleQueued(task_id=str(result.id), trigger="manual", store_id=payload.store_id)


@app.post("/digest/next", response_model=DigestResponse)
async def next_digest_page(
    payload: DigestRequest,
    store: DealStore = Depends(get_store),
    paginator: DigestPaginator = Depends(get_paginator),
) -> DigestResponse:
    try:
        offset = decode_cursor(payload.cursor)
    except InvalidCursor as exc:
        raise HTTPException(status_code=400, detail="Invalid cursor") from exc
    if store.get_recipient(payload.recipient_id) is None:
        raise HTTPException(status_code=404, detail="Unknown recipient")
    page = await paginator.send_page(payload.recipient_id, offset)
    return DigestResponse(**asdict(page))
