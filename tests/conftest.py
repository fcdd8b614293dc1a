from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from dealbot.db.store import DealStore
from dealbot.db.tables import metadata
from dealbot.ingest.models import RawDeal
from dealbot.ingest.sync import DealSynchronizer
from dealbot.notify.dispatch import Dispatcher
from dealbot.utils.channel import ChannelError

# 11:00 in Edmonton.
NOW = datetime(2026, 3, 10, 17, 0)
STORE_ID = 25


class FakeChannel:
    def __init__(self):
        self.sent = []
        self.failing: set[int] = set()

    async def send(self, message):
        if message.recipient_id in self.failing:
            raise ChannelError(f"sendMessage to {message.recipient_id} rejected (403): blocked")
        self.sent.append(message)

    async def close(self):
        return None

    def texts_for(self, recipient_id):
        return [message.text for message in self.sent if message.recipient_id == recipient_id]


class Sleeper:
    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def feed_item(**overrides):
    item = {
        "id": 500,
        "brand": "Acme",
        "name": "Oat Milk",
        "spec": "1L",
        "itm_upc_code": "UPC1",
        "cur_price": "3.99",
        "source_price": "5.99",
        "discount_price": "2.00",
        "discount_type": 1,
        "fk_goods_type": 4,
        "goods_img": "https://img.example.com/oat.jpg",
        "create_time": "2026-03-09 08:00:00",
        "is_latest": 1,
        "frequency": 1,
        "likesCount": 3,
        "forwardsCount": 0,
        "commentsCount": 1,
        "hack_card": "",
        "online": 1,
        "fk_store": STORE_ID,
    }
    item.update(overrides)
    return item


def raw_deal(**overrides) -> RawDeal:
    return RawDeal.model_validate(feed_item(**overrides))


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def store(engine):
    return DealStore(engine, clock=lambda: NOW)


@pytest.fixture()
def yesterday_store(engine):
    return DealStore(engine, clock=lambda: NOW - timedelta(days=1))


@pytest.fixture()
def synchronizer(store):
    return DealSynchronizer(store, clock=lambda: NOW)


@pytest.fixture()
def channel():
    return FakeChannel()


@pytest.fixture()
def sleeper():
    return Sleeper()


@pytest.fixture()
def dispatcher(store, channel, sleeper):
    return Dispatcher(store, channel, sleep=sleeper, clock=lambda: NOW)


@pytest.fixture()
def recipient(store):
    return store.upsert_recipient(1001, store_id=STORE_ID)
