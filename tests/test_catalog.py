import time
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import httpx
import pytest
import respx
from pydantic import ValidationError

from dealbot.ingest import category_by_id, load_stores
from dealbot.ingest.catalog import CatalogClient, FeedError
from dealbot.ingest.models import RawDeal
from dealbot.utils.metrics import Metrics
from dealbot.utils.rate_limit import RateLimiter
from dealbot.utils.retry import retry_async

from conftest import feed_item

FIXTURES = Path(__file__).parent / "fixtures" / "http"
BASE_URL = "https://catalog.test"
LIST_URL = f"{BASE_URL}/api/deal/list"


def load_fixture(path: str) -> str:
    return (FIXTURES / path).read_text()


def make_client(session, **kwargs):
    return CatalogClient(
        base_url=BASE_URL,
        cookie="session=abc",
        session=session,
        rate_limiter=RateLimiter(rate=0),
        retries=1,
        **kwargs,
    )


def paged_responses(request):
    page = request.url.params["page"]
    return httpx.Response(200, text=load_fixture(f"catalog/store25_page{page}.json"))


@pytest.mark.asyncio
async def test_fetch_all_walks_pages_and_rejects_invalid_items():
    metrics = Metrics()
    async with respx.mock(assert_all_called=True) as router:
        route = router.get(LIST_URL).mock(side_effect=paged_responses)
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            client = make_client(session, metrics=metrics, page_size=50)
            deals = await client.fetch_all(25)

    assert [deal.deal_id for deal in deals] == [500, 501, 503]
    assert route.call_count == 2
    first = route.calls[0].request
    assert first.url.params["storeId"] == "25"
    assert first.url.params["pageSize"] == "50"
    assert first.headers["Cookie"] == "session=abc"
    assert metrics.get("feed.rejected") == 1
    assert metrics.get("feed.records") == 3


@pytest.mark.asyncio
async def test_fetch_page_parses_typed_fields():
    async with respx.mock() as router:
        router.get(LIST_URL).mock(side_effect=paged_responses)
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            page = await make_client(session).fetch_page(25, 1)

    assert page.total_pages == 2
    assert page.rejected == 1
    oat, jacket = page.deals
    assert oat.current_price == Decimal("3.99")
    assert oat.is_latest is True
    assert oat.category_id == 4
    # Local Edmonton time (UTC-6 in March after DST) stored as naive UTC.
    assert oat.end_time == datetime(2026, 3, 16, 5, 59, 59)
    assert jacket.current_price is None
    assert jacket.source_price is None
    assert jacket.end_time is None
    assert jacket.is_latest is False
    assert oat.snapshot()["hack_card"] == ""


@pytest.mark.asyncio
async def test_error_envelope_is_feed_error():
    async with respx.mock() as router:
        router.get(LIST_URL).mock(return_value=httpx.Response(200, text=load_fixture("catalog/error.json")))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            with pytest.raises(FeedError, match="store not found"):
                await make_client(session).fetch_page(99)


@pytest.mark.asyncio
async def test_non_200_is_feed_error():
    metrics = Metrics()
    async with respx.mock() as router:
        router.get(LIST_URL).mock(return_value=httpx.Response(503, text="unavailable"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            with pytest.raises(FeedError, match="HTTP 503"):
                await make_client(session, metrics=metrics).fetch_page(25)
    assert metrics.get("feed.errors") == 1


@pytest.mark.asyncio
async def test_transport_failure_is_feed_error():
    async with respx.mock() as router:
        router.get(LIST_URL).mock(side_effect=httpx.ConnectError("boom"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            with pytest.raises(FeedError) as excinfo:
                await make_client(session).fetch_page(25)
    assert excinfo.value.store_id == 25
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_fetch_all_respects_page_cap():
    async with respx.mock() as router:
        route = router.get(LIST_URL).mock(side_effect=paged_responses)
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            deals = await make_client(session, max_pages=1).fetch_all(25)
    assert route.call_count == 1
    assert [deal.deal_id for deal in deals] == [500, 501]


def test_negative_or_garbage_prices_are_rejected():
    with pytest.raises(ValidationError):
        RawDeal.model_validate(feed_item(cur_price="-1.00"))
    with pytest.raises(ValidationError):
        RawDeal.model_validate(feed_item(source_price="free"))


def test_reference_data_loads():
    assert [store.name for store in load_stores()][0] == "Beacon Hill"
    assert category_by_id(6).label == "📦 Non-Food"
    assert category_by_id(99) is None


@pytest.mark.asyncio
async def test_retry_recovers_from_transport_failure():
    async with respx.mock() as router:
        route = router.get(LIST_URL).mock(
            side_effect=[httpx.ConnectError("reset"), httpx.Response(200, text=load_fixture("catalog/store25_page2.json"))]
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(router.handler)) as session:
            response = await retry_async(session.get, attempts=2, base_delay=0)(LIST_URL)

    assert response.status_code == 200
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_retry_gives_up_after_last_attempt():
    calls = []

    async def always_fails():
        calls.append(1)
        raise httpx.ReadTimeout("slow")

    with pytest.raises(httpx.ReadTimeout):
        await retry_async(always_fails, attempts=3, base_delay=0)()
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_rate_limiter_spaces_requests_per_host():
    limiter = RateLimiter(rate=20)
    started = time.monotonic()

    await limiter.wait_for_host("catalog.test")
    await limiter.wait_for_host("other.test")
    first_calls = time.monotonic() - started
    await limiter.wait_for_host("catalog.test")

    assert first_calls < 0.05
    assert time.monotonic() - started >= 0.05
    assert RateLimiter(rate=0).interval == 0.0
