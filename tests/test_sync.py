from datetime import timedelta
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from conftest import NOW, STORE_ID, raw_deal


def test_first_sighting_of_latest_deal_is_new(store, synchronizer):
    result = synchronizer.synchronize([raw_deal(id=500, itm_upc_code="UPC1", is_latest=1)], STORE_ID)

    assert result.deals_created == 1
    assert result.products_created == 1
    assert [deal.deal_id for deal in result.new_deals] == [500]
    deal = store.get_deal(500)
    assert deal.is_active and deal.is_latest
    assert deal.end_time is None


def test_repoll_unchanged_record_is_not_new(store, synchronizer):
    record = raw_deal(id=500, itm_upc_code="UPC1", is_latest=1)
    synchronizer.synchronize([record], STORE_ID)

    result = synchronizer.synchronize([record], STORE_ID)

    assert result.deals_created == 0
    assert result.deals_updated == 1
    assert result.new_deals == []
    assert store.get_product("UPC1").frequency == 2


def test_latest_flag_edge_reports_new_once(store, synchronizer):
    synchronizer.synchronize([raw_deal(id=500, is_latest=0)], STORE_ID)

    flipped = synchronizer.synchronize([raw_deal(id=500, is_latest=1)], STORE_ID)
    again = synchronizer.synchronize([raw_deal(id=500, is_latest=1)], STORE_ID)

    assert [deal.deal_id for deal in flipped.new_deals] == [500]
    assert again.new_deals == []


def test_record_not_marked_latest_is_never_new(synchronizer):
    result = synchronizer.synchronize([raw_deal(id=500, is_latest=0)], STORE_ID)
    assert result.deals_created == 1
    assert result.new_deals == []


def test_born_expired_deal_is_new_and_inactive(store, synchronizer):
    yesterday = (NOW - timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")

    result = synchronizer.synchronize([raw_deal(id=500, end_time=yesterday, is_latest=1)], STORE_ID)

    assert result.deals_expired_now == [500]
    assert [deal.deal_id for deal in result.new_deals] == [500]
    assert store.get_deal(500).is_active is False


def test_update_keeps_stored_prices_when_feed_omits_them(store, synchronizer):
    synchronizer.synchronize([raw_deal(id=500, cur_price="3.99", source_price="5.99")], STORE_ID)

    synchronizer.synchronize([raw_deal(id=500, cur_price="", source_price="", likesCount=9)], STORE_ID)

    deal = store.get_deal(500)
    assert deal.current_price == Decimal("3.99")
    assert deal.source_price == Decimal("5.99")
    assert deal.likes_count == 9


def test_product_display_fields_follow_latest_sighting(store, synchronizer):
    synchronizer.synchronize([raw_deal(id=500, name="Oat Milk")], STORE_ID)
    result = synchronizer.synchronize([raw_deal(id=501, name="Oat Milk Barista")], STORE_ID)

    assert result.products_updated == 1
    product = store.get_product("UPC1")
    assert product.name == "Oat Milk Barista"
    assert product.frequency == 2


def test_new_assertion_supersedes_older_latest_deal(store, synchronizer):
    synchronizer.synchronize([raw_deal(id=500, is_latest=1)], STORE_ID)

    result = synchronizer.synchronize([raw_deal(id=501, is_latest=1)], STORE_ID)

    assert result.deals_superseded == 1
    assert store.get_deal(500).is_latest is False
    assert store.get_deal(501).is_latest is True

    # Re-asserting the old id is a fresh edge.
    back = synchronizer.synchronize([raw_deal(id=500, is_latest=1)], STORE_ID)
    assert [deal.deal_id for deal in back.new_deals] == [500]


def test_two_latest_deals_in_one_page_stay_latest_across_repolls(store, synchronizer):
    page = [raw_deal(id=500, is_latest=1), raw_deal(id=501, is_latest=1)]

    first = synchronizer.synchronize(page, STORE_ID)
    repolls = [synchronizer.synchronize(page, STORE_ID) for _ in range(3)]

    assert [deal.deal_id for deal in first.new_deals] == [500, 501]
    assert first.deals_superseded == 0
    assert [result.new_deals for result in repolls] == [[], [], []]
    assert store.get_deal(500).is_latest is True
    assert store.get_deal(501).is_latest is True


def test_store_error_is_isolated_per_record(store, synchronizer, monkeypatch):
    original = store.create_deal

    def flaky_create(values):
        if values["deal_id"] == 501:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return original(values)

    monkeypatch.setattr(store, "create_deal", flaky_create)

    result = synchronizer.synchronize(
        [raw_deal(id=500), raw_deal(id=501, itm_upc_code="UPC2"), raw_deal(id=502, itm_upc_code="UPC3")],
        STORE_ID,
    )

    assert result.failed == [501]
    assert result.deals_created == 2
    assert [deal.deal_id for deal in result.new_deals] == [500, 502]
    # Only records that succeeded are counted.
    assert result.products_created == 2


def test_expire_stale_deactivates_past_deals(store, synchronizer):
    soon = (NOW + timedelta(hours=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
    later = (NOW + timedelta(days=3)).strftime("%Y-%m-%dT%H:%M:%SZ")
    synchronizer.synchronize(
        [raw_deal(id=500, end_time=soon), raw_deal(id=501, itm_upc_code="UPC2", end_time=later), raw_deal(id=502, itm_upc_code="UPC3")],
        STORE_ID,
    )

    expired = synchronizer.expire_stale(now=NOW + timedelta(hours=2))

    assert expired == 1
    assert store.get_deal(500).is_active is False
    assert store.get_deal(501).is_active is True
    assert store.get_deal(502).is_active is True
    assert synchronizer.expire_stale(now=NOW + timedelta(hours=2)) == 0


def test_reappearing_record_with_future_end_reactivates(store, synchronizer):
    past = (NOW - timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
    future = (NOW + timedelta(days=2)).strftime("%Y-%m-%dT%H:%M:%SZ")
    synchronizer.synchronize([raw_deal(id=500, end_time=past)], STORE_ID)

    synchronizer.synchronize([raw_deal(id=500, end_time=future)], STORE_ID)

    assert store.get_deal(500).is_active is True


def test_raw_payload_is_stored(engine, synchronizer):
    synchronizer.synchronize([raw_deal(id=500)], STORE_ID)
    with engine.connect() as conn:
        raw = conn.execute(text("SELECT raw_data FROM deals WHERE deal_id = 500")).scalar_one()
    assert "itm_upc_code" in raw
