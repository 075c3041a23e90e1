"""Unit tests for the SQLite stat store."""
from datetime import date

import pytest

from src.delivery_collector.schemas.accounts import Platform
from src.delivery_collector.schemas.stats import GojekDailyStats, GrabDailyStats
from src.delivery_collector.store import StatStore, connect


DAY = date(2024, 9, 10)


@pytest.fixture
def store(tmp_path):
    return StatStore(tmp_path / "stats.db")


def test_merge_both_platforms_sums_totals(store):
    """Grab 100/5 and GoJek 50/2 on the same day give 150/7, both intact."""
    store.merge("resto", DAY, GrabDailyStats(sales=100, orders=5))
    record = store.merge("resto", DAY, GojekDailyStats(sales=50, orders=2))

    assert record.total_sales == 150
    assert record.total_orders == 7
    assert record.grab.sales == 100
    assert record.grab.orders == 5
    assert record.gojek.sales == 50
    assert record.gojek.orders == 2


def test_merge_order_does_not_matter(store):
    store.merge("resto", DAY, GojekDailyStats(sales=50, orders=2))
    record = store.merge("resto", DAY, GrabDailyStats(sales=100, orders=5))

    assert record.total_sales == 150
    assert record.total_orders == 7


def test_merge_is_idempotent(store):
    """Re-applying the same fragment leaves the row and synced_at unchanged."""
    fragment = GrabDailyStats(sales=100, orders=5, rating=4.8)

    first = store.merge("resto", DAY, fragment)
    for _ in range(3):
        again = store.merge("resto", DAY, fragment)

    assert again == first

    conn = connect(store.db_path)
    try:
        count = conn.execute("SELECT COUNT(*) FROM daily_stats").fetchone()[0]
    finally:
        conn.close()
    assert count == 1


def test_absent_fields_do_not_overwrite(store):
    """A fragment only touches fields it reports."""
    store.merge("resto", DAY, GrabDailyStats(sales=100, orders=5))
    record = store.merge("resto", DAY, GrabDailyStats(rating=4.5))

    assert record.grab.sales == 100
    assert record.grab.orders == 5
    assert record.grab.rating == 4.5


def test_reported_zero_overwrites(store):
    store.merge("resto", DAY, GrabDailyStats(cancelled_orders=3))
    record = store.merge("resto", DAY, GrabDailyStats(cancelled_orders=0))

    assert record.grab.cancelled_orders == 0


def test_platform_stamp_only_for_collected_platform(store):
    record = store.merge("resto", DAY, GrabDailyStats(sales=10, orders=1))

    assert record.has_platform_data(Platform.GRAB)
    assert not record.has_platform_data(Platform.GOJEK)
    assert record.synced_at is not None


def test_records_for_export_pages_newest_first(store):
    for day in range(1, 6):
        store.merge("resto", date(2024, 9, day), GrabDailyStats(sales=day))
    store.merge("other", DAY, GrabDailyStats(sales=1))

    page_one = store.records_for_export("resto", limit=2)
    page_two = store.records_for_export("resto", limit=2, offset=2)
    rest = store.records_for_export("resto", offset=4)

    assert [r.stat_date.day for r in page_one] == [5, 4]
    assert [r.stat_date.day for r in page_two] == [3, 2]
    assert [r.stat_date.day for r in rest] == [1]


def test_records_between_filters_range(store):
    for day in range(1, 6):
        store.merge("resto", date(2024, 9, day), GojekDailyStats(orders=day))

    records = store.records_between("resto", date(2024, 9, 2), date(2024, 9, 4))

    assert [r.stat_date.day for r in records] == [4, 3, 2]


def test_failed_slices_reports_errors_only(store):
    store.record_metric_state("resto", Platform.GRAB, "sales", DAY, "success")
    store.record_metric_state("resto", Platform.GRAB, "payouts", DAY, "fatal-error", "HTTP 400")
    store.record_metric_state("resto", Platform.GOJEK, "rating", DAY, "missing-data")

    failed = store.failed_slices("resto")

    assert len(failed) == 1
    assert failed[0]["metric"] == "payouts"
    assert failed[0]["details"] == "HTTP 400"


def test_metric_state_upserts_latest_outcome(store):
    store.record_metric_state("resto", Platform.GRAB, "sales", DAY, "transient-error")
    store.record_metric_state("resto", Platform.GRAB, "sales", DAY, "success")

    assert store.failed_slices() == []
