"""Unit tests for GoJek response parsers and request shaping."""
import json
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from src.delivery_collector.exceptions import MalformedResponseError, MissingDataError
from src.delivery_collector.platforms.gojek import (
    build_msearch_body,
    monthly_indices,
    parse_ads,
    parse_cancel_reasons,
    parse_customers,
    parse_first_bucket_value,
    parse_incoming_orders,
    parse_order_status,
    parse_order_timings,
    parse_rating,
    parse_transactions,
    payouts_for_day,
)
from src.delivery_collector.scheduling import gojek_window
from src.delivery_collector.schemas.stats import GojekDailyStats
from src.delivery_collector.store import StatStore


JAKARTA = ZoneInfo("Asia/Jakarta")
WINDOW = gojek_window(date(2024, 9, 10), JAKARTA)


def hits(total):
    return {"hits": {"total": total}, "aggregations": {"2": {"buckets": [{}]}}}


def test_parse_transactions():
    payload = {
        "responses": [
            {
                "hits": {"total": {"value": 12, "relation": "eq"}},
                "aggregations": {"2": {"buckets": [{"3": {"value": 1250000.0}}]}},
            }
        ]
    }

    stats = parse_transactions(payload)

    assert stats.sales == 1250000.0
    assert stats.orders == 12


def test_parse_transactions_without_buckets_is_missing():
    payload = {"responses": [{"hits": {"total": 0}, "aggregations": {"2": {"buckets": []}}}]}

    with pytest.raises(MissingDataError):
        parse_transactions(payload)


def test_parse_transactions_unexpected_shape_is_malformed():
    with pytest.raises(MalformedResponseError):
        parse_transactions({"unexpected": True})


def test_parse_rating_takes_last_hourly_value_and_star_counts():
    payload = {
        "responses": [
            {
                "aggregations": {
                    "2": {
                        "buckets": [
                            {"1": {"value": 4.71}},
                            {"1": {"value": 4.756}},
                            {"1": {"value": None}},
                        ]
                    }
                }
            },
            {"aggregations": {"2": {"buckets": []}}},
            {
                "aggregations": {
                    "2": {
                        "buckets": [
                            {
                                "1": {"value": 40},
                                "3": {"value": 8},
                                "4": {"value": 3},
                                "5": {"value": 1},
                                "6": {"value": 2},
                            }
                        ]
                    }
                }
            },
        ]
    }

    stats = parse_rating(payload)

    assert stats.rating == 4.76
    assert stats.five_star_ratings == 40
    assert stats.four_star_ratings == 8
    assert stats.three_star_ratings == 3
    assert stats.two_star_ratings == 1
    assert stats.one_star_ratings == 2


def test_parse_rating_without_datapoints_is_missing():
    empty = {"aggregations": {"2": {"buckets": []}}}

    with pytest.raises(MissingDataError):
        parse_rating({"responses": [empty, empty, empty]})


def test_parse_order_timings_averages_non_null_buckets():
    payload = {
        "responses": [
            {"aggregations": {"2": {"buckets": [{"1": {"value": 60}}, {"1": {"value": None}}, {"1": {"value": 120}}]}}},
            {"aggregations": {"2": {"buckets": [{"3": {"value": 600}}]}}},
            {"aggregations": {"2": {"buckets": [{"3": {"value": None}}]}}},
        ]
    }

    stats = parse_order_timings(payload)

    assert stats.accepting_time == 90
    assert stats.preparation_time == 600
    assert stats.delivery_time is None
    assert "delivery_time" not in stats.present()


def test_parse_order_status():
    payload = {"responses": [hits(10), hits(9), hits(8), hits(8), hits(7)]}

    stats = parse_order_status(payload)

    assert stats.lost_orders == 3
    assert stats.realized_orders_percentage == 70.0
    assert stats.accepted_orders == 9
    assert stats.marked_ready == 8


def test_parse_order_status_zero_orders_is_missing():
    payload = {"responses": [hits(0)] * 5}

    with pytest.raises(MissingDataError):
        parse_order_status(payload)


def test_parse_incoming_orders():
    stats = parse_incoming_orders({"responses": [hits({"value": 15})]})

    assert stats.incoming_orders == 15


def test_parse_cancel_reasons_maps_known_groups():
    payload = {
        "responses": [
            {
                "aggregations": {
                    "2": {
                        "buckets": [
                            {"key": "Out of Stock", "doc_count": 2},
                            {"key": "High Demand", "doc_count": 1},
                            {"key": "Driver not found", "doc_count": 4},
                        ]
                    }
                }
            }
        ]
    }

    stats = parse_cancel_reasons(payload)

    assert stats.cancelled_orders == 7
    assert stats.out_of_stock == 2
    assert stats.store_is_busy == 1
    assert stats.store_is_closed == 0
    assert stats.acceptance_timeout == 0


def test_parse_cancel_reasons_empty_is_zero_not_missing():
    stats = parse_cancel_reasons({"responses": [{"aggregations": {"2": {"buckets": []}}}]})

    assert stats.cancelled_orders == 0


def test_parse_ads_picks_buckets_inside_window():
    inside = WINDOW.start_ms + 1000
    outside = WINDOW.start_ms - 86400000
    sales = {
        "responses": [
            {},
            {},
            {"aggregations": {"2": {"buckets": [
                {"key": outside, "1": {"value": 999}},
                {"key": inside, "1": {"value": 150000}},
            ]}}},
        ]
    }
    cost = {"responses": [{"aggregations": {"2": {"buckets": [{"key": inside, "1": {"value": 20000}}]}}}]}

    stats = parse_ads(sales, cost, WINDOW)

    assert stats.ads_sales == 150000
    assert stats.ads_spend == 20000


def test_parse_ads_without_window_buckets_is_missing():
    with pytest.raises(MissingDataError):
        parse_ads({"responses": []}, {"responses": []}, WINDOW)


def test_parse_customers_sums_rows_in_window():
    payload = {
        "results": {
            "A": {
                "frames": [
                    {
                        "data": {
                            "values": [
                                [WINDOW.start_ms - 86400000, WINDOW.start_ms],
                                [9, 3],
                                [9, 5],
                                [9, 1],
                            ]
                        }
                    }
                ]
            }
        }
    }

    stats = parse_customers(payload, WINDOW)

    assert (stats.new_client, stats.active_client, stats.returned_client) == (3, 5, 1)


def test_parse_customers_without_frames_is_missing():
    with pytest.raises(MissingDataError):
        parse_customers({"results": {"A": {"frames": []}}}, WINDOW)


def test_payouts_for_day_sums_paid_cents():
    payouts = [
        {"status": "paid", "paid_at": "2024-09-10T08:00:00+07:00", "net_amount": 1500000},
        {"status": "paid", "paid_at": "2024-09-10T20:00:00+07:00", "net_amount": 50},
        {"status": "pending", "paid_at": "2024-09-10T09:00:00+07:00", "net_amount": 999},
        {"status": "paid", "paid_at": "2024-09-09T09:00:00+07:00", "net_amount": 777},
    ]

    assert payouts_for_day(payouts, date(2024, 9, 10)) == 15000.5


def test_monthly_indices_cover_previous_day_month():
    first_of_month = gojek_window(date(2024, 9, 1), JAKARTA)

    assert monthly_indices("orders_", first_of_month) == ["orders_2024-08", "orders_2024-09"]
    assert monthly_indices("orders_", WINDOW) == ["orders_2024-09"]


def test_msearch_body_is_ndjson_pairs():
    body = build_msearch_body(["orders_2024-09"], [{"size": 0}, {"size": 1}])

    lines = body.splitlines()
    assert body.endswith("\n")
    assert len(lines) == 4
    assert json.loads(lines[0])["index"] == ["orders_2024-09"]
    assert json.loads(lines[1]) == {"size": 0}
    assert json.loads(lines[3]) == {"size": 1}


def test_window_boundaries_are_jakarta_midnight():
    assert WINDOW.start_ms == int(datetime(2024, 9, 10, tzinfo=JAKARTA).timestamp() * 1000)


def test_transactions_without_sales_metric_keep_stored_sales(tmp_path):
    store = StatStore(tmp_path / "stats.db")
    day = date(2024, 9, 10)
    store.merge("resto", day, GojekDailyStats(sales=50, orders=2))
    payload = {"responses": [{"hits": {"total": 3}, "aggregations": {"2": {"buckets": [{}]}}}]}

    fragment = parse_transactions(payload)
    record = store.merge("resto", day, fragment)

    assert fragment.present() == {"orders": 3}
    assert record.gojek.sales == 50
    assert record.gojek.orders == 3
    assert record.total_sales == 50


def test_rating_without_star_buckets_leaves_counts_absent():
    rated = {"aggregations": {"2": {"buckets": [{"1": {"value": 4.8}}]}}}
    empty = {"aggregations": {"2": {"buckets": []}}}

    stats = parse_rating({"responses": [rated, empty, empty]})

    assert stats.present() == {"rating": 4.8}


def test_first_bucket_value_prefers_non_zero_and_needs_a_datapoint():
    payload = {
        "responses": [
            {"aggregations": {"2": {"buckets": [{"1": {"value": 0}}, {"1": {"value": 12.345}}]}}}
        ]
    }
    assert parse_first_bucket_value(payload, "potential_lost").potential_lost == 12.35

    zero = {"responses": [{"aggregations": {"2": {"buckets": [{"1": {"value": 0}}]}}}]}
    assert parse_first_bucket_value(zero, "potential_lost").potential_lost == 0

    empty = {"responses": [{"aggregations": {"2": {"buckets": [{"1": {"value": None}}]}}}]}
    with pytest.raises(MissingDataError):
        parse_first_bucket_value(empty, "driver_waiting")
