"""GoBiz (GoJek) analytics fetchers.

Most GoBiz dashboards are Grafana panels over Elasticsearch; the collector
replays the panels' ``_msearch`` NDJSON requests. Customers come from a
Grafana postgres ``ds/query`` and payouts from the GoBiz REST API.

Parsers are module-level pure functions so they can be tested against
fixture payloads.
"""
import json
import logging
from datetime import date, timedelta
from typing import Any, ClassVar, Optional

import aiohttp

from ..exceptions import ConfigurationError, MalformedResponseError, MissingDataError
from ..scheduling import DayWindow
from ..schemas.accounts import CredentialBundle, Platform
from ..schemas.stats import GojekDailyStats
from .base import FetchContext, MetricFetcher, dig, safe_float, safe_int


logger = logging.getLogger(__name__)


ANALYTICS_BASE = "https://app.gobiz.com/analytics-backend/api"
ADS_ANALYTICS_BASE = "https://portal.gofoodmerchant.co.id/analytics-backend/api"
GOBIZ_API_BASE = "https://api.gobiz.co.id"

HISTOGRAM_ZONE = "Asia/Jakarta"

CANCEL_REASON_FIELDS = {
    "Out of Stock": "out_of_stock",
    "High Demand": "store_is_busy",
    "Store is Closed": "store_is_closed",
    "Acceptance Time Out": "acceptance_timeout",
}

CUSTOMERS_SQL = (
    "WITH timetable AS (SELECT $__timeBucket(time, '1d', 'Asia/Jakarta') AS time "
    "FROM generate_series($__timeFrom()::timestamptz, $__timeTo()::timestamptz, "
    "INTERVAL '1 day') AS time GROUP BY 1), "
    "user_list AS (SELECT $__timeBucket(date, '1d', 'Asia/Jakarta') AS time, "
    "ad_promo_both_new_user_list || promo_only_new_user_list AS new_user, "
    "ad_promo_both_existing_user_list || promo_only_existing_user_list AS active_user, "
    "ad_promo_both_dormant_user_list || promo_only_dormant_user_list AS returning_user "
    "FROM daily_outlet_metrics WHERE merchant_id IN ('{merchant_id}') AND $__timeFilter(date)), "
    "new_user_list AS (SELECT DISTINCT time, unnest(new_user) AS user FROM user_list), "
    "returning_user_list AS (SELECT DISTINCT time, unnest(returning_user) AS user "
    "FROM user_list EXCEPT SELECT * FROM new_user_list), "
    "active_user_list AS (SELECT DISTINCT time, unnest(active_user) AS user FROM user_list "
    "EXCEPT (SELECT * FROM new_user_list UNION ALL SELECT * FROM returning_user_list)), "
    "new_users AS (SELECT time, COUNT(*) AS new_user FROM new_user_list GROUP BY time), "
    "active_users AS (SELECT time, COUNT(*) AS active_user FROM active_user_list GROUP BY time), "
    "returning_users AS (SELECT time, COUNT(*) AS returning_user FROM returning_user_list "
    "GROUP BY time) "
    "SELECT time, COALESCE(new_user, 0) AS new_user, COALESCE(active_user, 0) AS active_user, "
    "COALESCE(returning_user, 0) AS returning_user FROM timetable "
    "LEFT OUTER JOIN new_users USING (time) LEFT OUTER JOIN active_users USING (time) "
    "LEFT OUTER JOIN returning_users USING (time) ORDER BY time"
)


def msearch_url(base: str, datasource: int) -> str:
    return f"{base}/datasources/proxy/{datasource}/_msearch?max_concurrent_shard_requests=5"


def monthly_indices(prefix: str, window: DayWindow) -> list[str]:
    """Monthly index names covering the window (and the UTC spill-over day)."""
    months = []
    for day in (window.stat_date - timedelta(days=1), window.stat_date):
        name = f"{prefix}{day:%Y-%m}"
        if name not in months:
            months.append(name)
    return months


def build_msearch_body(indices: list[str], queries: list[dict[str, Any]]) -> str:
    lines = []
    for query in queries:
        header = {"search_type": "query_then_fetch", "ignore_unavailable": True, "index": indices}
        lines.append(json.dumps(header, separators=(",", ":")))
        lines.append(json.dumps(query, separators=(",", ":")))
    return "\n".join(lines) + "\n"


def _search(query: str, aggs: dict[str, Any]) -> dict[str, Any]:
    return {
        "size": 0,
        "query": {
            "bool": {"filter": [{"query_string": {"analyze_wildcard": True, "query": query}}]}
        },
        "aggs": aggs,
    }


def _histogram(
    field: str,
    window: DayWindow,
    interval: str,
    aggs: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    return {
        "date_histogram": {
            "field": field,
            "min_doc_count": 0,
            "extended_bounds": {"min": window.start, "max": window.end},
            "format": "epoch_millis",
            "time_zone": HISTOGRAM_ZONE,
            "interval": interval,
        },
        "aggs": aggs or {},
    }


def _responses(payload: Any, expected: int) -> list[dict[str, Any]]:
    responses = dig(payload, "responses")
    if not isinstance(responses, list) or len(responses) < expected:
        raise MalformedResponseError(
            f"Expected {expected} msearch responses, got "
            f"{len(responses) if isinstance(responses, list) else type(responses).__name__}"
        )
    for response in responses[:expected]:
        if isinstance(response, dict) and response.get("error"):
            raise MalformedResponseError(f"msearch sub-request failed: {response['error']}")
    return responses


def _hits_total(response: dict[str, Any]) -> int:
    total = dig(response, "hits", "total")
    if isinstance(total, dict):
        total = total.get("value")
    value = safe_int(total)
    if value is None:
        raise MalformedResponseError(f"Unexpected hits.total: {total!r}")
    return value


def _buckets(response: dict[str, Any], agg: str = "2") -> list[dict[str, Any]]:
    buckets = dig(response, "aggregations", agg, "buckets")
    if not isinstance(buckets, list):
        raise MalformedResponseError(f"aggregations.{agg}.buckets is not a list")
    return buckets


def _metric(bucket: dict[str, Any], key: str) -> Optional[float]:
    return safe_float((bucket.get(key) or {}).get("value"))


def _average(values: list[Optional[float]]) -> Optional[float]:
    present = [value for value in values if value is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


def parse_transactions(payload: Any) -> GojekDailyStats:
    response = _responses(payload, 1)[0]
    buckets = _buckets(response)
    if not buckets:
        raise MissingDataError("No completed orders for the day")
    sales = _metric(buckets[0], "3")
    return GojekDailyStats(sales=sales, orders=_hits_total(response))


def parse_rating(payload: Any) -> GojekDailyStats:
    responses = _responses(payload, 3)
    rated = [
        bucket for bucket in _buckets(responses[0]) if _metric(bucket, "1") is not None
    ]
    if not rated:
        raise MissingDataError("No rating datapoints for the day")

    star_buckets = _buckets(responses[2])
    stars = star_buckets[0] if star_buckets else {}

    def count(key: str) -> Optional[int]:
        return safe_int((stars.get(key) or {}).get("value"))

    return GojekDailyStats(
        rating=round(_metric(rated[-1], "1"), 2),
        five_star_ratings=count("1"),
        four_star_ratings=count("3"),
        three_star_ratings=count("4"),
        two_star_ratings=count("5"),
        one_star_ratings=count("6"),
    )


def parse_order_timings(payload: Any) -> GojekDailyStats:
    responses = _responses(payload, 3)
    accepting = _average([_metric(b, "1") for b in _buckets(responses[0])])
    preparation = _average([_metric(b, "3") for b in _buckets(responses[1])])
    delivery = _average([_metric(b, "3") for b in _buckets(responses[2])])
    if accepting is None and preparation is None and delivery is None:
        raise MissingDataError("No order timing datapoints for the day")
    return GojekDailyStats(
        accepting_time=accepting,
        preparation_time=preparation,
        delivery_time=delivery,
    )


def parse_order_status(payload: Any) -> GojekDailyStats:
    responses = _responses(payload, 5)
    total, accepted, prepared, _picked_up, completed = (
        _hits_total(response) for response in responses[:5]
    )
    if total == 0:
        raise MissingDataError("No orders for the day")
    return GojekDailyStats(
        lost_orders=max(total - completed, 0),
        realized_orders_percentage=round(completed / total * 100, 2),
        accepted_orders=accepted,
        marked_ready=prepared,
    )


def _windowed_value(payload: Any, index: int, window: DayWindow) -> Optional[float]:
    responses = payload.get("responses") if isinstance(payload, dict) else None
    if not isinstance(responses, list) or len(responses) <= index:
        return None
    aggregations = (responses[index] or {}).get("aggregations") or {}
    value = None
    for bucket in (aggregations.get("2") or {}).get("buckets") or []:
        key = safe_int(bucket.get("key"))
        if key is None or not window.start_ms <= key <= window.end_ms:
            continue
        bucket_value = _metric(bucket, "1")
        if bucket_value is not None:
            value = bucket_value
    return value


def parse_ads(sales_payload: Any, cost_payload: Any, window: DayWindow) -> GojekDailyStats:
    """Combine the GMV panel (ad+promo sales) and the burn panel (ad spend)."""
    ads_sales = _windowed_value(sales_payload, 2, window)
    ads_spend = _windowed_value(cost_payload, 0, window)
    if ads_sales is None and ads_spend is None:
        raise MissingDataError("No ads buckets inside the day window")
    return GojekDailyStats(ads_sales=ads_sales, ads_spend=ads_spend)


def parse_incoming_orders(payload: Any) -> GojekDailyStats:
    response = _responses(payload, 1)[0]
    if not _buckets(response):
        raise MissingDataError("No bookings for the day")
    return GojekDailyStats(incoming_orders=_hits_total(response))


def parse_cancel_reasons(payload: Any) -> GojekDailyStats:
    response = _responses(payload, 1)[0]
    counts = {field: 0 for field in CANCEL_REASON_FIELDS.values()}
    cancelled = 0
    for bucket in _buckets(response):
        doc_count = safe_int(bucket.get("doc_count")) or 0
        cancelled += doc_count
        field = CANCEL_REASON_FIELDS.get(bucket.get("key"))
        if field:
            counts[field] += doc_count
    return GojekDailyStats(cancelled_orders=cancelled, **counts)


def parse_first_bucket_value(payload: Any, field: str) -> GojekDailyStats:
    """First non-zero ``"1"`` metric of a histogram, used by single-value panels."""
    response = _responses(payload, 1)[0]
    buckets = _buckets(response)
    if not buckets:
        raise MissingDataError(f"No {field} buckets for the day")
    values = [v for v in (_metric(b, "1") for b in buckets) if v is not None]
    if not values:
        raise MissingDataError(f"No {field} datapoints for the day")
    value = next((v for v in values if v), values[0])
    return GojekDailyStats(**{field: round(value, 2)})


def parse_customers(payload: Any, window: DayWindow) -> GojekDailyStats:
    frames = dig(payload, "results", "A", "frames")
    if not frames:
        raise MissingDataError("No customer frames returned")
    values = dig(frames[0], "data", "values")
    if not isinstance(values, list) or len(values) < 4:
        raise MalformedResponseError("Customer frame must have time + 3 value columns")

    new_client = active_client = returned_client = 0
    matched = False
    for i, timestamp in enumerate(values[0]):
        timestamp = safe_int(timestamp)
        if timestamp is None or not window.start_ms <= timestamp <= window.end_ms:
            continue
        matched = True
        new_client += safe_int(values[1][i]) or 0
        active_client += safe_int(values[2][i]) or 0
        returned_client += safe_int(values[3][i]) or 0

    if not matched:
        raise MissingDataError("No customer row for the day")
    return GojekDailyStats(
        new_client=new_client,
        active_client=active_client,
        returned_client=returned_client,
    )


def payouts_for_day(payouts: list[dict[str, Any]], stat_date: date) -> float:
    """Sum of paid payouts settled on ``stat_date`` (amounts are in cents)."""
    target = stat_date.isoformat()
    total = 0.0
    for payout in payouts:
        paid_at = payout.get("paid_at")
        if payout.get("status") != "paid" or not paid_at:
            continue
        if str(paid_at).split("T")[0] == target:
            total += safe_float(payout.get("net_amount")) or 0.0
    return round(total / 100, 2)


class GojekMetricFetcher(MetricFetcher):
    """GoBiz Grafana panel replayed through the analytics proxy."""

    platform = Platform.GOJEK
    analytics_base: ClassVar[str] = ANALYTICS_BASE
    datasource: ClassVar[int] = 2
    dashboard_id: ClassVar[str] = ""
    panel_id: ClassVar[str] = ""
    ref_ids: ClassVar[str] = "A"
    index_prefix: ClassVar[str] = "orders_"

    def merchant_id(self, ctx: FetchContext) -> str:
        profile = ctx.account.gojek
        if profile is None or not profile.merchant_id:
            raise ConfigurationError(f"GoJek merchant_id unknown for {ctx.account.name}")
        return profile.merchant_id

    def headers(
        self,
        ctx: FetchContext,
        window: DayWindow,
        panel_id: Optional[str] = None,
        ref_ids: Optional[str] = None,
    ) -> dict[str, str]:
        return {
            "Content-Type": "application/x-ndjson",
            "authentication-type": "go-id",
            "Authorization": f"Bearer {ctx.token}",
            "x-dashboard-id": self.dashboard_id,
            "x-panel-id": panel_id or self.panel_id,
            "x-ref-ids": ref_ids or self.ref_ids,
            "x-grafana-org-id": "1",
            "x-custom-interval": "1d",
            "x-setting-interval": "1d",
            "x-range-from": str(window.start),
            "x-range-to": str(window.end),
            "x-comp-range-from": str(window.start),
            "x-comp-range-to": str(window.end),
            "x-comp-range-offset": "1d",
        }

    def queries(self, merchant_id: str, window: DayWindow) -> list[dict[str, Any]]:
        raise NotImplementedError

    def parse(self, payload: Any, window: DayWindow) -> GojekDailyStats:
        raise NotImplementedError

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GojekDailyStats:
        body = build_msearch_body(
            monthly_indices(self.index_prefix, window),
            self.queries(self.merchant_id(ctx), window),
        )
        payload = await self._post_json(
            ctx,
            window,
            msearch_url(self.analytics_base, self.datasource),
            headers=self.headers(ctx, window),
            data=body,
        )
        return self.parse(payload, window)


def _orders_filter(merchant_id: str, window: DayWindow, extra: str = "") -> str:
    clause = f'merchant_id:("{merchant_id}") AND NOT order_number:FP*'
    if extra:
        clause = f"{clause} AND {extra}"
    return f"{clause} AND ordered_at:>={window.start} AND ordered_at:<={window.end}"


class TransactionsFetcher(GojekMetricFetcher):
    name = "transactions"
    history = True
    dashboard_id = "14"
    panel_id = "24"

    def queries(self, merchant_id, window):
        aggs = {
            "2": {
                "terms": {
                    "field": "analytic_temp.merchant_name.keyword",
                    "size": 1000,
                    "order": {"3": "desc"},
                    "min_doc_count": 1,
                },
                "aggs": {
                    "3": {"sum": {"field": "gross_amount"}},
                    "4": {"avg": {"field": "gross_amount"}},
                },
            }
        }
        query = _orders_filter(merchant_id, window, "status.goresto:completed")
        return [_search(query, aggs)]

    def parse(self, payload, window):
        return parse_transactions(payload)


class RatingFetcher(GojekMetricFetcher):
    name = "rating"
    history = True
    datasource = 26
    dashboard_id = "28"
    panel_id = "6"
    ref_ids = "A;B;C"
    index_prefix = "analytic_merchant_rating_v1_"

    def queries(self, merchant_id, window):
        query = f'label.merchant_id:"{merchant_id}" AND time:>={window.start} AND time:<={window.end}'
        rating_avg = {"1": {"avg": {"field": "data.restaurant_rating"}}}
        star_sums = {
            key: {"sum": {"field": f"data.cumulative_{stars}_star_rating_received_count"}}
            for key, stars in (("1", 5), ("3", 4), ("4", 3), ("5", 2), ("6", 1))
        }
        return [
            _search(query, {"2": _histogram("time", window, "1h", rating_avg)}),
            _search(query, {"2": _histogram("time", window, "1w", rating_avg)}),
            _search(
                query,
                {
                    "2": {
                        "terms": {
                            "field": "data.merchant_id",
                            "size": 10,
                            "order": {"_key": "desc"},
                            "min_doc_count": 1,
                        },
                        "aggs": star_sums,
                    }
                },
            ),
        ]

    def parse(self, payload, window):
        return parse_rating(payload)


class OrderTimingsFetcher(GojekMetricFetcher):
    name = "order_timings"
    history = True
    dashboard_id = "15"
    panel_id = "22"
    ref_ids = "A;B;C"

    def queries(self, merchant_id, window):
        query = _orders_filter(merchant_id, window)
        return [
            _search(query, {"2": _histogram("ordered_at", window, "1h", {"1": {"avg": {"field": "analytic_temp.acceptance_time"}}})}),
            _search(query, {"2": _histogram("ordered_at", window, "1h", {"3": {"avg": {"field": "analytic_temp.food_prepare_time"}}})}),
            _search(query, {"2": _histogram("ordered_at", window, "1h", {"3": {"avg": {"field": "analytic_temp.delivery_time"}}})}),
        ]

    def parse(self, payload, window):
        return parse_order_timings(payload)


class OrderStatusFetcher(GojekMetricFetcher):
    name = "order_status"
    history = True
    dashboard_id = "15"
    panel_id = "36"
    ref_ids = "A;B;C;D;E"

    STAGES = (
        "_exists_:status.goresto",
        "_exists_:status.goresto AND _exists_:analytic_temp.merchant_accepted_at",
        "_exists_:status.goresto AND (_exists_:analytic_temp.food_prepared_at "
        "OR _exists_:analytic_temp.pickup_at.seconds)",
        "_exists_:status.goresto AND _exists_:analytic_temp.pickup_at.seconds",
        "_exists_:status.goresto AND status.goresto:completed",
    )

    def queries(self, merchant_id, window):
        return [
            _search(
                _orders_filter(merchant_id, window, stage),
                {"2": _histogram("ordered_at", window, "1d")},
            )
            for stage in self.STAGES
        ]

    def parse(self, payload, window):
        return parse_order_status(payload)


class IncomingOrdersFetcher(GojekMetricFetcher):
    name = "incoming_orders"
    datasource = 46
    dashboard_id = "83"
    panel_id = "32"
    ref_ids = "B"
    index_prefix = "analytic_detail_gofood_booking_v1_"

    def queries(self, merchant_id, window):
        query = (
            f"time:>={window.start} AND time:<={window.end} "
            f'AND data.merchant_id:"{merchant_id}" AND NOT id:FP*'
        )
        return [_search(query, {"2": _histogram("time", window, "1d")})]

    def parse(self, payload, window):
        return parse_incoming_orders(payload)


class CancelReasonsFetcher(GojekMetricFetcher):
    name = "cancel_reasons"
    dashboard_id = "83"
    panel_id = "58"

    def queries(self, merchant_id, window):
        query = _orders_filter(
            merchant_id, window, "_exists_:analytic_temp.cancel_reason_group.keyword"
        )
        aggs = {
            "2": {
                "terms": {
                    "field": "analytic_temp.cancel_reason_group.keyword",
                    "size": 10,
                    "order": {"_count": "desc"},
                    "min_doc_count": 1,
                },
                "aggs": {},
            }
        }
        return [_search(query, aggs)]

    def parse(self, payload, window):
        return parse_cancel_reasons(payload)


class PotentialLostFetcher(GojekMetricFetcher):
    name = "potential_lost"
    dashboard_id = "80"
    panel_id = "12"

    def queries(self, merchant_id, window):
        query = _orders_filter(merchant_id, window, "_exists_:analytic_temp.cancel_reason_group")
        sums = {"1": {"sum": {"field": "gross_amount"}}}
        return [_search(query, {"2": _histogram("ordered_at", window, "1d", sums)})]

    def parse(self, payload, window):
        return parse_first_bucket_value(payload, "potential_lost")


class DriverWaitingFetcher(GojekMetricFetcher):
    name = "driver_waiting"
    datasource = 46
    dashboard_id = "83"
    panel_id = "50"
    index_prefix = "analytic_detail_gofood_booking_v1_"

    def queries(self, merchant_id, window):
        query = (
            f"time:>={window.start} AND time:<={window.end} "
            f'AND data.merchant_id:"{merchant_id}" AND NOT id:FP* '
            "AND _exists_:data.driver_wait_time"
        )
        avg = {"1": {"avg": {"field": "data.driver_wait_time"}}}
        return [_search(query, {"2": _histogram("time", window, "1d", avg)})]

    def parse(self, payload, window):
        return parse_first_bucket_value(payload, "driver_waiting")


class AdsFetcher(GojekMetricFetcher):
    """Ad-attributed sales and ad spend from two panels of the ads dashboard."""

    name = "ads"
    history = True
    analytics_base = ADS_ANALYTICS_BASE
    datasource = 63
    dashboard_id = "104"

    SALES_PANEL = "16"
    SALES_REFS = (
        "total_gmv_topline_amount;prev_total_gmv_topline_amount;"
        "total_ad_promo_gmv_topline_amount;total_organic_gmv_topline_amount"
    )
    COST_PANEL = "20"
    COST_REFS = "total_ad_promo_burn_amount;total_ad_burn_amount;total_promo_burn_amount"

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GojekDailyStats:
        merchant_id = self.merchant_id(ctx)
        url = msearch_url(self.analytics_base, self.datasource)

        sales_headers = self.headers(ctx, window, self.SALES_PANEL, self.SALES_REFS)
        sales_headers["x-custom-merchant-id"] = merchant_id
        cost_headers = self.headers(ctx, window, self.COST_PANEL, self.COST_REFS)
        cost_headers["x-custom-merchant-id"] = merchant_id

        sales = await self._post_json(ctx, window, url, headers=sales_headers)
        cost = await self._post_json(ctx, window, url, headers=cost_headers)
        return parse_ads(sales, cost, window)


class CustomersFetcher(GojekMetricFetcher):
    """New, active and returning customers from the postgres-backed panel."""

    name = "customers"
    dashboard_id = "85"
    panel_id = "4"

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GojekDailyStats:
        merchant_id = self.merchant_id(ctx).replace("'", "")
        headers = self.headers(ctx, window)
        headers["Content-Type"] = "application/json"
        body = {
            "queries": [
                {
                    "refId": "A",
                    "datasource": {"uid": "53vCEARVk", "type": "postgres"},
                    "rawSql": CUSTOMERS_SQL.format(merchant_id=merchant_id),
                    "format": "time_series",
                    "datasourceId": 6,
                    "intervalMs": 86400000,
                    "maxDataPoints": 1208,
                }
            ],
            "from": str(window.start),
            "to": str(window.end),
        }
        payload = await self._post_json(
            ctx, window, f"{self.analytics_base}/ds/query", headers=headers, json=body
        )
        return parse_customers(payload, window)


class PayoutsFetcher(GojekMetricFetcher):
    """Net payouts settled on the day, paged from newest to oldest."""

    name = "payouts"
    PAGE_SIZE = 15
    MAX_PAGES = 20

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GojekDailyStats:
        headers = {
            "Authorization": f"Bearer {ctx.token}",
            "authentication-type": "go-id",
            "Accept": "application/json",
        }
        collected: list[dict[str, Any]] = []
        target = window.stat_date.isoformat()

        for page in range(1, self.MAX_PAGES + 1):
            payload = await self._get_json(
                ctx,
                window,
                f"{GOBIZ_API_BASE}/v1/merchants/payouts",
                headers=headers,
                params={"page": page, "per": self.PAGE_SIZE},
            )
            payouts = dig(payload, "payouts")
            if not isinstance(payouts, list):
                raise MalformedResponseError("payouts is not a list")
            if not payouts:
                if page == 1:
                    raise MissingDataError("Merchant has no payouts")
                break

            collected.extend(payouts)
            oldest = str(payouts[-1].get("paid_at") or "").split("T")[0]
            if len(payouts) < self.PAGE_SIZE or (oldest and oldest < target):
                break

        return GojekDailyStats(payouts=payouts_for_day(collected, window.stat_date))


GOJEK_FETCHERS: tuple[type[GojekMetricFetcher], ...] = (
    TransactionsFetcher,
    RatingFetcher,
    OrderTimingsFetcher,
    OrderStatusFetcher,
    AdsFetcher,
    IncomingOrdersFetcher,
    CancelReasonsFetcher,
    PotentialLostFetcher,
    DriverWaitingFetcher,
    CustomersFetcher,
    PayoutsFetcher,
)


async def discover_merchant_id(
    session: aiohttp.ClientSession,
    credentials: CredentialBundle,
) -> Optional[str]:
    """Look up the GoJek merchant id of the logged-in user.

    Returns:
        The merchant id, or None when the profile does not carry one
    """
    headers = {
        "Authorization": f"Bearer {credentials.access_token}",
        "authentication-type": "go-id",
        "Accept": "application/json",
    }
    async with session.get(f"{GOBIZ_API_BASE}/v1/users/me", headers=headers) as resp:
        if resp.status != 200:
            logger.warning("GoJek users/me returned HTTP %s", resp.status)
            return None
        data = await resp.json(content_type=None)

    merchant_id = ((data or {}).get("user") or {}).get("merchant_id")
    return str(merchant_id) if merchant_id else None
