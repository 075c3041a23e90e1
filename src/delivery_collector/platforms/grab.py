"""Grab merchant portal fetchers.

Insights queries go through the troy ``insights/v1/list`` endpoint and
return a single ``columns`` table per query. Ads numbers come from the
self-serve ads report, payouts from the settlement summary.
"""
import logging
import re
from typing import Any, ClassVar, Optional

import aiohttp

from ..exceptions import ConfigurationError, MalformedResponseError, MissingDataError
from ..scheduling import DayWindow
from ..schemas.accounts import CredentialBundle, GrabProfile, Platform
from ..schemas.stats import GrabDailyStats
from .base import FetchContext, MetricFetcher, dig, require_reported, safe_float, safe_int


logger = logging.getLogger(__name__)


MERCHANT_BASE = "https://merchant.grab.com"
INSIGHTS_URL = f"{MERCHANT_BASE}/troy/insights/v1/list"
FEEDBACK_OVERVIEW_URL = "https://api.grab.com/food/merchant/v1/feedback/overview"
ADS_REPORT_URL = "https://portal.grab.com/adsapi/v1/advertisers/{advertiser_id}/selfserve/report"
SETTLEMENT_URL = f"{MERCHANT_BASE}/mex/finances/v1/stores/{{store_id}}/settlement-summary"
STATEMENTS_URL = f"{MERCHANT_BASE}/permission/v1/statements"
EMPLOYEE_URL = f"{MERCHANT_BASE}/troy/employee-management/v1/get-user"
ADVERTISER_SEARCH_URL = "https://api.grab.com/admanageruiserver/v3/advertisers/search"
MERCHANT_SELECTOR_URL = f"{MERCHANT_BASE}/troy/user-profile/v1/merchant-selector"

ADS_TIME_ZONE = "Asia/Makassar"
CURRENCY = "IDR"

CANCEL_REASON_COLUMNS = {
    "mex-insightsv2-018-002-list": "store_is_closed",
    "mex-insightsv2-018-003-list": "store_is_busy",
    "mex-insightsv2-018-004-list": "store_is_closing_soon",
    "mex-insightsv2-018-005-list": "out_of_stock",
}

_NUMERIC = re.compile(r"[^0-9.\-]")


def grab_headers(token: str, profile: Optional[GrabProfile] = None) -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
        "Authorization": token,
        "x-mts-ssid": token,
        "x-currency": CURRENCY,
        "x-agent": "mexapp",
        "x-app-platform": "web",
        "x-client-id": "GrabMerchant-Portal",
        "x-date": "",
    }
    if profile is not None:
        if profile.store_id:
            headers["grab-id"] = profile.store_id
        if profile.food_entity_id:
            headers["merchantid"] = profile.food_entity_id
            headers["x-mex-resource"] = f"zeus_store:{profile.food_entity_id}"
    return headers


def clean_value(value: Any) -> Optional[float]:
    """Turn an ads report cell (``"Rp 1.234"``, ``"3.2%"``, 12) into a float.

    Returns None for an absent or unreadable cell.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = _NUMERIC.sub("", str(value))
    try:
        return float(cleaned)
    except ValueError:
        return None


def _cell_int(value: Any) -> Optional[int]:
    number = clean_value(value)
    return int(number) if number is not None else None


def insight_columns(payload: Any) -> dict[str, Any]:
    data = dig(payload, "data")
    if not data:
        raise MissingDataError("Insights returned no rows")
    columns = dig(data, 0, "columns")
    if not isinstance(columns, dict):
        raise MalformedResponseError("Insights columns is not an object")
    return columns


def parse_sales(payload: Any) -> GrabDailyStats:
    columns = insight_columns(payload)
    stats = GrabDailyStats(
        sales=safe_float(columns.get("net_sales")),
        orders=safe_int(columns.get("transactions_count")),
    )
    return require_reported(stats, "Sales insights")


def parse_rating(payload: Any) -> Optional[float]:
    if not isinstance(payload, dict):
        return None
    score = safe_float((payload.get("feedbackOverview") or {}).get("aggregatedRatingScore"))
    return round(score, 2) if score is not None else None


def parse_customer_breakdown(payload: Any) -> GrabDailyStats:
    columns = insight_columns(payload)
    stats = GrabDailyStats(
        total_customers=safe_int(columns.get("total_customer")),
        new_customers=safe_int(columns.get("new_user")),
        repeated_customers=safe_int(columns.get("repeated")),
        reactivated_customers=safe_int(columns.get("infrequent")),
    )
    return require_reported(stats, "Customer breakdown insights")


def parse_waiting_time(payload: Any) -> GrabDailyStats:
    data = dig(payload, "data")
    if not data:
        raise MissingDataError("No driver waiting rows")
    times = [
        safe_float((row.get("columns") or {}).get("avg_time"))
        for row in data
        if isinstance(row, dict)
    ]
    times = [value for value in times if value is not None]
    if not times:
        raise MissingDataError("No driver waiting averages")
    return GrabDailyStats(driver_waiting_time=round(sum(times) / len(times), 2))


def parse_offline_hours(payload: Any) -> GrabDailyStats:
    columns = insight_columns(payload)
    stats = GrabDailyStats(offline_rate=safe_float(columns.get("offline_hours_in_minutes")))
    return require_reported(stats, "Offline hours insights")


def parse_cancellation_rate(payload: Any) -> GrabDailyStats:
    columns = insight_columns(payload)
    stats = GrabDailyStats(cancelation_rate=safe_float(columns.get("cancellation_rate")))
    return require_reported(stats, "Cancellation rate insights")


def parse_cancel_reasons(payload: Any) -> GrabDailyStats:
    columns = insight_columns(payload)
    counts = {
        field: safe_int(columns.get(column)) for column, field in CANCEL_REASON_COLUMNS.items()
    }
    reported = [count for count in counts.values() if count is not None]
    if not reported:
        raise MalformedResponseError("Cancel reason insights carry no reason columns")
    return GrabDailyStats(cancelled_orders=sum(reported), **counts)


def report_rows(payload: Any) -> list[dict[str, Any]]:
    rows = (payload or {}).get("report") if isinstance(payload, dict) else None
    if not rows:
        raise MissingDataError("Ads report is empty")
    if not isinstance(rows, list):
        raise MalformedResponseError("Ads report is not a list")
    return rows


def parse_customer_lifecycle(payload: Any) -> GrabDailyStats:
    earned = {"NEW": 0.0, "EXISTING": 0.0, "OTHER": 0.0}
    valued = False
    for row in report_rows(payload):
        value = clean_value(row.get("ConversionValue_"))
        if value is None:
            continue
        valued = True
        segment = row.get("AudienceLifeCycleMerchant_")
        earned[segment if segment in ("NEW", "EXISTING") else "OTHER"] += value
    if not valued:
        raise MalformedResponseError("Lifecycle report rows carry no ConversionValue_")
    return GrabDailyStats(
        earned_new_customers=round(earned["NEW"], 2),
        earned_repeated_customers=round(earned["EXISTING"], 2),
        earned_reactivated_customers=round(earned["OTHER"], 2),
    )


def parse_ad_summary(payload: Any) -> GrabDailyStats:
    row = report_rows(payload)[0]
    attributed = [
        value
        for value in (
            clean_value(row.get("ClickAttributedSale_")),
            clean_value(row.get("ViewAttributedSale_")),
        )
        if value is not None
    ]
    stats = GrabDailyStats(
        ads_ctr=clean_value(row.get("CTR_")),
        impressions=_cell_int(row.get("Impressions_")),
        ads_spend=clean_value(row.get("BillableLocalAdSpend_")),
        ads_orders=_cell_int(row.get("Conversions_")),
        ads_sales=sum(attributed) if attributed else None,
    )
    return require_reported(stats, "Ad summary report")


def parse_conversion_funnel(payload: Any) -> GrabDailyStats:
    row = report_rows(payload)[0]
    stats = GrabDailyStats(
        unique_impressions_reach=_cell_int(row.get("UniqueUserImpression_")),
        unique_menu_visits=_cell_int(row.get("UniqueUserMenuVisit_")),
        unique_add_to_carts=_cell_int(row.get("UniqueUserAddToCart_")),
        unique_conversion_reach=_cell_int(row.get("UniqueUserConversion_")),
    )
    return require_reported(stats, "Conversion funnel report")


def parse_payouts(payload: Any) -> GrabDailyStats:
    net = safe_float(((payload or {}).get("data") or {}).get("net_earnings"))
    if net is None:
        raise MissingDataError("Settlement summary has no net_earnings")
    return GrabDailyStats(payouts=net)


class GrabMetricFetcher(MetricFetcher):
    platform = Platform.GRAB
    required: ClassVar[tuple[str, ...]] = ("store_id", "food_entity_id")

    def profile(self, ctx: FetchContext) -> GrabProfile:
        profile = ctx.account.grab
        missing = [name for name in self.required if not getattr(profile, name, None)]
        if profile is None or missing:
            raise ConfigurationError(
                f"Grab identifiers {missing or ['profile']} unknown for {ctx.account.name}"
            )
        return profile


class InsightsFetcher(GrabMetricFetcher):
    """One named troy insights query for the store."""

    query_name: ClassVar[str] = ""

    def body(self, profile: GrabProfile, window: DayWindow) -> dict[str, Any]:
        return {
            "parentEntityIds": [profile.store_id],
            "storeGrabIDs": [profile.food_entity_id],
            "businessLines": ["FOOD"],
            "startDate": window.start,
            "endDate": window.end,
            "queryNames": [self.query_name],
        }

    def parse(self, payload: Any) -> GrabDailyStats:
        raise NotImplementedError

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GrabDailyStats:
        profile = self.profile(ctx)
        payload = await self._post_json(
            ctx,
            window,
            f"{INSIGHTS_URL}?currency={CURRENCY}",
            headers=grab_headers(ctx.token, profile),
            json=self.body(profile, window),
        )
        return self.parse(payload)


class SalesFetcher(InsightsFetcher):
    name = "sales"
    history = True
    query_name = "mex-insightsv2-001-list"

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GrabDailyStats:
        stats = await super().collect(ctx, window)
        profile = self.profile(ctx)
        params = {
            "startTime": window.start,
            "endTime": window.end,
            "merchantIDs[]": profile.food_entity_id,
        }
        rating_payload = await self._get_json(
            ctx,
            window,
            FEEDBACK_OVERVIEW_URL,
            headers=grab_headers(ctx.token, profile),
            params=params,
        )
        rating = parse_rating(rating_payload)
        if rating is None:
            return stats
        return stats.model_copy(update={"rating": rating})

    def parse(self, payload):
        return parse_sales(payload)


class CustomerBreakdownFetcher(InsightsFetcher):
    name = "customer_breakdown"
    history = True
    query_name = "mex-insightsv2-014-list"

    def parse(self, payload):
        return parse_customer_breakdown(payload)


class WaitingTimeFetcher(InsightsFetcher):
    name = "waiting_time"
    query_name = "mex-insightsv2-019-list"

    def parse(self, payload):
        return parse_waiting_time(payload)


class CancellationRateFetcher(InsightsFetcher):
    name = "cancellation_rate"
    query_name = "mex-insightsv2-017-list"

    def parse(self, payload):
        return parse_cancellation_rate(payload)


class OfflineHoursFetcher(InsightsFetcher):
    name = "offline_hours"
    query_name = "mex-insightsv2-016-list"

    def parse(self, payload):
        return parse_offline_hours(payload)


class CancelReasonsFetcher(InsightsFetcher):
    """Cancellation breakdown, queried at merchant-group level."""

    name = "cancel_reasons"
    required = ("store_id", "food_entity_id", "merchant_id")
    query_name = "mex-insightsv2-018-list"

    def body(self, profile, window):
        body = super().body(profile, window)
        body["merchantGroupID"] = profile.merchant_id
        return body

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GrabDailyStats:
        profile = self.profile(ctx)
        payload = await self._post_json(
            ctx,
            window,
            f"{INSIGHTS_URL}?currency={CURRENCY}&merchant_group_id={profile.merchant_id}",
            headers=grab_headers(ctx.token, profile),
            json=self.body(profile, window),
        )
        return self.parse(payload)

    def parse(self, payload):
        return parse_cancel_reasons(payload)


class AdsReportFetcher(GrabMetricFetcher):
    """Self-serve ads report grouped by ``caller``."""

    required = ("advertiser_id",)
    caller: ClassVar[str] = ""
    dimensions: ClassVar[tuple[str, ...]] = ()

    def params(self, window: DayWindow) -> dict[str, str]:
        params = {
            "caller": self.caller,
            "startDate": window.stat_date.isoformat(),
            "endDate": window.stat_date.isoformat(),
            "timeZone": ADS_TIME_ZONE,
        }
        if self.dimensions:
            params["dimensions"] = ",".join(self.dimensions)
        return params

    def parse(self, payload: Any) -> GrabDailyStats:
        raise NotImplementedError

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GrabDailyStats:
        profile = self.profile(ctx)
        url = ADS_REPORT_URL.format(advertiser_id=profile.advertiser_id)
        payload = await self._post_json(
            ctx,
            window,
            f"{url}?caller={self.caller}",
            headers=grab_headers(ctx.token),
            json=self.params(window),
        )
        return self.parse(payload)


class CustomerLifecycleFetcher(AdsReportFetcher):
    name = "customer_lifecycle"
    caller = "CustomerLifeCycle"
    dimensions = ("AudienceLifeCycleMerchant",)

    def parse(self, payload):
        return parse_customer_lifecycle(payload)


class AdSummaryFetcher(AdsReportFetcher):
    name = "ad_summary"
    history = True
    caller = "Summary"

    def parse(self, payload):
        return parse_ad_summary(payload)


class ConversionFunnelFetcher(AdsReportFetcher):
    name = "conversion_funnel"
    caller = "ConversionFunnel"

    def parse(self, payload):
        return parse_conversion_funnel(payload)


class PayoutsFetcher(GrabMetricFetcher):
    name = "payouts"
    required = ("store_id",)

    async def collect(self, ctx: FetchContext, window: DayWindow) -> GrabDailyStats:
        profile = self.profile(ctx)
        payload = await self._get_json(
            ctx,
            window,
            SETTLEMENT_URL.format(store_id=profile.store_id),
            headers=grab_headers(ctx.token, profile),
            params={"from": window.start, "to": window.end, "currency": CURRENCY},
        )
        return parse_payouts(payload)


GRAB_FETCHERS: tuple[type[GrabMetricFetcher], ...] = (
    SalesFetcher,
    CustomerBreakdownFetcher,
    WaitingTimeFetcher,
    CancellationRateFetcher,
    OfflineHoursFetcher,
    CustomerLifecycleFetcher,
    AdSummaryFetcher,
    ConversionFunnelFetcher,
    PayoutsFetcher,
    CancelReasonsFetcher,
)


async def _get(session: aiohttp.ClientSession, url: str, headers: dict[str, str], **kwargs) -> Any:
    async with session.get(url, headers=headers, **kwargs) as resp:
        if resp.status != 200:
            logger.warning("Grab identifier lookup %s returned HTTP %s", url, resp.status)
            return None
        return await resp.json(content_type=None)


async def discover_identifiers(
    session: aiohttp.ClientSession,
    credentials: CredentialBundle,
    known: Optional[GrabProfile] = None,
) -> dict[str, str]:
    """Resolve the Grab identifiers that are not configured yet.

    Each lookup is independent; a failed lookup just leaves its identifier
    unresolved.

    Args:
        session: Shared aiohttp session
        credentials: Validated Grab credentials
        known: Profile with the identifiers already on record

    Returns:
        Newly discovered identifiers keyed by profile field name
    """
    token = credentials.access_token or ""
    known = known or GrabProfile()
    found: dict[str, str] = {}

    user_id = known.user_id
    if not user_id:
        data = await _get(session, STATEMENTS_URL, grab_headers(token), params={"currency": CURRENCY})
        statements = ((data or {}).get("data") or {}).get("statements") or []
        if statements and statements[0].get("userID"):
            user_id = str(statements[0]["userID"])
            found["user_id"] = user_id

    if user_id and not (known.store_id and known.food_entity_id):
        data = await _get(session, EMPLOYEE_URL, grab_headers(token), params={"grab_id": user_id})
        user = ((data or {}).get("data") or {}).get("user") or (data or {}).get("data") or {}
        store_id = user.get("store_id") or user.get("parent_entity_id")
        entity_id = user.get("grab_food_entity_id")
        if store_id and not known.store_id:
            found["store_id"] = str(store_id)
        if entity_id and not known.food_entity_id:
            found["food_entity_id"] = str(entity_id)

    if not known.advertiser_id:
        data = await _get(session, ADVERTISER_SEARCH_URL, grab_headers(token))
        entries = (data or {}).get("entries") or []
        if entries and entries[0].get("advertiserID"):
            found["advertiser_id"] = str(entries[0]["advertiserID"])

    if not known.merchant_id:
        data = await _get(session, MERCHANT_SELECTOR_URL, grab_headers(token))
        merchants = (data or {}).get("merchants") or []
        if merchants and merchants[0].get("id"):
            found["merchant_id"] = str(merchants[0]["id"])

    if found:
        logger.info("Discovered Grab identifiers: %s", ", ".join(sorted(found)))
    return found
