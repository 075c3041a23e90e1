"""Typed per-day stat fragments for both platforms.

Every field is optional: ``None`` means the fetcher did not report the
field, which is different from a reported zero. Merges only apply fields
that are not ``None``.
"""
from datetime import date
from typing import Any, ClassVar, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field

from .accounts import Platform


class PlatformStats(BaseModel):
    """Base class for one platform's daily stat namespace."""

    model_config = ConfigDict(extra="forbid")

    platform: ClassVar[Platform]
    sales_field: ClassVar[str] = "sales"
    orders_field: ClassVar[str] = "orders"

    def present(self) -> dict[str, Any]:
        """Fields actually reported by the fetcher."""
        return self.model_dump(exclude_none=True)

    def namespaced(self) -> dict[str, Any]:
        """Present fields keyed by their store column name."""
        prefix = self.platform.value
        return {f"{prefix}_{name}": value for name, value in self.present().items()}

    @classmethod
    def columns(cls) -> dict[str, str]:
        """Store column name -> SQLite type for every field."""
        result = {}
        for name, info in cls.model_fields.items():
            sql_type = "INTEGER" if int in get_args(info.annotation) else "REAL"
            result[f"{cls.platform.value}_{name}"] = sql_type
        return result


class GrabDailyStats(PlatformStats):
    """Grab merchant insights and ads metrics for one day."""

    platform: ClassVar[Platform] = Platform.GRAB

    rating: Optional[float] = None
    sales: Optional[float] = None
    orders: Optional[int] = None
    ads_sales: Optional[float] = None
    ads_orders: Optional[int] = None
    ads_spend: Optional[float] = None
    ads_ctr: Optional[float] = None
    impressions: Optional[int] = None
    unique_impressions_reach: Optional[int] = None
    unique_menu_visits: Optional[int] = None
    unique_add_to_carts: Optional[int] = None
    unique_conversion_reach: Optional[int] = None
    offline_rate: Optional[float] = Field(None, description="Offline minutes")
    cancelation_rate: Optional[float] = None
    cancelled_orders: Optional[int] = None
    store_is_closed: Optional[int] = None
    store_is_busy: Optional[int] = None
    store_is_closing_soon: Optional[int] = None
    out_of_stock: Optional[int] = None
    driver_waiting_time: Optional[float] = None
    total_customers: Optional[int] = None
    new_customers: Optional[int] = None
    repeated_customers: Optional[int] = None
    reactivated_customers: Optional[int] = None
    earned_new_customers: Optional[float] = None
    earned_repeated_customers: Optional[float] = None
    earned_reactivated_customers: Optional[float] = None
    payouts: Optional[float] = None


class GojekDailyStats(PlatformStats):
    """GoBiz analytics metrics for one day."""

    platform: ClassVar[Platform] = Platform.GOJEK

    rating: Optional[float] = None
    sales: Optional[float] = None
    orders: Optional[int] = None
    ads_sales: Optional[float] = None
    ads_orders: Optional[int] = None
    ads_spend: Optional[float] = None
    accepting_time: Optional[float] = Field(None, description="Average seconds")
    preparation_time: Optional[float] = Field(None, description="Average seconds")
    delivery_time: Optional[float] = Field(None, description="Average seconds")
    lost_orders: Optional[int] = None
    realized_orders_percentage: Optional[float] = None
    one_star_ratings: Optional[int] = None
    two_star_ratings: Optional[int] = None
    three_star_ratings: Optional[int] = None
    four_star_ratings: Optional[int] = None
    five_star_ratings: Optional[int] = None
    accepted_orders: Optional[int] = None
    incoming_orders: Optional[int] = None
    marked_ready: Optional[int] = None
    cancelled_orders: Optional[int] = None
    acceptance_timeout: Optional[int] = None
    out_of_stock: Optional[int] = None
    store_is_busy: Optional[int] = None
    store_is_closed: Optional[int] = None
    new_client: Optional[int] = None
    active_client: Optional[int] = None
    returned_client: Optional[int] = None
    potential_lost: Optional[float] = None
    driver_waiting: Optional[float] = None
    payouts: Optional[float] = None


class DailyStatRecord(BaseModel):
    """Merged per-account, per-day record as stored locally."""

    account_name: str
    stat_date: date
    grab: GrabDailyStats = Field(default_factory=GrabDailyStats)
    gojek: GojekDailyStats = Field(default_factory=GojekDailyStats)
    grab_updated_at: Optional[str] = None
    gojek_updated_at: Optional[str] = None
    total_sales: float = 0.0
    total_orders: int = 0
    synced_at: Optional[str] = None

    def has_platform_data(self, platform: Platform) -> bool:
        if platform == Platform.GRAB:
            return self.grab_updated_at is not None
        return self.gojek_updated_at is not None

    def export_payload(self, platform: Platform) -> dict[str, Any]:
        """Flat ``{stat_date, <fields>}`` dict for the central upsert endpoint."""
        stats = self.grab if platform == Platform.GRAB else self.gojek
        payload: dict[str, Any] = {"stat_date": self.stat_date.isoformat()}
        payload.update(stats.model_dump())
        return payload
