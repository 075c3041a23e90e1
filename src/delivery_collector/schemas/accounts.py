"""Pydantic models for restaurant accounts and their platform credentials."""
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field


class Platform(str, Enum):
    """Delivery platforms the collector talks to."""

    GRAB = "grab"
    GOJEK = "gojek"


class CredentialBundle(BaseModel):
    """Tokens and login fallback for one account on one platform."""

    access_token: Optional[str] = Field(None, description="Bearer/JWT token (never logged)")
    refresh_token: Optional[str] = Field(None, description="Refresh token (GoJek only)")
    client_id: Optional[str] = Field(None, description="OAuth client id used for refresh")
    username: Optional[str] = Field(None, description="Login fallback username/email")
    password: Optional[str] = Field(None, description="Login fallback password")
    updated_at: Optional[str] = Field(None, description="ISO timestamp of last token change")

    @property
    def can_login(self) -> bool:
        return bool(self.username and self.password)

    def secrets(self) -> list[Optional[str]]:
        """Values that must never reach the logs."""
        return [self.access_token, self.refresh_token, self.password]


class GojekProfile(BaseModel):
    """GoJek credentials plus the merchant identifier used in analytics queries."""

    credentials: CredentialBundle = Field(default_factory=CredentialBundle)
    merchant_id: Optional[str] = None

    def missing_identifiers(self) -> list[str]:
        return [] if self.merchant_id else ["merchant_id"]


class GrabProfile(BaseModel):
    """Grab credentials plus the store/entity/advertiser identifiers."""

    credentials: CredentialBundle = Field(default_factory=CredentialBundle)
    user_id: Optional[str] = None
    store_id: Optional[str] = None
    food_entity_id: Optional[str] = None
    advertiser_id: Optional[str] = None
    merchant_id: Optional[str] = None

    def missing_identifiers(self) -> list[str]:
        names = ["store_id", "food_entity_id", "advertiser_id", "merchant_id"]
        return [name for name in names if not getattr(self, name)]


PlatformProfile = Union[GrabProfile, GojekProfile]


class Account(BaseModel):
    """One restaurant tracked by the collector."""

    name: str = Field(..., description="Stable restaurant name (export key)")
    status: str = Field("active", description="active|paused|churned")
    grab: Optional[GrabProfile] = None
    gojek: Optional[GojekProfile] = None
    commission: dict[str, Any] = Field(
        default_factory=dict,
        description="Business overlay sent with the first export batch",
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def profile(self, platform: Platform) -> Optional[PlatformProfile]:
        return self.grab if platform == Platform.GRAB else self.gojek

    def has_platform(self, platform: Platform) -> bool:
        return self.profile(platform) is not None

    def platforms(self) -> list[Platform]:
        return [platform for platform in Platform if self.has_platform(platform)]

    def with_identifiers(self, platform: Platform, identifiers: dict[str, str]) -> "Account":
        """Return a copy with the given platform identifiers filled in."""
        profile = self.profile(platform)
        if profile is None or not identifiers:
            return self
        known = {k: v for k, v in identifiers.items() if k in type(profile).model_fields}
        updated = profile.model_copy(update=known)
        return self.model_copy(update={platform.value: updated})

    @classmethod
    def from_legacy(cls, data: dict[str, Any]) -> "Account":
        """Build an account from the flat restaurants.js-style record.

        Legacy records keep tokens and ids at the top level
        (``gojek_refresh_token``, ``grab_token``, ``grab_store_id``...) and
        login fallbacks under ``gojek``/``grab`` sub-objects.
        """
        gojek_login = data.get("gojek") or {}
        grab_login = data.get("grab") or {}

        gojek = None
        if data.get("gojek_refresh_token") or data.get("gojek_access_token") or gojek_login:
            gojek = GojekProfile(
                credentials=CredentialBundle(
                    access_token=data.get("gojek_access_token"),
                    refresh_token=data.get("gojek_refresh_token"),
                    client_id=data.get("gojek_client_id"),
                    username=gojek_login.get("username"),
                    password=gojek_login.get("password"),
                ),
                merchant_id=data.get("gojek_merchant_id"),
            )

        grab = None
        if data.get("grab_token") or grab_login:
            grab = GrabProfile(
                credentials=CredentialBundle(
                    access_token=data.get("grab_token"),
                    username=grab_login.get("username"),
                    password=grab_login.get("password"),
                ),
                user_id=_as_str(data.get("grab_user_id")),
                store_id=_as_str(data.get("grab_store_id")),
                food_entity_id=_as_str(data.get("grab_food_entity_id")),
                advertiser_id=_as_str(data.get("grab_advertiser_id")),
                merchant_id=_as_str(data.get("grab_merchant_id")),
            )

        return cls(
            name=data["name"],
            status=data.get("status", "active"),
            grab=grab,
            gojek=gojek,
            commission=data.get("commission") or {},
        )


def _as_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def parse_accounts(records: list[dict[str, Any]]) -> list[Account]:
    """Parse account records, accepting both nested and legacy flat layouts."""
    accounts: list[Account] = []
    for record in records:
        if "credentials" in (record.get("gojek") or {}) or "credentials" in (
            record.get("grab") or {}
        ):
            accounts.append(Account.model_validate(record))
        else:
            accounts.append(Account.from_legacy(record))
    return accounts
