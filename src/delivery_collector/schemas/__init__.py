"""Pydantic models for accounts and daily stats."""
from .accounts import Account, CredentialBundle, GojekProfile, GrabProfile, Platform
from .stats import DailyStatRecord, GojekDailyStats, GrabDailyStats, PlatformStats

__all__ = [
    "Account",
    "CredentialBundle",
    "DailyStatRecord",
    "GojekDailyStats",
    "GojekProfile",
    "GrabDailyStats",
    "GrabProfile",
    "Platform",
    "PlatformStats",
]
