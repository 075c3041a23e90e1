"""Metric fetchers for the Grab and GoJek analytics backends."""
from typing import Optional

import aiohttp

from ..archive import RawPayloadArchive
from ..auth.session import SessionManager
from ..schemas.accounts import Platform
from .base import FetchContext, FetchOutcome, FetchResult, MetricFetcher, classify_exception
from .gojek import GOJEK_FETCHERS
from .grab import GRAB_FETCHERS


FETCHERS: dict[Platform, tuple[type[MetricFetcher], ...]] = {
    Platform.GRAB: GRAB_FETCHERS,
    Platform.GOJEK: GOJEK_FETCHERS,
}


def build_fetchers(
    platform: Platform,
    session: aiohttp.ClientSession,
    session_manager: SessionManager,
    archive: Optional[RawPayloadArchive] = None,
    history_only: bool = False,
) -> list[MetricFetcher]:
    """Instantiate every registered fetcher of a platform."""
    return [
        fetcher_cls(session, session_manager, archive)
        for fetcher_cls in FETCHERS[platform]
        if fetcher_cls.history or not history_only
    ]


__all__ = [
    "FETCHERS",
    "FetchContext",
    "FetchOutcome",
    "FetchResult",
    "MetricFetcher",
    "build_fetchers",
    "classify_exception",
]
