"""Shared plumbing for metric fetchers.

A fetcher turns one (account, day window) pair into a typed stats fragment.
Subclasses only shape requests and parse responses; credential lookup,
HTTP error mapping and outcome classification live here.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Optional

import aiohttp

from ..archive import RawPayloadArchive
from ..auth.session import SessionManager, redact_text
from ..exceptions import MalformedResponseError, MissingDataError, PlatformApiError
from ..scheduling import DayWindow
from ..schemas.accounts import Account, CredentialBundle, Platform
from ..schemas.stats import PlatformStats


logger = logging.getLogger(__name__)


class FetchOutcome(str, Enum):
    SUCCESS = "success"
    MISSING_DATA = "missing-data"
    TRANSIENT_ERROR = "transient-error"
    AUTH_ERROR = "auth-error"
    FATAL_ERROR = "fatal-error"


@dataclass
class FetchResult:
    """Outcome of one fetch attempt for one day."""

    outcome: FetchOutcome
    fragment: Optional[PlatformStats] = None
    error: Optional[str] = None
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome == FetchOutcome.SUCCESS


@dataclass
class FetchContext:
    account: Account
    credentials: CredentialBundle

    @property
    def token(self) -> str:
        return self.credentials.access_token or ""


def dig(payload: Any, *path: Any) -> Any:
    """Follow ``path`` through nested dicts/lists or raise MalformedResponseError."""
    current = payload
    for key in path:
        try:
            current = current[key]
        except (KeyError, IndexError, TypeError) as exc:
            trail = ".".join(str(k) for k in path)
            raise MalformedResponseError(f"Response has no '{trail}' (stopped at '{key}')") from exc
    return current


def safe_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def safe_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def require_reported(fragment: PlatformStats, source: str) -> PlatformStats:
    """Reject a fragment that carries none of the fields its response should have."""
    if not fragment.present():
        raise MalformedResponseError(f"{source} response carries none of the expected fields")
    return fragment


def classify_exception(exc: BaseException) -> FetchResult:
    """Map an exception raised while collecting to a fetch outcome."""
    if isinstance(exc, MissingDataError):
        return FetchResult(FetchOutcome.MISSING_DATA, error=str(exc))
    if isinstance(exc, PlatformApiError):
        if exc.is_unauthorized:
            outcome = FetchOutcome.AUTH_ERROR
        elif exc.is_transient:
            outcome = FetchOutcome.TRANSIENT_ERROR
        else:
            outcome = FetchOutcome.FATAL_ERROR
        return FetchResult(outcome, error=str(exc), status=exc.status)
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError)):
        return FetchResult(FetchOutcome.TRANSIENT_ERROR, error=f"Network error: {exc!r}")
    return FetchResult(FetchOutcome.FATAL_ERROR, error=f"{type(exc).__name__}: {exc}")


class MetricFetcher:
    """One metric group for one platform.

    Class attributes:
        platform: Platform the metric belongs to
        name: Metric group name used in logs and collector_state
        history: Whether the backward history walk probes this metric
    """

    platform: ClassVar[Platform]
    name: ClassVar[str]
    history: ClassVar[bool] = False

    def __init__(
        self,
        session: aiohttp.ClientSession,
        session_manager: SessionManager,
        archive: Optional[RawPayloadArchive] = None,
    ) -> None:
        self.session = session
        self.session_manager = session_manager
        self.archive = archive

    async def fetch(self, account: Account, window: DayWindow) -> FetchResult:
        """Fetch and parse one day.

        Returns:
            FetchResult classifying the attempt

        Raises:
            AuthenticationImpossibleError: If no credential can be obtained
        """
        credentials = await self.session_manager.ensure_valid(account, self.platform)
        ctx = FetchContext(account=account, credentials=credentials)

        try:
            fragment = await self.collect(ctx, window)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            result = classify_exception(exc)
            if result.error:
                result.error = redact_text(result.error, credentials.secrets())
            return result

        return FetchResult(FetchOutcome.SUCCESS, fragment=fragment)

    async def collect(self, ctx: FetchContext, window: DayWindow) -> PlatformStats:
        """Issue the metric's requests and parse them into a fragment.

        Raises:
            MissingDataError: When the platform reports no data for the day
            MalformedResponseError: When the response shape is unexpected
            PlatformApiError: For non-2xx responses
        """
        raise NotImplementedError

    async def _get_json(
        self,
        ctx: FetchContext,
        window: DayWindow,
        url: str,
        headers: dict[str, str],
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        async with self.session.get(url, headers=headers, params=params) as resp:
            payload = await self._read_json(resp, url, ctx)
        await self._archive(ctx, window, payload)
        return payload

    async def _post_json(
        self,
        ctx: FetchContext,
        window: DayWindow,
        url: str,
        headers: dict[str, str],
        json: Any = None,
        data: Optional[str] = None,
    ) -> Any:
        async with self.session.post(url, headers=headers, json=json, data=data) as resp:
            payload = await self._read_json(resp, url, ctx)
        await self._archive(ctx, window, payload)
        return payload

    async def _read_json(self, resp: Any, url: str, ctx: FetchContext) -> Any:
        if resp.status >= 400:
            body = await resp.text()
            raise PlatformApiError(
                resp.status,
                redact_text(body[:500], ctx.credentials.secrets()),
                url=url,
            )
        try:
            return await resp.json(content_type=None)
        except ValueError as exc:
            raise MalformedResponseError(f"Invalid JSON from {url}: {exc}") from exc

    async def _archive(self, ctx: FetchContext, window: DayWindow, payload: Any) -> None:
        if self.archive is not None:
            await self.archive.append(
                ctx.account.name, self.platform, self.name, window.stat_date, payload
            )
