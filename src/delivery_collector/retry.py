"""Day-by-day fetch loop with failure streaks and early termination.

One runner drives every metric: it walks the day windows, classifies each
fetch outcome and decides whether to retry the day, move on, or stop the
loop. Stopping early is a partial collection, never an exception.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Iterable, Optional

from .auth.session import SessionManager
from .config import CollectorSettings
from .platforms.base import FetchOutcome, FetchResult, MetricFetcher
from .scheduling import DayWindow
from .schemas.accounts import Account, Platform
from .schemas.stats import PlatformStats


logger = logging.getLogger(__name__)


MergeFn = Callable[[str, date, PlatformStats], object]
StateFn = Callable[[str, Platform, str, date, str, Optional[str]], None]


@dataclass
class RetryPolicy:
    """Thresholds for one fetch loop."""

    missing_data_limit: int = 10
    error_limit: int = 5
    max_transient_retries: int = 20
    transient_backoff_base: float = 0.0

    RETRY_MULTIPLIER = 2.0
    RETRY_MAX_DELAY = 30.0  # seconds
    RETRY_JITTER_MS = 250  # milliseconds

    @classmethod
    def from_settings(cls, settings: CollectorSettings) -> "RetryPolicy":
        return cls(
            missing_data_limit=settings.missing_data_limit,
            error_limit=settings.error_limit,
            max_transient_retries=settings.max_transient_retries,
            transient_backoff_base=settings.transient_backoff,
        )

    def backoff(self, attempt: int) -> float:
        """Calculate exponential backoff with jitter.

        Args:
            attempt: Current retry attempt number (1-indexed)

        Returns:
            Delay in seconds (0 when backoff is disabled)
        """
        if self.transient_backoff_base <= 0:
            return 0.0
        delay = min(
            self.transient_backoff_base * (self.RETRY_MULTIPLIER ** (attempt - 1)),
            self.RETRY_MAX_DELAY,
        )
        jitter = random.uniform(0, self.RETRY_JITTER_MS / 1000.0)
        return delay + jitter


@dataclass
class FailureStreaks:
    missing_data: int = 0
    errors: int = 0

    def reset(self) -> None:
        self.missing_data = 0
        self.errors = 0


@dataclass
class LoopReport:
    """What one (account, platform, metric) loop did."""

    account: str
    platform: Platform
    metric: str
    succeeded: list[date] = field(default_factory=list)
    missing: list[date] = field(default_factory=list)
    failed: list[date] = field(default_factory=list)
    attempts: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def any_success(self) -> bool:
        return bool(self.succeeded)

    @property
    def partial(self) -> bool:
        return self.aborted or bool(self.failed)


class DayLoopRunner:
    """Runs one metric fetcher over a sequence of day windows.

    Outcome handling per day:
        success: merge the fragment, reset both streaks
        missing-data: count toward the missing streak, next day
        auth-error: force a credential refresh and retry the day; a second
            consecutive unauthorized response also counts as an error
        transient-error: retry the day up to ``max_transient_retries``
            times, then count one error and move on
        fatal-error: count one error and retry the day

    The loop stops as soon as either streak reaches its limit.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        policy: Optional[RetryPolicy] = None,
        record_state: Optional[StateFn] = None,
    ) -> None:
        self.session_manager = session_manager
        self.policy = policy or RetryPolicy()
        self.record_state = record_state

    async def run(
        self,
        account: Account,
        fetcher: MetricFetcher,
        windows: Iterable[DayWindow],
        merge: MergeFn,
    ) -> LoopReport:
        """Fetch every window in order until done or a streak limit is hit.

        Args:
            account: Account to collect
            fetcher: Metric fetcher for one platform
            windows: Day windows in the order to visit them
            merge: Called as ``merge(account_name, stat_date, fragment)``
                for every successful day

        Returns:
            LoopReport with per-day outcomes

        Raises:
            AuthenticationImpossibleError: If credentials cannot be obtained
                or renewed; the caller skips this account and platform
        """
        policy = self.policy
        streaks = FailureStreaks()
        report = LoopReport(account=account.name, platform=fetcher.platform, metric=fetcher.name)
        refreshed = False

        for window in windows:
            transient_attempts = 0

            while True:
                report.attempts += 1
                result = await fetcher.fetch(account, window)

                if result.outcome != FetchOutcome.AUTH_ERROR:
                    refreshed = False

                if result.ok:
                    merge(account.name, window.stat_date, result.fragment)
                    streaks.reset()
                    report.succeeded.append(window.stat_date)
                    self._record(account, fetcher, window, result)
                    break

                if result.outcome == FetchOutcome.MISSING_DATA:
                    streaks.missing_data += 1
                    report.missing.append(window.stat_date)
                    self._record(account, fetcher, window, result)
                    logger.info(
                        "No data: account=%s, platform=%s, metric=%s, date=%s (streak=%s)",
                        account.name,
                        fetcher.platform.value,
                        fetcher.name,
                        window.stat_date,
                        streaks.missing_data,
                    )
                    break

                if result.outcome == FetchOutcome.AUTH_ERROR:
                    if refreshed:
                        streaks.errors += 1
                        self._log_failure(account, fetcher, window, result, streaks)
                        if streaks.errors >= policy.error_limit:
                            self._fail_day(report, account, fetcher, window, result)
                            break
                    refreshed = True
                    await self.session_manager.refresh(account, fetcher.platform)
                    continue

                if result.outcome == FetchOutcome.TRANSIENT_ERROR:
                    transient_attempts += 1
                    if transient_attempts > policy.max_transient_retries:
                        streaks.errors += 1
                        self._log_failure(account, fetcher, window, result, streaks)
                        self._fail_day(report, account, fetcher, window, result)
                        break
                    delay = policy.backoff(transient_attempts)
                    logger.debug(
                        "Transient error: account=%s, platform=%s, metric=%s, date=%s, "
                        "attempt=%s, backoff=%.2fs: %s",
                        account.name,
                        fetcher.platform.value,
                        fetcher.name,
                        window.stat_date,
                        transient_attempts,
                        delay,
                        result.error,
                    )
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                streaks.errors += 1
                self._log_failure(account, fetcher, window, result, streaks)
                if streaks.errors >= policy.error_limit:
                    self._fail_day(report, account, fetcher, window, result)
                    break

            if streaks.missing_data >= policy.missing_data_limit:
                report.aborted = True
                report.abort_reason = f"{streaks.missing_data} consecutive days without data"
            elif streaks.errors >= policy.error_limit:
                report.aborted = True
                report.abort_reason = f"{streaks.errors} consecutive errors"

            if report.aborted:
                logger.warning(
                    "Partial collection for account=%s, platform=%s, metric=%s: %s (stopped at %s)",
                    account.name,
                    fetcher.platform.value,
                    fetcher.name,
                    report.abort_reason,
                    window.stat_date,
                )
                break

        return report

    def _fail_day(
        self,
        report: LoopReport,
        account: Account,
        fetcher: MetricFetcher,
        window: DayWindow,
        result: FetchResult,
    ) -> None:
        report.failed.append(window.stat_date)
        self._record(account, fetcher, window, result)

    def _log_failure(
        self,
        account: Account,
        fetcher: MetricFetcher,
        window: DayWindow,
        result: FetchResult,
        streaks: FailureStreaks,
    ) -> None:
        logger.warning(
            "Fetch failed: account=%s, platform=%s, metric=%s, date=%s, outcome=%s "
            "(errors=%s): %s",
            account.name,
            fetcher.platform.value,
            fetcher.name,
            window.stat_date,
            result.outcome.value,
            streaks.errors,
            result.error,
        )

    def _record(
        self,
        account: Account,
        fetcher: MetricFetcher,
        window: DayWindow,
        result: FetchResult,
    ) -> None:
        if self.record_state is None:
            return
        self.record_state(
            account.name,
            fetcher.platform,
            fetcher.name,
            window.stat_date,
            result.outcome.value,
            result.error,
        )
