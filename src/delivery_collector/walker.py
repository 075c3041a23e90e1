"""Backward full-history backfill, one period at a time."""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from .exceptions import AuthenticationImpossibleError
from .platforms.base import MetricFetcher
from .retry import DayLoopRunner, LoopReport, MergeFn
from .scheduling import DayWindowScheduler
from .schemas.accounts import Account, Platform


logger = logging.getLogger(__name__)


@dataclass
class PeriodReport:
    start_date: date
    end_date: date
    loops: list[LoopReport] = field(default_factory=list)
    skipped_platforms: list[Platform] = field(default_factory=list)

    @property
    def any_success(self) -> bool:
        return any(loop.any_success for loop in self.loops)


@dataclass
class WalkReport:
    account: str
    periods: list[PeriodReport] = field(default_factory=list)
    stopped_reason: Optional[str] = None

    @property
    def days_collected(self) -> int:
        return sum(len(loop.succeeded) for period in self.periods for loop in period.loops)


class BackwardHistoryWalker:
    """Walks history backwards while any history metric still finds data.

    Each step covers one period (a calendar month by default) ending the day
    before the previous period started. The walk continues while at least
    one fetcher on either platform succeeded on at least one day of the
    period; it stops on the first period where nothing succeeded or when
    ``max_periods`` is reached. A real gap that coincides with an outage
    therefore truncates the walk; explicit date ranges are the way to fill
    such holes.
    """

    def __init__(
        self,
        scheduler: DayWindowScheduler,
        runner: DayLoopRunner,
        fetchers: dict[Platform, list[MetricFetcher]],
        merge: MergeFn,
        period: relativedelta = relativedelta(months=1),
        max_periods: int = 60,
    ) -> None:
        self.scheduler = scheduler
        self.runner = runner
        self.fetchers = fetchers
        self.merge = merge
        self.period = period
        self.max_periods = max_periods

    def period_bounds(self, end_date: date) -> tuple[date, date]:
        """First and last day of the period ending on ``end_date``."""
        start_date = end_date - self.period + timedelta(days=1)
        return start_date, end_date

    async def walk(self, account: Account, reference_end: date) -> WalkReport:
        """Backfill ``account`` from ``reference_end`` backwards.

        Args:
            account: Account to backfill
            reference_end: Last day of the first (newest) period

        Returns:
            WalkReport with one PeriodReport per visited period
        """
        report = WalkReport(account=account.name)
        blocked: set[Platform] = set()
        end_date = reference_end

        while True:
            if len(report.periods) >= self.max_periods:
                report.stopped_reason = f"reached max_periods={self.max_periods}"
                break

            start_date, end_date = self.period_bounds(end_date)
            period = PeriodReport(start_date=start_date, end_date=end_date)
            report.periods.append(period)
            logger.info(
                "History walk: account=%s, period=%s..%s", account.name, start_date, end_date
            )

            for platform, fetchers in self.fetchers.items():
                if platform in blocked or not account.has_platform(platform):
                    continue
                windows = self.scheduler.windows(platform, start_date, end_date)
                for fetcher in fetchers:
                    try:
                        loop = await self.runner.run(account, fetcher, windows, self.merge)
                    except AuthenticationImpossibleError as exc:
                        logger.error("%s; skipping platform for the rest of the walk", exc)
                        blocked.add(platform)
                        period.skipped_platforms.append(platform)
                        break
                    except Exception as exc:
                        logger.error(
                            "History loop crashed: account=%s, platform=%s, metric=%s, "
                            "period=%s..%s: %s",
                            account.name,
                            platform.value,
                            fetcher.name,
                            start_date,
                            end_date,
                            exc,
                        )
                        continue
                    period.loops.append(loop)

            if not period.any_success:
                report.stopped_reason = f"no metric succeeded in {start_date}..{end_date}"
                break

            end_date = start_date - timedelta(days=1)

        logger.info(
            "History walk finished: account=%s, periods=%s, days=%s, reason=%s",
            account.name,
            len(report.periods),
            report.days_collected,
            report.stopped_reason,
        )
        return report
