"""Unit tests for the backward history walker."""
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.delivery_collector.exceptions import AuthenticationImpossibleError
from src.delivery_collector.platforms.base import FetchOutcome, FetchResult
from src.delivery_collector.retry import DayLoopRunner, RetryPolicy
from src.delivery_collector.scheduling import DayWindowScheduler
from src.delivery_collector.schemas.accounts import Account, GojekProfile, GrabProfile, Platform
from src.delivery_collector.schemas.stats import GrabDailyStats
from src.delivery_collector.walker import BackwardHistoryWalker


class HistoryFetcher:
    """Has data on and after ``first_day``, nothing before."""

    name = "sales"

    def __init__(self, first_day, platform=Platform.GRAB):
        self.first_day = first_day
        self.platform = platform
        self.calls = 0

    async def fetch(self, account, window):
        self.calls += 1
        if window.stat_date >= self.first_day:
            return FetchResult(FetchOutcome.SUCCESS, fragment=GrabDailyStats(sales=1))
        return FetchResult(FetchOutcome.MISSING_DATA)


@pytest.fixture
def account():
    return Account(name="resto", grab=GrabProfile(), gojek=GojekProfile())


@pytest.fixture
def runner():
    return DayLoopRunner(MagicMock(), RetryPolicy(missing_data_limit=10))


@pytest.mark.asyncio
async def test_walk_stops_after_period_without_success(account, runner):
    fetcher = HistoryFetcher(first_day=date(2024, 8, 1))
    walker = BackwardHistoryWalker(
        DayWindowScheduler(), runner, {Platform.GRAB: [fetcher]}, MagicMock()
    )

    report = await walker.walk(account, date(2024, 9, 30))

    assert len(report.periods) == 3
    assert report.periods[0].any_success
    assert report.periods[1].any_success
    assert not report.periods[2].any_success
    assert "no metric succeeded" in report.stopped_reason
    assert report.days_collected == 61


@pytest.mark.asyncio
async def test_periods_are_contiguous_and_disjoint(account, runner):
    fetcher = HistoryFetcher(first_day=date(2024, 1, 1))
    walker = BackwardHistoryWalker(
        DayWindowScheduler(), runner, {Platform.GRAB: [fetcher]}, MagicMock(), max_periods=4
    )

    report = await walker.walk(account, date(2024, 9, 30))

    for newer, older in zip(report.periods, report.periods[1:]):
        assert older.end_date == newer.start_date - timedelta(days=1)
        assert older.start_date <= older.end_date


@pytest.mark.asyncio
async def test_walk_respects_max_periods(account, runner):
    fetcher = HistoryFetcher(first_day=date(2000, 1, 1))
    walker = BackwardHistoryWalker(
        DayWindowScheduler(), runner, {Platform.GRAB: [fetcher]}, MagicMock(), max_periods=2
    )

    report = await walker.walk(account, date(2024, 9, 30))

    assert len(report.periods) == 2
    assert "max_periods" in report.stopped_reason


@pytest.mark.asyncio
async def test_any_fetcher_success_keeps_walking(account, runner):
    """OR across metrics and platforms: one live metric keeps the walk going."""
    exhausted = HistoryFetcher(first_day=date(2024, 9, 1))
    alive = HistoryFetcher(first_day=date(2024, 8, 15), platform=Platform.GOJEK)
    walker = BackwardHistoryWalker(
        DayWindowScheduler(),
        runner,
        {Platform.GRAB: [exhausted], Platform.GOJEK: [alive]},
        MagicMock(),
    )

    report = await walker.walk(account, date(2024, 9, 30))

    assert len(report.periods) == 3
    assert report.periods[1].any_success


@pytest.mark.asyncio
async def test_auth_failure_skips_platform(account):
    failing = MagicMock()
    failing.name = "sales"
    failing.platform = Platform.GRAB
    failing.fetch = AsyncMock(side_effect=AuthenticationImpossibleError("resto", "grab"))
    walker = BackwardHistoryWalker(
        DayWindowScheduler(),
        DayLoopRunner(MagicMock()),
        {Platform.GRAB: [failing]},
        MagicMock(),
    )

    report = await walker.walk(account, date(2024, 9, 30))

    assert report.periods[0].skipped_platforms == [Platform.GRAB]
    assert len(report.periods) == 1


def test_period_bounds_one_month():
    walker = BackwardHistoryWalker(DayWindowScheduler(), MagicMock(), {}, MagicMock())

    assert walker.period_bounds(date(2024, 3, 31)) == (date(2024, 3, 1), date(2024, 3, 31))
