"""Collection run orchestrator.

Coordinates credentials, identifier discovery, per-metric day loops and
the export step for a list of accounts. Each account is guarded by a lock
so two runs never collect the same account at the same time.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import AsyncIterator, Iterable, Optional

import aiohttp
from redis.asyncio import Redis
from redis.asyncio.lock import Lock as AsyncRedisLock

from .archive import RawPayloadArchive
from .auth.credential_store import CredentialStore
from .auth.session import SessionManager
from .config import CollectorSettings
from .exceptions import AccountLockedError, AuthenticationImpossibleError, ConfigurationError
from .exporter import ExportReport, SyncExporter
from .platforms import build_fetchers
from .platforms.base import MetricFetcher
from .platforms.gojek import discover_merchant_id
from .platforms.grab import discover_identifiers
from .retry import DayLoopRunner, LoopReport, RetryPolicy
from .scheduling import DayWindow, DayWindowScheduler
from .schemas.accounts import Account, Platform
from .store import StatStore
from .walker import BackwardHistoryWalker, WalkReport


logger = logging.getLogger(__name__)


@dataclass
class AccountReport:
    account: str
    loops: list[LoopReport] = field(default_factory=list)
    skipped_platforms: dict[str, str] = field(default_factory=dict)
    walk: Optional[WalkReport] = None
    locked: bool = False
    error: Optional[str] = None

    @property
    def partial(self) -> bool:
        if self.error or self.skipped_platforms:
            return True
        return any(loop.partial for loop in self.loops)


@dataclass
class CollectionReport:
    accounts: list[AccountReport] = field(default_factory=list)
    exports: list[ExportReport] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return any(report.partial or report.locked for report in self.accounts) or any(
            not export.ok for export in self.exports
        )

    def summary(self) -> dict[str, int]:
        return {
            "accounts": len(self.accounts),
            "locked": sum(1 for report in self.accounts if report.locked),
            "partial": sum(1 for report in self.accounts if report.partial),
            "days_collected": sum(
                len(loop.succeeded) for report in self.accounts for loop in report.loops
            )
            + sum(report.walk.days_collected for report in self.accounts if report.walk),
            "export_failures": sum(1 for export in self.exports if not export.ok),
        }


class DeliveryStatsCollector:
    """Runs collection for many accounts on one event loop."""

    LOCK_TTL_SECONDS = 6 * 3600

    def __init__(
        self,
        settings: CollectorSettings,
        session: aiohttp.ClientSession,
        store: StatStore,
        session_manager: SessionManager,
        credential_store: CredentialStore,
        redis: Optional[Redis] = None,
        archive: Optional[RawPayloadArchive] = None,
        exporter: Optional[SyncExporter] = None,
    ) -> None:
        """Initialize collector.

        Args:
            settings: Resolved collector settings
            session: Injected aiohttp ClientSession shared by every fetcher
            store: Local stat store
            session_manager: Credential cache and renewal
            credential_store: Durable token and identifier storage
            redis: Optional Redis client for cross-process account locks
            archive: Optional raw payload archive
            exporter: Optional exporter to the central stats store
        """
        self.settings = settings
        self.session = session
        self.store = store
        self.session_manager = session_manager
        self.credential_store = credential_store
        self.redis = redis
        self.archive = archive
        self.exporter = exporter

        self.scheduler = DayWindowScheduler(settings.tzinfo)
        self.runner = DayLoopRunner(
            session_manager,
            RetryPolicy.from_settings(settings),
            record_state=store.record_metric_state,
        )
        self._semaphore = asyncio.Semaphore(max(1, settings.max_concurrent_accounts))
        self._local_locks: dict[str, asyncio.Lock] = {}

    def today(self) -> date:
        return datetime.now(self.settings.tzinfo).date()

    def fetchers(self, platform: Platform, history_only: bool = False) -> list[MetricFetcher]:
        return build_fetchers(
            platform, self.session, self.session_manager, self.archive, history_only
        )

    @asynccontextmanager
    async def account_lock(self, account_name: str) -> AsyncIterator[None]:
        """Hold the per-account collection lock.

        Raises:
            AccountLockedError: If another run holds the lock
        """
        lock_key = f"delivery_collector:account_lock:{account_name}"

        if self.redis is None:
            lock = self._local_locks.setdefault(account_name, asyncio.Lock())
            if lock.locked():
                raise AccountLockedError(account_name, lock_key)
            async with lock:
                yield
            return

        redis_lock = AsyncRedisLock(
            self.redis,
            name=lock_key,
            timeout=self.LOCK_TTL_SECONDS,
            blocking=False,
        )
        acquired = await redis_lock.acquire(blocking=False)
        if not acquired:
            raise AccountLockedError(account_name, lock_key)

        logger.debug("Acquired account lock %s", lock_key)
        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except Exception as exc:
                logger.error("Failed to release lock %s: %s", lock_key, exc)

    async def prepare(self, account: Account, platform: Platform) -> Account:
        """Validate credentials and fill in missing platform identifiers.

        Returns:
            The account with any newly discovered identifiers applied

        Raises:
            AuthenticationImpossibleError: If no credential can be obtained
        """
        credentials = await self.session_manager.ensure_valid(account, platform)
        profile = account.profile(platform)
        missing = profile.missing_identifiers() if profile else []
        if not missing:
            return account

        logger.info(
            "Discovering %s identifiers for account=%s: %s",
            platform.value,
            account.name,
            ", ".join(missing),
        )
        try:
            if platform == Platform.GOJEK:
                merchant_id = await discover_merchant_id(self.session, credentials)
                found = {"merchant_id": merchant_id} if merchant_id else {}
            else:
                found = await discover_identifiers(self.session, credentials, profile)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning(
                "Identifier discovery failed for account=%s, platform=%s: %s",
                account.name,
                platform.value,
                exc,
            )
            return account

        if found:
            self.credential_store.save_identifiers(account.name, platform, found)
            account = account.with_identifiers(platform, found)
        return account

    def _platforms(self, account: Account, platforms: Optional[list[Platform]]) -> list[Platform]:
        return [p for p in account.platforms() if platforms is None or p in platforms]

    async def collect_account_range(
        self,
        account: Account,
        start_date: date,
        end_date: date,
        platforms: Optional[list[Platform]] = None,
    ) -> AccountReport:
        """Run every fetcher of every platform over ``start_date..end_date``."""
        report = AccountReport(account=account.name)
        account = self.credential_store.hydrate(account)

        for platform in self._platforms(account, platforms):
            try:
                account = await self.prepare(account, platform)
            except AuthenticationImpossibleError as exc:
                logger.error("%s; skipping platform", exc)
                report.skipped_platforms[platform.value] = str(exc)
                continue

            windows = self.scheduler.windows(platform, start_date, end_date)
            for fetcher in self.fetchers(platform):
                if not await self._run_metric(account, fetcher, windows, report):
                    break

        return report

    async def _run_metric(
        self,
        account: Account,
        fetcher: MetricFetcher,
        windows: Iterable[DayWindow],
        report: AccountReport,
    ) -> bool:
        """Run one metric loop into ``report``; False once the platform must be skipped."""
        try:
            loop = await self.runner.run(account, fetcher, windows, self.store.merge)
        except AuthenticationImpossibleError as exc:
            logger.error("%s; skipping remaining %s metrics", exc, fetcher.platform.value)
            report.skipped_platforms[fetcher.platform.value] = str(exc)
            return False
        except Exception as exc:
            logger.error(
                "Metric loop crashed: account=%s, platform=%s, metric=%s: %s",
                account.name,
                fetcher.platform.value,
                fetcher.name,
                exc,
                exc_info=True,
            )
            return True
        report.loops.append(loop)
        return True

    async def collect_account_failed(
        self,
        account: Account,
        platforms: Optional[list[Platform]] = None,
    ) -> AccountReport:
        """Re-run the (metric, day) slices whose last attempt ended in an error."""
        report = AccountReport(account=account.name)
        pending: dict[Platform, dict[str, set[date]]] = {}
        for slice_ in self.store.failed_slices(account.name):
            platform = Platform(slice_["platform"])
            if platforms is not None and platform not in platforms:
                continue
            day = date.fromisoformat(slice_["stat_date"])
            pending.setdefault(platform, {}).setdefault(slice_["metric"], set()).add(day)

        if not pending:
            logger.info("No failed slices for account=%s", account.name)
            return report

        account = self.credential_store.hydrate(account)
        for platform, metrics in pending.items():
            try:
                account = await self.prepare(account, platform)
            except AuthenticationImpossibleError as exc:
                logger.error("%s; skipping platform", exc)
                report.skipped_platforms[platform.value] = str(exc)
                continue

            for fetcher in self.fetchers(platform):
                days = metrics.get(fetcher.name)
                if not days:
                    continue
                logger.info(
                    "Re-running %s failed days: account=%s, platform=%s, metric=%s",
                    len(days),
                    account.name,
                    platform.value,
                    fetcher.name,
                )
                windows = [
                    self.scheduler.window(platform, day) for day in sorted(days, reverse=True)
                ]
                if not await self._run_metric(account, fetcher, windows, report):
                    break

        return report

    async def collect_account_history(
        self,
        account: Account,
        reference_end: date,
        platforms: Optional[list[Platform]] = None,
    ) -> AccountReport:
        report = AccountReport(account=account.name)
        account = self.credential_store.hydrate(account)

        fetchers: dict[Platform, list[MetricFetcher]] = {}
        for platform in self._platforms(account, platforms):
            try:
                account = await self.prepare(account, platform)
            except AuthenticationImpossibleError as exc:
                logger.error("%s; skipping platform", exc)
                report.skipped_platforms[platform.value] = str(exc)
                continue
            fetchers[platform] = self.fetchers(platform, history_only=True)

        walker = BackwardHistoryWalker(
            self.scheduler,
            self.runner,
            fetchers,
            self.store.merge,
            max_periods=self.settings.history_max_periods,
        )
        report.walk = await walker.walk(account, reference_end)
        return report

    async def _guarded(self, account: Account, work) -> AccountReport:
        async with self._semaphore:
            try:
                async with self.account_lock(account.name):
                    return await work(account)
            except AccountLockedError as exc:
                logger.warning("%s; skipping account", exc)
                return AccountReport(account=account.name, locked=True)
            except Exception as exc:
                logger.error(
                    "Collection failed for account=%s: %s", account.name, exc, exc_info=True
                )
                return AccountReport(account=account.name, error=str(exc))

    async def _run(self, accounts: list[Account], work) -> CollectionReport:
        active = [account for account in accounts if account.is_active]
        skipped = len(accounts) - len(active)
        if skipped:
            logger.info("Skipping %s inactive accounts", skipped)

        reports = await asyncio.gather(*(self._guarded(account, work) for account in active))
        return CollectionReport(accounts=list(reports))

    async def collect_range(
        self,
        accounts: list[Account],
        start_date: date,
        end_date: date,
        platforms: Optional[list[Platform]] = None,
    ) -> CollectionReport:
        logger.info("Collecting %s..%s for %s accounts", start_date, end_date, len(accounts))

        async def work(account: Account) -> AccountReport:
            return await self.collect_account_range(account, start_date, end_date, platforms)

        return await self._run(accounts, work)

    async def collect_recent(
        self,
        accounts: list[Account],
        days: Optional[int] = None,
        platforms: Optional[list[Platform]] = None,
    ) -> CollectionReport:
        """Collect the last ``days`` full days (today excluded).

        Raises:
            ConfigurationError: If ``days`` (or COLLECTOR_RECENT_DAYS) is below 1
        """
        if days is None:
            days = self.settings.recent_days
        if days < 1:
            raise ConfigurationError(f"Number of days must be at least 1, got {days}")
        today = self.today()
        return await self.collect_range(
            accounts, today - timedelta(days=days), today - timedelta(days=1), platforms
        )

    async def collect_failed(
        self,
        accounts: list[Account],
        platforms: Optional[list[Platform]] = None,
    ) -> CollectionReport:
        logger.info("Re-running failed slices for %s accounts", len(accounts))

        async def work(account: Account) -> AccountReport:
            return await self.collect_account_failed(account, platforms)

        return await self._run(accounts, work)

    async def collect_history(
        self,
        accounts: list[Account],
        reference_end: Optional[date] = None,
        platforms: Optional[list[Platform]] = None,
    ) -> CollectionReport:
        reference_end = reference_end or self.today() - timedelta(days=1)
        logger.info("Walking history back from %s for %s accounts", reference_end, len(accounts))

        async def work(account: Account) -> AccountReport:
            return await self.collect_account_history(account, reference_end, platforms)

        return await self._run(accounts, work)

    async def export(
        self,
        accounts: list[Account],
        since: Optional[date] = None,
    ) -> list[ExportReport]:
        if self.exporter is None:
            logger.warning("COLLECTOR_EXPORT_URL not configured, skipping export")
            return []
        active = [account for account in accounts if account.is_active]
        return await self.exporter.export_all(active, since=since)


def build_collector(
    settings: CollectorSettings,
    session: aiohttp.ClientSession,
    redis: Optional[Redis] = None,
) -> DeliveryStatsCollector:
    """Wire a collector from settings around an open aiohttp session."""
    store = StatStore(settings.db_path)
    credential_store = CredentialStore(settings.db_path, settings.credentials_mirror)
    session_manager = SessionManager(session, credential_store)
    archive = RawPayloadArchive(settings.raw_dir) if settings.raw_dir else None
    exporter = None
    if settings.export_url:
        exporter = SyncExporter(
            settings.export_url,
            session,
            store,
            api_key=settings.export_api_key,
            batch_days=settings.export_batch_days,
            account_batch=settings.export_account_batch,
            timeout=settings.export_timeout,
        )
    return DeliveryStatsCollector(
        settings,
        session,
        store,
        session_manager,
        credential_store,
        redis=redis,
        archive=archive,
        exporter=exporter,
    )
