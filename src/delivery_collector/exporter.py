"""Push merged daily records to the central stats store.

The central side exposes one upsert endpoint keyed by restaurant name and
date. Only platform namespaces that were actually collected for a day are
sent, so a day that only has Grab data never overwrites GoJek columns with
zeros.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import aiohttp

from .exceptions import ExportError
from .schemas.accounts import Account, Platform
from .schemas.stats import DailyStatRecord
from .store import StatStore


logger = logging.getLogger(__name__)


SAVE_STATS_PATH = "/api/collector/save_stats"


@dataclass
class ExportReport:
    account: str
    batches_sent: int = 0
    batches_failed: int = 0
    records_sent: int = 0
    saved_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.batches_failed == 0


def build_payload(
    account: Account,
    records: list[DailyStatRecord],
    include_commission: bool,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "restaurant_name": account.name,
        "grab_stats": [
            record.export_payload(Platform.GRAB)
            for record in records
            if record.has_platform_data(Platform.GRAB)
        ],
        "gojek_stats": [
            record.export_payload(Platform.GOJEK)
            for record in records
            if record.has_platform_data(Platform.GOJEK)
        ],
    }
    if include_commission and account.commission:
        payload["commission"] = account.commission
    return payload


class SyncExporter:
    """Batches stored records and posts them to ``save_stats``."""

    def __init__(
        self,
        base_url: str,
        session: aiohttp.ClientSession,
        store: StatStore,
        api_key: Optional[str] = None,
        batch_days: int = 90,
        account_batch: int = 50,
        timeout: float = 30.0,
    ) -> None:
        """Initialize exporter.

        Args:
            base_url: Central store base URL (no trailing path)
            session: Injected aiohttp ClientSession
            store: Local stat store to read records from
            api_key: Optional bearer key for the central endpoint (never logged)
            batch_days: Max records per request
            account_batch: Accounts exported concurrently per group
            timeout: Per-request timeout in seconds
        """
        self.url = base_url.rstrip("/") + SAVE_STATS_PATH
        self.session = session
        self.store = store
        self.api_key = api_key
        self.batch_days = batch_days
        self.account_batch = account_batch
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def post_batch(self, payload: dict[str, Any]) -> int:
        """Send one batch.

        Returns:
            ``saved_count`` reported by the central store

        Raises:
            ExportError: On transport failure, non-2xx status or
                ``success`` not true
        """
        try:
            async with self.session.post(
                self.url, json=payload, headers=self._headers(), timeout=self.timeout
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    body = await resp.text()
                    raise ExportError(f"HTTP {resp.status}: {body[:200]}", status=resp.status)
                try:
                    data = await resp.json(content_type=None)
                except ValueError as exc:
                    raise ExportError(f"Invalid JSON response: {exc}", status=resp.status) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ExportError(f"Network error: {exc!r}") from exc

        if not isinstance(data, dict) or data.get("success") is not True:
            raise ExportError(f"Central store rejected batch: {data!r}"[:300])
        return int(data.get("saved_count") or 0)

    async def export(self, account: Account, records: list[DailyStatRecord]) -> ExportReport:
        """Export ``records`` for one account in ``batch_days`` chunks.

        Failed batches are logged and skipped; the commission overlay rides
        on the first batch only.
        """
        report = ExportReport(account=account.name)
        for index in range(0, len(records), self.batch_days):
            batch = records[index:index + self.batch_days]
            payload = build_payload(account, batch, include_commission=index == 0)
            try:
                saved = await self.post_batch(payload)
            except ExportError as exc:
                report.batches_failed += 1
                report.errors.append(str(exc))
                logger.error(
                    "Export batch failed: account=%s, batch=%s, records=%s: %s",
                    account.name,
                    index // self.batch_days + 1,
                    len(batch),
                    exc,
                )
                continue

            report.batches_sent += 1
            report.records_sent += len(batch)
            report.saved_count += saved
            logger.info(
                "Exported %s records for %s (saved_count=%s)", len(batch), account.name, saved
            )
        return report

    async def export_account(self, account: Account, since: Optional[date] = None) -> ExportReport:
        """Page through an account's stored records and export each page."""
        total = ExportReport(account=account.name)
        offset = 0
        while True:
            records = self.store.records_for_export(
                account.name, limit=self.batch_days, offset=offset, since=since
            )
            if not records:
                break
            # Commission goes out once per account, with the first page.
            if offset:
                account = account.model_copy(update={"commission": {}})
            page = await self.export(account, records)
            total.batches_sent += page.batches_sent
            total.batches_failed += page.batches_failed
            total.records_sent += page.records_sent
            total.saved_count += page.saved_count
            total.errors.extend(page.errors)
            offset += len(records)
        return total

    async def export_all(
        self,
        accounts: list[Account],
        since: Optional[date] = None,
    ) -> list[ExportReport]:
        """Export every account, ``account_batch`` accounts at a time."""
        reports: list[ExportReport] = []
        for index in range(0, len(accounts), self.account_batch):
            group = accounts[index:index + self.account_batch]
            reports.extend(
                await asyncio.gather(*(self.export_account(account, since) for account in group))
            )
        failed = sum(1 for report in reports if not report.ok)
        logger.info("Export finished: accounts=%s, with_failures=%s", len(reports), failed)
        return reports
