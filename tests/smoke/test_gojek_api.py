"""Smoke test for the GoBiz analytics endpoints.

Run with valid credentials:
    PYTHONPATH=. pytest tests/smoke/test_gojek_api.py -v
"""
import os
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from src.delivery_collector.platforms.base import FetchOutcome
from src.delivery_collector.platforms.gojek import TransactionsFetcher, discover_merchant_id
from src.delivery_collector.scheduling import gojek_window
from src.delivery_collector.schemas.accounts import Account, CredentialBundle, GojekProfile


@pytest.mark.skipif(not os.getenv("GOJEK_ACCESS_TOKEN"), reason="GOJEK_ACCESS_TOKEN not set")
@pytest.mark.asyncio
async def test_gojek_merchant_and_transactions():
    """PASS Criteria:
    - the profile lookup yields a merchant id
    - the transactions msearch classifies as success or missing data, never an error
    """
    credentials = CredentialBundle(access_token=os.getenv("GOJEK_ACCESS_TOKEN"))
    session_manager = MagicMock()
    session_manager.ensure_valid = AsyncMock(return_value=credentials)

    async with aiohttp.ClientSession() as session:
        merchant_id = os.getenv("GOJEK_MERCHANT_ID") or await discover_merchant_id(
            session, credentials
        )
        assert merchant_id, "merchant id lookup failed"

        account = Account(name="smoke", gojek=GojekProfile(merchant_id=merchant_id))
        fetcher = TransactionsFetcher(session, session_manager)
        result = await fetcher.fetch(account, gojek_window(date.today() - timedelta(days=2)))

    assert result.outcome in (FetchOutcome.SUCCESS, FetchOutcome.MISSING_DATA), result.error
