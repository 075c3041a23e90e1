"""Smoke test for the Grab merchant portal endpoints.

Validates that a live token still resolves identifiers and that the
insights query returns the columns the sales parser reads.

Run with valid credentials:
    PYTHONPATH=. pytest tests/smoke/test_grab_api.py -v
"""
import os
from datetime import date, timedelta

import aiohttp
import pytest

from src.delivery_collector.platforms.grab import (
    INSIGHTS_URL,
    discover_identifiers,
    grab_headers,
)
from src.delivery_collector.scheduling import grab_window
from src.delivery_collector.schemas.accounts import CredentialBundle, GrabProfile


@pytest.mark.skipif(not os.getenv("GRAB_ACCESS_TOKEN"), reason="GRAB_ACCESS_TOKEN not set")
@pytest.mark.asyncio
async def test_grab_identifiers_and_insights():
    """PASS Criteria:
    - identifier lookups resolve store_id and food_entity_id
    - insights query returns HTTP 200 with a data list
    """
    credentials = CredentialBundle(access_token=os.getenv("GRAB_ACCESS_TOKEN"))

    async with aiohttp.ClientSession() as session:
        found = await discover_identifiers(session, credentials)

        assert found.get("store_id"), "store_id lookup failed"
        assert found.get("food_entity_id"), "food_entity_id lookup failed"

        profile = GrabProfile(store_id=found["store_id"], food_entity_id=found["food_entity_id"])
        window = grab_window(date.today() - timedelta(days=2))
        body = {
            "parentEntityIds": [profile.store_id],
            "storeGrabIDs": [profile.food_entity_id],
            "businessLines": ["FOOD"],
            "startDate": window.start,
            "endDate": window.end,
            "queryNames": ["mex-insightsv2-001-list"],
        }
        async with session.post(
            INSIGHTS_URL, json=body, headers=grab_headers(credentials.access_token)
        ) as response:
            assert response.status == 200, f"Insights request failed: {response.status}"
            result = await response.json(content_type=None)

    assert isinstance(result.get("data"), list)
