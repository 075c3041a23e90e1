"""Unit tests for CredentialStore persistence and the JSON mirror."""
import json

import pytest

from src.delivery_collector.auth.credential_store import CredentialStore
from src.delivery_collector.schemas.accounts import (
    Account,
    CredentialBundle,
    GojekProfile,
    GrabProfile,
    Platform,
)


@pytest.fixture
def account():
    return Account(
        name="resto",
        gojek=GojekProfile(
            credentials=CredentialBundle(refresh_token="configured-refresh", username="u", password="p"),
        ),
        grab=GrabProfile(store_id="S-1"),
    )


def test_load_without_stored_row_returns_configuration(tmp_path, account):
    store = CredentialStore(tmp_path / "stats.db")

    bundle = store.load(account, Platform.GOJEK)

    assert bundle.refresh_token == "configured-refresh"


@pytest.mark.asyncio
async def test_stored_tokens_override_configuration(tmp_path, account):
    """A rotated refresh token on disk wins over the stale configured one."""
    store = CredentialStore(tmp_path / "stats.db")
    await store.save(
        "resto",
        Platform.GOJEK,
        CredentialBundle(access_token="a2", refresh_token="rotated-refresh"),
    )

    bundle = store.load(account, Platform.GOJEK)

    assert bundle.access_token == "a2"
    assert bundle.refresh_token == "rotated-refresh"
    assert bundle.username == "u"
    assert bundle.password == "p"


@pytest.mark.asyncio
async def test_save_updates_legacy_mirror(tmp_path):
    mirror = tmp_path / "restaurants.json"
    mirror.write_text(
        json.dumps([{"name": "resto", "gojek_refresh_token": "old", "grab_token": "old-jwt"}]),
        encoding="utf-8",
    )
    store = CredentialStore(tmp_path / "stats.db", mirror_path=mirror)

    await store.save("resto", Platform.GOJEK, CredentialBundle(access_token="a", refresh_token="new"))
    await store.save("resto", Platform.GRAB, CredentialBundle(access_token="new-jwt"))

    data = json.loads(mirror.read_text(encoding="utf-8"))
    assert data[0]["gojek_refresh_token"] == "new"
    assert data[0]["gojek_access_token"] == "a"
    assert data[0]["grab_token"] == "new-jwt"


@pytest.mark.asyncio
async def test_save_updates_nested_mirror(tmp_path):
    mirror = tmp_path / "accounts.json"
    mirror.write_text(
        json.dumps(
            {
                "restaurants": [
                    {"name": "resto", "gojek": {"credentials": {"refresh_token": "old"}}}
                ]
            }
        ),
        encoding="utf-8",
    )
    store = CredentialStore(tmp_path / "stats.db", mirror_path=mirror)

    await store.save("resto", Platform.GOJEK, CredentialBundle(access_token="a", refresh_token="new"))

    data = json.loads(mirror.read_text(encoding="utf-8"))
    credentials = data["restaurants"][0]["gojek"]["credentials"]
    assert credentials == {"refresh_token": "new", "access_token": "a"}


@pytest.mark.asyncio
async def test_missing_mirror_does_not_fail_save(tmp_path):
    store = CredentialStore(tmp_path / "stats.db", mirror_path=tmp_path / "absent.json")

    bundle = await store.save("resto", Platform.GRAB, CredentialBundle(access_token="jwt"))

    assert bundle.updated_at is not None


def test_hydrate_fills_only_missing_identifiers(tmp_path, account):
    store = CredentialStore(tmp_path / "stats.db")
    store.save_identifiers(
        "resto", Platform.GRAB, {"store_id": "S-other", "advertiser_id": "ADV-9"}
    )

    hydrated = store.hydrate(account)

    assert hydrated.grab.store_id == "S-1"
    assert hydrated.grab.advertiser_id == "ADV-9"
    assert account.grab.advertiser_id is None
