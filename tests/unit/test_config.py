"""Unit tests for settings and account loading."""
import json

import pytest

from src.delivery_collector.config import CollectorSettings, load_accounts
from src.delivery_collector.exceptions import ConfigurationError
from src.delivery_collector.schemas.accounts import Platform


LEGACY_RECORD = {
    "name": "Warung Bu Sri",
    "gojek_refresh_token": "gj-refresh",
    "gojek_merchant_id": "M-1",
    "grab_token": "grab-jwt",
    "grab_store_id": 123,
    "grab": {"username": "owner", "password": "pw"},
    "commission": {"grab": 0.2},
}


def test_defaults_from_empty_environment(monkeypatch):
    for name in ("COLLECTOR_DB_PATH", "COLLECTOR_ERROR_LIMIT", "COLLECTOR_MISSING_DATA_LIMIT"):
        monkeypatch.delenv(name, raising=False)

    settings = CollectorSettings.from_env()

    assert settings.missing_data_limit == 10
    assert settings.error_limit == 5
    assert str(settings.db_path) == "data/delivery_stats.db"


def test_invalid_integer_raises(monkeypatch):
    monkeypatch.setenv("COLLECTOR_ERROR_LIMIT", "five")

    with pytest.raises(ConfigurationError, match="COLLECTOR_ERROR_LIMIT"):
        CollectorSettings.from_env()


def test_invalid_timezone_falls_back_to_host_time():
    settings = CollectorSettings(local_timezone="Mars/Olympus")

    assert settings.tzinfo is None


def test_load_legacy_accounts_from_file(tmp_path):
    path = tmp_path / "restaurants.json"
    path.write_text(json.dumps([LEGACY_RECORD]), encoding="utf-8")

    accounts = load_accounts(CollectorSettings(accounts_file=path))

    account = accounts[0]
    assert account.name == "Warung Bu Sri"
    assert account.gojek.credentials.refresh_token == "gj-refresh"
    assert account.gojek.merchant_id == "M-1"
    assert account.grab.credentials.access_token == "grab-jwt"
    assert account.grab.credentials.username == "owner"
    assert account.grab.store_id == "123"
    assert account.platforms() == [Platform.GRAB, Platform.GOJEK]


def test_load_nested_accounts_from_inline_json():
    data = {
        "restaurants": [
            {
                "name": "resto",
                "status": "paused",
                "gojek": {"credentials": {"refresh_token": "r"}, "merchant_id": "M"},
            }
        ]
    }

    accounts = load_accounts(CollectorSettings(accounts_json=json.dumps(data)))

    assert accounts[0].gojek.merchant_id == "M"
    assert accounts[0].grab is None
    assert not accounts[0].is_active


def test_missing_source_raises():
    with pytest.raises(ConfigurationError, match="No accounts configured"):
        load_accounts(CollectorSettings())


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_accounts(CollectorSettings(accounts_file=tmp_path / "absent.json"))


def test_invalid_json_raises():
    with pytest.raises(ConfigurationError, match="Invalid JSON"):
        load_accounts(CollectorSettings(accounts_json="[{"))


def test_duplicate_names_raise():
    records = [{"name": "resto"}, {"name": "resto"}]

    with pytest.raises(ConfigurationError, match="Duplicate"):
        load_accounts(CollectorSettings(accounts_json=json.dumps(records)))
