"""Unit tests for the collector command line."""
from datetime import date

import pytest

from src.delivery_collector.cli import build_parser, main, select_accounts
from src.delivery_collector.exceptions import ConfigurationError
from src.delivery_collector.schemas.accounts import Account


def test_range_parses_dates():
    args = build_parser().parse_args(
        ["range", "--start", "2024-09-01", "--end", "2024-09-10", "--account", "a", "--account", "b"]
    )

    assert args.mode == "range"
    assert args.start == date(2024, 9, 1)
    assert args.end == date(2024, 9, 10)
    assert args.accounts == ["a", "b"]
    assert not args.no_export


def test_invalid_date_is_rejected():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["range", "--start", "10/09/2024", "--end", "2024-09-10"])


def test_platform_choices():
    args = build_parser().parse_args(["recent", "--platform", "gojek", "--no-export"])

    assert args.platform == "gojek"
    assert args.no_export
    with pytest.raises(SystemExit):
        build_parser().parse_args(["recent", "--platform", "shopeefood"])


def test_select_accounts():
    accounts = [Account(name="a"), Account(name="b")]

    assert select_accounts(accounts, None) == accounts
    assert [a.name for a in select_accounts(accounts, ["b"])] == ["b"]
    with pytest.raises(ConfigurationError):
        select_accounts(accounts, ["c"])


@pytest.mark.asyncio
async def test_main_without_accounts_exits_nonzero(monkeypatch, tmp_path):
    monkeypatch.delenv("COLLECTOR_ACCOUNTS_FILE", raising=False)
    monkeypatch.delenv("RESTAURANTS_DATA", raising=False)
    monkeypatch.setenv("COLLECTOR_DB_PATH", str(tmp_path / "stats.db"))

    assert await main(["recent", "--no-export"]) == 1


@pytest.mark.parametrize("days", ["0", "-3", "three"])
def test_recent_days_must_be_positive(days):
    with pytest.raises(SystemExit):
        build_parser().parse_args(["recent", "--days", days])


def test_retry_failed_mode():
    args = build_parser().parse_args(["retry-failed", "--platform", "grab"])

    assert args.mode == "retry-failed"
    assert args.platform == "grab"
