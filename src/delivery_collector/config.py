"""Runtime settings and account loading.

All settings come from environment variables. Accounts are read from a JSON
file (``COLLECTOR_ACCOUNTS_FILE``) or from inline JSON in
``RESTAURANTS_DATA``; the collector refuses to start without one of them.
"""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .schemas.accounts import Account, parse_accounts


logger = logging.getLogger(__name__)


def _resolve_timezone(tz_name: Optional[str]) -> Optional[ZoneInfo]:
    """Return the configured zone, or None to use the host's local clock."""
    if not tz_name:
        return None
    try:
        return ZoneInfo(tz_name)
    except Exception:
        logger.warning("Invalid COLLECTOR_LOCAL_TIMEZONE '%s', using host local time", tz_name)
        return None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from exc


@dataclass
class CollectorSettings:
    """Collector configuration resolved once at process start."""

    db_path: Path = Path("data/delivery_stats.db")
    accounts_file: Optional[Path] = None
    accounts_json: Optional[str] = None
    credentials_mirror: Optional[Path] = None
    raw_dir: Optional[Path] = None
    local_timezone: Optional[str] = None

    export_url: Optional[str] = None
    export_api_key: Optional[str] = None
    export_batch_days: int = 90
    export_account_batch: int = 50
    export_timeout: float = 30.0

    missing_data_limit: int = 10
    error_limit: int = 5
    max_transient_retries: int = 20
    transient_backoff: float = 0.0

    history_max_periods: int = 60
    recent_days: int = 3
    max_concurrent_accounts: int = 1
    http_timeout: float = 120.0

    redis_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "CollectorSettings":
        accounts_file = os.getenv("COLLECTOR_ACCOUNTS_FILE")
        mirror = os.getenv("COLLECTOR_CREDENTIALS_MIRROR")
        raw_dir = os.getenv("COLLECTOR_RAW_DIR")

        return cls(
            db_path=Path(os.getenv("COLLECTOR_DB_PATH", "data/delivery_stats.db")),
            accounts_file=Path(accounts_file) if accounts_file else None,
            accounts_json=os.getenv("RESTAURANTS_DATA"),
            credentials_mirror=Path(mirror) if mirror else None,
            raw_dir=Path(raw_dir) if raw_dir else None,
            local_timezone=os.getenv("COLLECTOR_LOCAL_TIMEZONE"),
            export_url=os.getenv("COLLECTOR_EXPORT_URL"),
            export_api_key=os.getenv("COLLECTOR_EXPORT_API_KEY"),
            export_batch_days=_env_int("COLLECTOR_EXPORT_BATCH_DAYS", 90),
            export_account_batch=_env_int("COLLECTOR_EXPORT_ACCOUNT_BATCH", 50),
            export_timeout=_env_float("COLLECTOR_EXPORT_TIMEOUT", 30.0),
            missing_data_limit=_env_int("COLLECTOR_MISSING_DATA_LIMIT", 10),
            error_limit=_env_int("COLLECTOR_ERROR_LIMIT", 5),
            max_transient_retries=_env_int("COLLECTOR_MAX_TRANSIENT_RETRIES", 20),
            transient_backoff=_env_float("COLLECTOR_TRANSIENT_BACKOFF", 0.0),
            history_max_periods=_env_int("COLLECTOR_HISTORY_MAX_PERIODS", 60),
            recent_days=_env_int("COLLECTOR_RECENT_DAYS", 3),
            max_concurrent_accounts=_env_int("COLLECTOR_MAX_CONCURRENT_ACCOUNTS", 1),
            http_timeout=_env_float("COLLECTOR_HTTP_TIMEOUT", 120.0),
            redis_url=os.getenv("REDIS_URL"),
        )

    @property
    def tzinfo(self) -> Optional[ZoneInfo]:
        return _resolve_timezone(self.local_timezone)


def load_accounts(settings: CollectorSettings) -> list[Account]:
    """Load account definitions from the configured file or inline JSON.

    Args:
        settings: Resolved collector settings

    Returns:
        Accounts in configuration order (inactive ones included)

    Raises:
        ConfigurationError: If no source is configured, the file is missing,
            or the payload is not a valid account list
    """
    if settings.accounts_file is not None:
        if not settings.accounts_file.exists():
            raise ConfigurationError(
                f"Accounts file not found: {settings.accounts_file}"
            )
        raw = settings.accounts_file.read_text(encoding="utf-8")
        source = str(settings.accounts_file)
    elif settings.accounts_json:
        raw = settings.accounts_json
        source = "RESTAURANTS_DATA"
    else:
        raise ConfigurationError(
            "No accounts configured: set COLLECTOR_ACCOUNTS_FILE or RESTAURANTS_DATA"
        )

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Invalid JSON in {source}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("restaurants", data.get("accounts"))
    if not isinstance(data, list):
        raise ConfigurationError(f"{source} must contain a list of accounts")

    try:
        accounts = parse_accounts(data)
    except (ValidationError, KeyError) as exc:
        raise ConfigurationError(f"Invalid account definition in {source}: {exc}") from exc

    if not accounts:
        raise ConfigurationError(f"{source} contains no accounts")

    names = [account.name for account in accounts]
    duplicates = {name for name in names if names.count(name) > 1}
    if duplicates:
        raise ConfigurationError(f"Duplicate account names: {sorted(duplicates)}")

    logger.info("Loaded %s accounts from %s", len(accounts), source)
    return accounts
