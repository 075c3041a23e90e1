"""SQLite store for merged daily stats, collector state and credentials.

Database: data/delivery_stats.db (WAL mode)
Tables: daily_stats, collector_state, account_credentials, account_identifiers
"""
import logging
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .schemas.accounts import Platform
from .schemas.stats import (
    DailyStatRecord,
    GojekDailyStats,
    GrabDailyStats,
    PlatformStats,
)


logger = logging.getLogger(__name__)


SCHEMA_VERSION = 1

STAT_COLUMNS: dict[str, str] = {**GrabDailyStats.columns(), **GojekDailyStats.columns()}


def init_database(db_path: str | Path) -> None:
    """Initialize the collector database with schema.

    Creates tables if they don't exist.
    Enables WAL mode for concurrent reads.

    Args:
        db_path: Path to SQLite database file
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    try:
        conn.execute("PRAGMA journal_mode=WAL")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )

        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        current_version = cursor.fetchone()[0] or 0

        if current_version < SCHEMA_VERSION:
            _apply_schema(conn)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
            logger.info("Database schema initialized (version %s)", SCHEMA_VERSION)
        else:
            logger.debug("Database schema up to date (version %s)", current_version)

    finally:
        conn.close()


def _apply_schema(conn: sqlite3.Connection) -> None:
    """Apply database schema.

    Args:
        conn: SQLite connection (in transaction)
    """
    stat_columns = ",\n".join(
        f"    {name} {sql_type} NOT NULL DEFAULT 0"
        for name, sql_type in STAT_COLUMNS.items()
    )
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS daily_stats (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_name TEXT NOT NULL,
            stat_date TEXT NOT NULL,
        {stat_columns},
            grab_updated_at TEXT,
            gojek_updated_at TEXT,
            total_sales REAL NOT NULL DEFAULT 0,
            total_orders INTEGER NOT NULL DEFAULT 0,
            synced_at TEXT,
            UNIQUE(account_name, stat_date)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_daily_stats_date
        ON daily_stats(stat_date)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS collector_state (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_name TEXT NOT NULL,
            platform TEXT NOT NULL,
            metric TEXT NOT NULL,
            stat_date TEXT NOT NULL,
            status TEXT NOT NULL,
            details TEXT,
            collected_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(account_name, platform, metric, stat_date)
        )
        """
    )

    conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_collector_state_status
        ON collector_state(status, account_name)
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS account_credentials (
            account_name TEXT NOT NULL,
            platform TEXT NOT NULL,
            access_token TEXT,
            refresh_token TEXT,
            client_id TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (account_name, platform)
        )
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS account_identifiers (
            account_name TEXT NOT NULL,
            platform TEXT NOT NULL,
            name TEXT NOT NULL,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (account_name, platform, name)
        )
        """
    )


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_record(row: sqlite3.Row) -> DailyStatRecord:
    grab = {
        name: row[f"grab_{name}"] for name in GrabDailyStats.model_fields
    }
    gojek = {
        name: row[f"gojek_{name}"] for name in GojekDailyStats.model_fields
    }
    return DailyStatRecord(
        account_name=row["account_name"],
        stat_date=date.fromisoformat(row["stat_date"]),
        grab=GrabDailyStats(**grab),
        gojek=GojekDailyStats(**gojek),
        grab_updated_at=row["grab_updated_at"],
        gojek_updated_at=row["gojek_updated_at"],
        total_sales=row["total_sales"],
        total_orders=row["total_orders"],
        synced_at=row["synced_at"],
    )


class StatStore:
    """Field-level upsert store for per-account daily stat records."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        init_database(self.db_path)

    def merge(
        self,
        account_name: str,
        stat_date: date,
        fragment: PlatformStats,
    ) -> DailyStatRecord:
        """Merge one platform fragment into the (account, date) record.

        Only fields present in the fragment overwrite stored values. Totals
        are recomputed from both namespaces and ``synced_at`` is stamped only
        when the row actually changes, so re-applying a fragment is a no-op.

        Args:
            account_name: Account the fragment belongs to
            stat_date: Calendar day of the fragment
            fragment: Grab or GoJek stats with absent fields left as None

        Returns:
            The record as stored after the merge
        """
        date_str = stat_date.isoformat()
        updates = fragment.namespaced()
        platform_stamp = f"{fragment.platform.value}_updated_at"

        conn = connect(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT * FROM daily_stats WHERE account_name=? AND stat_date=?",
                (account_name, date_str),
            ).fetchone()

            if row is None:
                values: dict[str, Any] = {name: 0 for name in STAT_COLUMNS}
                values["grab_updated_at"] = None
                values["gojek_updated_at"] = None
                changed = True
            else:
                values = {name: row[name] for name in STAT_COLUMNS}
                values["grab_updated_at"] = row["grab_updated_at"]
                values["gojek_updated_at"] = row["gojek_updated_at"]
                changed = any(values[name] != value for name, value in updates.items())
                changed = changed or values[platform_stamp] is None

            if not changed:
                conn.rollback()
                logger.debug(
                    "No changes for %s %s (%s)", account_name, date_str, fragment.platform.value
                )
                return _row_to_record(row)

            now = _utcnow()
            values.update(updates)
            values[platform_stamp] = now
            values["total_sales"] = (values["grab_sales"] or 0) + (values["gojek_sales"] or 0)
            values["total_orders"] = (values["grab_orders"] or 0) + (values["gojek_orders"] or 0)
            values["synced_at"] = now

            columns = list(values)
            placeholders = ", ".join("?" for _ in columns)
            assignments = ",\n".join(f"{name}=excluded.{name}" for name in columns)
            conn.execute(
                f"""
                INSERT INTO daily_stats (account_name, stat_date, {", ".join(columns)})
                VALUES (?, ?, {placeholders})
                ON CONFLICT(account_name, stat_date)
                DO UPDATE SET
                    {assignments}
                """,
                (account_name, date_str, *values.values()),
            )
            conn.commit()

            stored = conn.execute(
                "SELECT * FROM daily_stats WHERE account_name=? AND stat_date=?",
                (account_name, date_str),
            ).fetchone()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        logger.debug(
            "Merged %s %s fields for %s %s",
            len(updates),
            fragment.platform.value,
            account_name,
            date_str,
        )
        return _row_to_record(stored)

    def get(self, account_name: str, stat_date: date) -> Optional[DailyStatRecord]:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM daily_stats WHERE account_name=? AND stat_date=?",
                (account_name, stat_date.isoformat()),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row else None

    def records_between(
        self,
        account_name: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[DailyStatRecord]:
        """Records for an account in a closed date range, newest first."""
        query = "SELECT * FROM daily_stats WHERE account_name=?"
        params: list[Any] = [account_name]
        if start_date is not None:
            query += " AND stat_date>=?"
            params.append(start_date.isoformat())
        if end_date is not None:
            query += " AND stat_date<=?"
            params.append(end_date.isoformat())
        query += " ORDER BY stat_date DESC"

        conn = connect(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def records_for_export(
        self,
        account_name: str,
        limit: Optional[int] = None,
        offset: int = 0,
        since: Optional[date] = None,
    ) -> list[DailyStatRecord]:
        """One page of records with data from at least one platform, newest first.

        Args:
            account_name: Account name
            limit: Page size (all remaining rows when None)
            offset: Rows to skip
            since: Optional lower bound on stat_date
        """
        query = (
            "SELECT * FROM daily_stats WHERE account_name=? "
            "AND (grab_updated_at IS NOT NULL OR gojek_updated_at IS NOT NULL)"
        )
        params: list[Any] = [account_name]
        if since is not None:
            query += " AND stat_date>=?"
            params.append(since.isoformat())
        query += " ORDER BY stat_date DESC LIMIT ? OFFSET ?"
        params.extend([limit if limit is not None else -1, offset])

        conn = connect(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [_row_to_record(row) for row in rows]

    def record_metric_state(
        self,
        account_name: str,
        platform: Platform,
        metric: str,
        stat_date: date,
        status: str,
        details: Optional[str] = None,
    ) -> None:
        """Record the last outcome of one (account, platform, metric, day) slice.

        Args:
            account_name: Account name
            platform: Platform of the metric
            metric: Fetcher name
            stat_date: Day of the slice
            status: Fetch outcome value (success, missing-data, ...)
            details: Optional error or summary message
        """
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO collector_state
                    (account_name, platform, metric, stat_date, status, details)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_name, platform, metric, stat_date)
                DO UPDATE SET
                    status=excluded.status,
                    details=excluded.details,
                    collected_at=CURRENT_TIMESTAMP
                """,
                (
                    account_name,
                    platform.value,
                    metric,
                    stat_date.isoformat(),
                    status,
                    details,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def failed_slices(self, account_name: Optional[str] = None) -> list[dict[str, Any]]:
        """Slices whose last attempt ended in an error, for targeted re-runs."""
        query = """
            SELECT account_name, platform, metric, stat_date, status, details
            FROM collector_state
            WHERE status IN ('transient-error', 'auth-error', 'fatal-error')
        """
        params: list[Any] = []
        if account_name is not None:
            query += " AND account_name=?"
            params.append(account_name)
        query += " ORDER BY account_name, stat_date"

        conn = connect(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]
