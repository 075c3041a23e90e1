"""Durable storage for rotated tokens and discovered platform identifiers.

Tokens live in the ``account_credentials`` table. When a mirror path is
configured, the accounts JSON file is rewritten as well so file-based
deployments keep working after a restart.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from ..schemas.accounts import Account, CredentialBundle, Platform
from ..store import connect, init_database


logger = logging.getLogger(__name__)


class CredentialStore:
    """Persists credential bundles and identifiers per (account, platform)."""

    def __init__(self, db_path: str | Path, mirror_path: Optional[Path] = None) -> None:
        self.db_path = Path(db_path)
        self.mirror_path = Path(mirror_path) if mirror_path else None
        init_database(self.db_path)

    def load(self, account: Account, platform: Platform) -> CredentialBundle:
        """Return the freshest known bundle for an account.

        Stored tokens win over configuration because configuration may hold
        a refresh token that has already been rotated. Login fallbacks always
        come from configuration.
        """
        profile = account.profile(platform)
        configured = profile.credentials if profile else CredentialBundle()

        conn = connect(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT access_token, refresh_token, client_id, updated_at
                FROM account_credentials
                WHERE account_name=? AND platform=?
                """,
                (account.name, platform.value),
            ).fetchone()
        finally:
            conn.close()

        if row is None:
            return configured

        return configured.model_copy(
            update={
                "access_token": row["access_token"] or configured.access_token,
                "refresh_token": row["refresh_token"] or configured.refresh_token,
                "client_id": row["client_id"] or configured.client_id,
                "updated_at": row["updated_at"],
            }
        )

    async def save(
        self,
        account_name: str,
        platform: Platform,
        bundle: CredentialBundle,
    ) -> CredentialBundle:
        """Persist new tokens; returns the bundle stamped with ``updated_at``.

        Raises:
            sqlite3.Error: If the primary store cannot be written
        """
        stamped = bundle.model_copy(
            update={"updated_at": datetime.now(timezone.utc).isoformat()}
        )

        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO account_credentials
                    (account_name, platform, access_token, refresh_token, client_id, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(account_name, platform)
                DO UPDATE SET
                    access_token=excluded.access_token,
                    refresh_token=excluded.refresh_token,
                    client_id=excluded.client_id,
                    updated_at=excluded.updated_at
                """,
                (
                    account_name,
                    platform.value,
                    stamped.access_token,
                    stamped.refresh_token,
                    stamped.client_id,
                    stamped.updated_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

        logger.info("Persisted %s tokens for account=%s", platform.value, account_name)

        if self.mirror_path is not None:
            await self._write_mirror(account_name, platform, stamped)

        return stamped

    def load_identifiers(self, account_name: str, platform: Platform) -> dict[str, str]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT name, value FROM account_identifiers
                WHERE account_name=? AND platform=?
                """,
                (account_name, platform.value),
            ).fetchall()
        finally:
            conn.close()
        return {row["name"]: row["value"] for row in rows}

    def save_identifiers(
        self,
        account_name: str,
        platform: Platform,
        identifiers: dict[str, str],
    ) -> None:
        conn = connect(self.db_path)
        try:
            for name, value in identifiers.items():
                conn.execute(
                    """
                    INSERT INTO account_identifiers (account_name, platform, name, value)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(account_name, platform, name)
                    DO UPDATE SET
                        value=excluded.value,
                        updated_at=CURRENT_TIMESTAMP
                    """,
                    (account_name, platform.value, name, str(value)),
                )
            conn.commit()
        finally:
            conn.close()

    def hydrate(self, account: Account) -> Account:
        """Apply previously discovered identifiers to a configured account."""
        for platform in account.platforms():
            stored = self.load_identifiers(account.name, platform)
            profile = account.profile(platform)
            missing = {
                name: value
                for name, value in stored.items()
                if profile is not None and not getattr(profile, name, None)
            }
            account = account.with_identifiers(platform, missing)
        return account

    async def _write_mirror(
        self,
        account_name: str,
        platform: Platform,
        bundle: CredentialBundle,
    ) -> None:
        """Update tokens for one account inside the accounts JSON mirror.

        The mirror is secondary: failures are logged, the primary store
        already holds the new tokens.
        """
        mirror = self.mirror_path
        try:
            if not await aiofiles.os.path.exists(mirror):
                logger.warning("Credential mirror %s does not exist, skipping", mirror)
                return

            async with aiofiles.open(mirror, encoding="utf-8") as handle:
                data = json.loads(await handle.read())

            records = data.get("restaurants", []) if isinstance(data, dict) else data
            record = next((r for r in records if r.get("name") == account_name), None)
            if record is None:
                logger.warning("Account %s not found in credential mirror", account_name)
                return

            _apply_tokens(record, platform, bundle)

            tmp_path = mirror.with_suffix(mirror.suffix + ".tmp")
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as handle:
                await handle.write(json.dumps(data, indent=4, ensure_ascii=False))
            await aiofiles.os.replace(tmp_path, mirror)

            logger.info("Updated credential mirror for account=%s", account_name)

        except (OSError, ValueError) as exc:
            logger.error("Failed to update credential mirror %s: %s", mirror, exc)


def _apply_tokens(record: dict, platform: Platform, bundle: CredentialBundle) -> None:
    """Write tokens into either the nested or the legacy flat record layout."""
    nested = record.get(platform.value)
    if isinstance(nested, dict) and "credentials" in nested:
        nested["credentials"]["access_token"] = bundle.access_token
        if bundle.refresh_token:
            nested["credentials"]["refresh_token"] = bundle.refresh_token
        return

    if platform == Platform.GOJEK:
        record["gojek_access_token"] = bundle.access_token
        if bundle.refresh_token:
            record["gojek_refresh_token"] = bundle.refresh_token
    else:
        record["grab_token"] = bundle.access_token
