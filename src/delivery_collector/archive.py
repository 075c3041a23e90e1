"""Raw JSONL audit log of platform responses."""
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles

from .schemas.accounts import Platform


logger = logging.getLogger(__name__)


class RawPayloadArchive:
    """Appends one envelope per fetched payload to a per-day JSONL file."""

    def __init__(self, raw_dir: Path) -> None:
        self.raw_dir = Path(raw_dir)
        self.raw_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, platform: Platform, stat_date: date) -> Path:
        return self.raw_dir / f"raw_{platform.value}_{stat_date.isoformat()}.jsonl"

    async def append(
        self,
        account_name: str,
        platform: Platform,
        metric: str,
        stat_date: date,
        payload: Any,
    ) -> None:
        envelope = {
            "source": platform.value,
            "account": account_name,
            "metric": metric,
            "metric_date": stat_date.isoformat(),
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "response": payload,
        }
        path = self.path_for(platform, stat_date)
        try:
            async with aiofiles.open(path, "a", encoding="utf-8") as handle:
                await handle.write(json.dumps(envelope, separators=(",", ":")) + "\n")
        except OSError as exc:
            logger.error("Failed to archive %s payload to %s: %s", metric, path, exc)
