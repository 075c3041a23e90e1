"""FastAPI routes for triggering collection runs and reading stored stats."""
import logging
import uuid
from datetime import date
from typing import Literal, Optional

import aiohttp
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from redis.asyncio import Redis

from ..collector import build_collector
from ..config import CollectorSettings, load_accounts
from ..exceptions import ConfigurationError
from ..schemas.accounts import Account, Platform
from ..schemas.stats import DailyStatRecord
from ..store import StatStore
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["collections"])


class CollectionJobRequest(BaseModel):
    """Request payload for a background collection run."""

    mode: Literal["recent", "range", "history", "retry-failed"] = Field(
        "recent",
        description=(
            "recent = last N days, range = explicit dates, history = backfill, "
            "retry-failed = re-run failed metric days"
        ),
    )
    start_date: Optional[date] = Field(None, description="First day (range mode)")
    end_date: Optional[date] = Field(
        None, description="Last day (range mode) or newest day (history mode)"
    )
    days: Optional[int] = Field(None, ge=1, description="Days to collect (recent mode)")
    accounts: list[str] = Field(
        default_factory=list, description="Account names to collect (empty = all active)"
    )
    platform: Optional[Platform] = Field(None, description="Restrict to one platform")
    export: bool = Field(True, description="Export to the central store after collecting")


class CollectionJobResponse(BaseModel):
    """Immediate response for a queued run."""

    job_id: str = Field(..., description="Server-generated job ID")
    status: str = Field(..., description="Job status (always 'queued' on acceptance)")
    mode: str = Field(..., description="Echo of the requested mode")
    account_count: int = Field(..., description="Number of accounts in the run")


class AccountStatsResponse(BaseModel):
    account: str
    records: list[DailyStatRecord]


def _select(accounts: list[Account], names: list[str]) -> list[Account]:
    if not names:
        return accounts
    known = {account.name: account for account in accounts}
    unknown = [name for name in names if name not in known]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown accounts: {', '.join(unknown)}",
        )
    return [known[name] for name in names]


async def _run_collection_job(
    job_id: str,
    payload: CollectionJobRequest,
    settings: CollectorSettings,
    accounts: list[Account],
) -> None:
    """Background task: run one collection and optional export.

    This function MUST be exception-safe; all errors are caught and logged.
    """
    platforms = [payload.platform] if payload.platform else None
    try:
        logger.info(
            "Starting collection job: job_id=%s, mode=%s, accounts=%s",
            job_id,
            payload.mode,
            len(accounts),
        )

        timeout = aiohttp.ClientTimeout(total=settings.http_timeout, connect=30)
        redis = Redis.from_url(settings.redis_url) if settings.redis_url else None
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                collector = build_collector(settings, session, redis=redis)

                if payload.mode == "range":
                    report = await collector.collect_range(
                        accounts, payload.start_date, payload.end_date, platforms
                    )
                elif payload.mode == "history":
                    report = await collector.collect_history(
                        accounts, payload.end_date, platforms
                    )
                elif payload.mode == "retry-failed":
                    report = await collector.collect_failed(accounts, platforms)
                else:
                    report = await collector.collect_recent(accounts, payload.days, platforms)

                if payload.export:
                    report.exports = await collector.export(accounts)
        finally:
            if redis is not None:
                await redis.aclose()

        logger.info("Job %s completed: %s", job_id, report.summary())

    except Exception as exc:
        logger.error("Job %s failed with exception: %s", job_id, exc, exc_info=True)


@router.post(
    "/collections",
    response_model=CollectionJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_api_key)],
    summary="Start a collection run",
    description=(
        "Queue a Grab/GoJek collection run. Returns immediately (202 Accepted) "
        "with job_id; the run executes in the background."
    ),
)
async def create_collection_job(
    payload: CollectionJobRequest,
    background_tasks: BackgroundTasks,
) -> CollectionJobResponse:
    """Validate the request and queue the run.

    Validates:
    - API key (X-COLLECTOR-API-KEY header) - returns 401 if missing/invalid
    - range mode has start_date <= end_date
    - every requested account is configured
    """
    if payload.mode == "range":
        if payload.start_date is None or payload.end_date is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="range mode requires start_date and end_date",
            )
        if payload.start_date > payload.end_date:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="start_date must not be after end_date",
            )

    try:
        settings = CollectorSettings.from_env()
        accounts = load_accounts(settings)
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc

    accounts = _select(accounts, payload.accounts)
    job_id = str(uuid.uuid4())

    background_tasks.add_task(_run_collection_job, job_id, payload, settings, accounts)

    logger.info(
        "Queued collection job: job_id=%s, mode=%s, accounts=%s",
        job_id,
        payload.mode,
        len(accounts),
    )

    return CollectionJobResponse(
        job_id=job_id,
        status="queued",
        mode=payload.mode,
        account_count=len(accounts),
    )


@router.get(
    "/accounts/{name}/stats",
    response_model=AccountStatsResponse,
    dependencies=[Depends(require_api_key)],
    summary="Read stored daily stats for one account",
)
async def get_account_stats(
    name: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
) -> AccountStatsResponse:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must not be after end_date",
        )
    try:
        settings = CollectorSettings.from_env()
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc

    store = StatStore(settings.db_path)
    records = store.records_between(name, start_date, end_date)
    return AccountStatsResponse(account=name, records=records)


@router.get("/health", summary="Liveness probe")
async def health() -> dict[str, str]:
    return {"status": "ok"}
