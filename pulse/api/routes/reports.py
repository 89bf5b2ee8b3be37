"""
Team Pulse API — Weekly reports, manual sync and the failed-job ledger.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.api.deps import get_container
from pulse.core.container import Container
from pulse.core.database import get_db
from pulse.schemas.schemas import FailedJobSchema, SyncResult, WeeklyReport

router = APIRouter(tags=["Reports"])


@router.get("/reports/weekly", response_model=WeeklyReport)
async def weekly_report(
    week_start: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Report for the week starting ``week_start`` (default: last complete week)."""
    if week_start is None:
        today = datetime.now(timezone.utc).date()
        week_start = today - timedelta(days=today.weekday() + 7)
    return await container.analytics.generate_weekly_report(db, week_start)


@router.post("/sync", response_model=SyncResult)
async def sync_all(
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Backfill every active channel now. Per-channel failures are reported, not raised."""
    return await container.channels.sync_all_channels(db)


@router.get("/jobs/failed", response_model=List[FailedJobSchema])
async def failed_jobs(
    kind: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    return await container.ledger.list_failed(db, kind=kind, limit=limit)
