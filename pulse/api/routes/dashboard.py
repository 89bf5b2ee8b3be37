"""
Team Pulse API — Dashboard reads.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.api.deps import get_container
from pulse.core.container import Container
from pulse.core.database import get_db
from pulse.schemas.schemas import BurnoutWarning, DailyMoodSchema, DashboardSummary

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("", response_model=DashboardSummary)
async def dashboard(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    bucket_minutes: Optional[int] = Query(None, ge=15, le=7 * 24 * 60),
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Overall sentiment, per-channel breakdown, trend series and warnings (default: last 7 days)."""
    end = end or datetime.now(timezone.utc)
    start = start or end - timedelta(days=7)
    minutes = bucket_minutes or container.settings.dashboard_bucket_minutes
    try:
        return await container.analytics.dashboard_summary(
            db, start, end, bucket=timedelta(minutes=minutes),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/daily-moods", response_model=List[DailyMoodSchema])
async def daily_moods(
    channel_id: Optional[List[uuid.UUID]] = Query(None),
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    end = end or datetime.now(timezone.utc).date()
    start = start or end - timedelta(days=6)
    return await container.analytics.daily_moods(db, channel_id, start, end)


@router.get("/burnout-warnings", response_model=List[BurnoutWarning])
async def burnout_warnings(
    channel_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Warnings over the rolling window ending now."""
    return await container.analytics.detect_burnout_indicators(db, channel_id)
