"""
Team Pulse API — Channel and workspace management.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.api.deps import get_container, http_error
from pulse.core.container import Container
from pulse.core.database import get_db
from pulse.core.errors import PulseError
from pulse.schemas.schemas import (
    AddChannelRequest,
    ChannelSchema,
    ChannelSentimentHistory,
    SlackChannelInfo,
    WorkspaceRequest,
)

router = APIRouter(tags=["Channels"])


@router.get("/channels", response_model=List[ChannelSchema])
async def list_channels(
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Active monitored channels."""
    return await container.channels.list_channels(db)


@router.post("/channels", response_model=ChannelSchema, status_code=201)
async def add_channel(
    data: AddChannelRequest,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Start monitoring a Slack channel and backfill its recent history."""
    try:
        return await container.channels.add_channel(db, data.slack_channel_id, data.created_by)
    except PulseError as e:
        raise http_error(e)


@router.get("/channels/available", response_model=List[SlackChannelInfo])
async def available_channels(
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    try:
        return await container.channels.available_channels(db)
    except PulseError as e:
        raise http_error(e)


@router.post("/channels/{channel_id}/deactivate")
async def deactivate_channel(
    channel_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    if not await container.channels.remove_channel(db, channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"id": str(channel_id), "is_active": False}


@router.delete("/channels/{channel_id}")
async def delete_channel(
    channel_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Remove the channel together with its messages, sentiment and daily moods."""
    if not await container.channels.delete_channel(db, channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"id": str(channel_id), "deleted": True}


@router.put("/workspaces")
async def register_workspace(
    data: WorkspaceRequest,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    workspace = await container.channels.register_workspace(
        db, data.slack_team_id, data.team_name, data.bot_token,
    )
    return {
        "id": str(workspace.id),
        "slack_team_id": workspace.slack_team_id,
        "team_name": workspace.team_name,
        "has_bot_token": bool(workspace.bot_token),
    }


@router.get("/channels/{channel_id}/sentiment", response_model=ChannelSentimentHistory)
async def channel_sentiment(
    channel_id: uuid.UUID,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Sentiment history and emotion breakdown for one channel (default: last 7 days)."""
    end = end or datetime.now(timezone.utc)
    start = start or end - timedelta(days=7)
    history = await container.analytics.channel_sentiment(db, channel_id, start, end)
    if history is None:
        raise HTTPException(status_code=404, detail="Channel not found")
    return history


@router.post("/channels/{channel_id}/analyze", status_code=202)
async def reanalyze_channel(
    channel_id: uuid.UUID,
    container: Container = Depends(get_container),
):
    """Queue sentiment analysis for every stored message in the channel."""
    try:
        queued = await container.pipeline.schedule_reanalysis(channel_id)
    except PulseError as e:
        raise http_error(e)
    return {"id": str(channel_id), "queued": queued}
