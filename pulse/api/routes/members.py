"""
Team Pulse API — Team members, manager flags and notification preferences.
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
from pulse.schemas.schemas import MemberPreferences, MemberRequest, MemberSchema, MessageSchema

router = APIRouter(prefix="/members", tags=["Members"])


@router.get("", response_model=List[MemberSchema])
async def list_members(
    managers_only: bool = False,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    return await container.members.list_members(db, managers_only=managers_only)


@router.put("", response_model=MemberSchema)
async def register_member(
    data: MemberRequest,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """Create or refresh a member from their Slack profile, optionally setting preferences."""
    preferences = MemberPreferences(**data.model_dump(exclude={"slack_user_id"}))
    try:
        return await container.members.register_member(db, data.slack_user_id, preferences)
    except PulseError as e:
        raise http_error(e)


@router.put("/{member_id}/preferences", response_model=MemberSchema)
async def update_preferences(
    member_id: uuid.UUID,
    data: MemberPreferences,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    member = await container.members.update_preferences(db, member_id, data)
    if member is None:
        raise HTTPException(status_code=404, detail="Member not found")
    return member


@router.get("/{slack_user_id}/messages", response_model=List[MessageSchema])
async def member_messages(
    slack_user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: AsyncSession = Depends(get_db),
    container: Container = Depends(get_container),
):
    """One author's messages in monitored channels (default: last 7 days)."""
    end = end or datetime.now(timezone.utc)
    start = start or end - timedelta(days=7)
    return await container.messages.get_user_messages(db, slack_user_id, start, end)
