"""
Team Pulse Member Service — workspace users and their notification preferences.

Members are registered from the Slack profile (``users.info``) into the
default workspace. Managers receive burnout alerts and weekly digests,
subject to their own preferences.
"""
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.core.database import upsert
from pulse.models.models import TeamMember
from pulse.schemas.schemas import MemberPreferences
from pulse.services.channels.channel_service import ChannelService
from pulse.services.slack.slack_client import SlackClientPool

logger = logging.getLogger(__name__)


class MemberService:
    def __init__(self, slack_pool: SlackClientPool, channels: ChannelService):
        self._slack_pool = slack_pool
        self._channels = channels

    async def list_members(
        self, db: AsyncSession, managers_only: bool = False,
    ) -> List[TeamMember]:
        stmt = select(TeamMember).order_by(TeamMember.slack_user_id)
        if managers_only:
            stmt = stmt.where(TeamMember.is_manager.is_(True))
        return list((await db.execute(stmt)).scalars().all())

    async def get_member(self, db: AsyncSession, member_id: uuid.UUID) -> Optional[TeamMember]:
        return await db.get(TeamMember, member_id)

    async def register_member(
        self,
        db: AsyncSession,
        slack_user_id: str,
        preferences: Optional[MemberPreferences] = None,
    ) -> TeamMember:
        """
        Upsert a member of the default workspace from their Slack profile.
        Profile fields are always refreshed; preferences only when given.
        """
        workspace = await self._channels.default_workspace(db)
        client = self._slack_pool.get(self._channels.workspace_token(workspace))
        profile = await client.get_user_info(slack_user_id)

        prefs = (preferences or MemberPreferences()).model_dump(exclude_none=True)
        values = {
            "display_name": profile.real_name or profile.name,
            "email": profile.email,
            **prefs,
        }
        await db.execute(upsert(
            db,
            TeamMember,
            {
                "id": uuid.uuid4(),
                "workspace_id": workspace.id,
                "slack_user_id": slack_user_id,
                **values,
            },
            index_elements=["workspace_id", "slack_user_id"],
            update_fields=list(values),
        ))
        await db.commit()

        member = (await db.execute(
            select(TeamMember)
            .where(
                TeamMember.workspace_id == workspace.id,
                TeamMember.slack_user_id == slack_user_id,
            )
            .execution_options(populate_existing=True)
        )).scalar_one()
        logger.info(f"Registered member {slack_user_id} (manager={member.is_manager})")
        return member

    async def update_preferences(
        self,
        db: AsyncSession,
        member_id: uuid.UUID,
        preferences: MemberPreferences,
    ) -> Optional[TeamMember]:
        member = await db.get(TeamMember, member_id)
        if member is None:
            return None
        for field, value in preferences.model_dump(exclude_none=True).items():
            setattr(member, field, value)
        await db.commit()
        await db.refresh(member)
        return member
