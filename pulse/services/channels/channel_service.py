"""
Team Pulse Channel Service

Channel lifecycle:
  - Workspace registration (bot token per Slack team)
  - Add a channel (validated against Slack, then backfilled)
  - Soft remove (deactivate) and hard delete (channel plus all derived data)
  - Manual sync across every active channel

Read paths only ever see active channels.
"""
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.core.database import upsert
from pulse.core.errors import (
    ChannelAlreadyMonitoredError,
    ChannelNotFoundError,
    ConfigurationError,
    NotFoundError,
)
from pulse.models.models import (
    DailyMood,
    Message,
    MonitoredChannel,
    SentimentAnalysis,
    Workspace,
)
from pulse.schemas.schemas import SlackChannelInfo, SyncResult
from pulse.services.pipeline.history_sync import ChannelHistorySync
from pulse.services.pipeline.jobs import JobQueue, SyncChannelHistoryJob
from pulse.services.slack.slack_client import SlackClientPool

logger = logging.getLogger(__name__)


class ChannelService:
    def __init__(
        self,
        slack_pool: SlackClientPool,
        history_sync: ChannelHistorySync,
        queue: JobQueue,
        default_token: str = "",
        default_team_id: str = "",
    ):
        self._slack_pool = slack_pool
        self._history_sync = history_sync
        self._queue = queue
        self._default_token = default_token
        self._default_team_id = default_team_id

    @property
    def default_token(self) -> str:
        return self._default_token

    # ── Workspaces & credentials ─────────────────────────────────────────

    async def register_workspace(
        self,
        db: AsyncSession,
        slack_team_id: str,
        team_name: str,
        bot_token: Optional[str] = None,
    ) -> Workspace:
        await db.execute(upsert(
            db,
            Workspace,
            {
                "id": uuid.uuid4(),
                "slack_team_id": slack_team_id,
                "team_name": team_name,
                "bot_token": bot_token,
            },
            index_elements=["slack_team_id"],
            update_fields=["team_name", "bot_token"] if bot_token else ["team_name"],
        ))
        await db.commit()
        workspace = (await db.execute(
            select(Workspace)
            .where(Workspace.slack_team_id == slack_team_id)
            .execution_options(populate_existing=True)
        )).scalar_one()
        logger.info(f"Registered workspace {team_name} ({slack_team_id})")
        return workspace

    async def default_workspace(self, db: AsyncSession) -> Workspace:
        stmt = select(Workspace)
        if self._default_team_id:
            stmt = stmt.where(Workspace.slack_team_id == self._default_team_id)
        workspace = (await db.execute(
            stmt.order_by(Workspace.created_at.asc(), Workspace.id).limit(1)
        )).scalar_one_or_none()
        if workspace is None:
            raise NotFoundError("No workspace registered")
        return workspace

    async def token_for(self, db: AsyncSession, channel: MonitoredChannel) -> str:
        """The channel's workspace bot token, else the global one."""
        workspace = await db.get(Workspace, channel.workspace_id)
        token = (workspace.bot_token if workspace else None) or self._default_token
        if not token:
            raise ConfigurationError(
                f"No Slack bot token for channel {channel.slack_channel_id}; "
                f"set PULSE_SLACK_BOT_TOKEN or register the workspace token"
            )
        return token

    def workspace_token(self, workspace: Workspace) -> str:
        token = workspace.bot_token or self._default_token
        if not token:
            raise ConfigurationError(f"No Slack bot token for workspace {workspace.slack_team_id}")
        return token

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_channel(self, db: AsyncSession, channel_id: uuid.UUID) -> Optional[MonitoredChannel]:
        return await db.get(MonitoredChannel, channel_id)

    async def get_by_slack_id(self, db: AsyncSession, slack_channel_id: str) -> Optional[MonitoredChannel]:
        return (await db.execute(
            select(MonitoredChannel).where(MonitoredChannel.slack_channel_id == slack_channel_id)
        )).scalar_one_or_none()

    async def list_channels(self, db: AsyncSession) -> List[MonitoredChannel]:
        result = await db.execute(
            select(MonitoredChannel)
            .where(MonitoredChannel.is_active.is_(True))
            .order_by(MonitoredChannel.channel_name)
        )
        return list(result.scalars().all())

    async def available_channels(self, db: AsyncSession) -> List[SlackChannelInfo]:
        """Channels the bot can see in the default workspace."""
        workspace = await self.default_workspace(db)
        return await self._slack_pool.get(self.workspace_token(workspace)).list_channels()

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def add_channel(
        self,
        db: AsyncSession,
        slack_channel_id: str,
        created_by: Optional[str] = None,
    ) -> MonitoredChannel:
        workspace = await self.default_workspace(db)

        existing = await self.get_by_slack_id(db, slack_channel_id)
        if existing is not None and existing.is_active:
            raise ChannelAlreadyMonitoredError(f"Channel {slack_channel_id} is already monitored")

        visible = await self._slack_pool.get(self.workspace_token(workspace)).list_channels()
        info = next((c for c in visible if c.id == slack_channel_id), None)
        if info is None:
            raise ChannelNotFoundError(f"Channel {slack_channel_id} not found in Slack")

        if existing is not None:
            existing.is_active = True
            existing.channel_name = info.name
            existing.created_by = created_by or existing.created_by
            channel = existing
        else:
            channel = MonitoredChannel(
                workspace_id=workspace.id,
                slack_channel_id=slack_channel_id,
                channel_name=info.name,
                is_active=True,
                created_by=created_by,
            )
            db.add(channel)
        await db.commit()
        await db.refresh(channel)

        await self._queue.enqueue(SyncChannelHistoryJob(
            channel_id=channel.id, slack_channel_id=channel.slack_channel_id,
        ))
        logger.info(f"Now monitoring #{channel.channel_name} ({slack_channel_id})")
        return channel

    async def remove_channel(self, db: AsyncSession, channel_id: uuid.UUID) -> bool:
        """Soft remove: history is kept, the channel drops out of every read path."""
        channel = await db.get(MonitoredChannel, channel_id)
        if channel is None:
            return False
        channel.is_active = False
        await db.commit()
        logger.info(f"Stopped monitoring #{channel.channel_name}")
        return True

    async def delete_channel(self, db: AsyncSession, channel_id: uuid.UUID) -> bool:
        """
        Hard delete: sentiment rows, messages, daily moods, then the channel,
        in one transaction. Any failure rolls the whole teardown back.
        """
        channel = await db.get(MonitoredChannel, channel_id)
        if channel is None:
            return False
        name = channel.channel_name

        try:
            channel_messages = select(Message.id).where(Message.channel_id == channel_id)
            await db.execute(
                delete(SentimentAnalysis).where(SentimentAnalysis.message_id.in_(channel_messages))
            )
            await db.execute(delete(Message).where(Message.channel_id == channel_id))
            await db.execute(delete(DailyMood).where(DailyMood.channel_id == channel_id))
            await db.execute(delete(MonitoredChannel).where(MonitoredChannel.id == channel_id))
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error(f"Rolled back delete of channel {channel_id}")
            raise

        logger.info(f"Deleted channel #{name} and all of its data")
        return True

    # ── Manual sync ──────────────────────────────────────────────────────

    async def sync_all_channels(self, db: AsyncSession) -> SyncResult:
        """Sync every active channel inline; per-channel failures are collected."""
        # Rollback expires loaded rows, so each channel is re-read by id
        targets = [(c.id, c.channel_name) for c in await self.list_channels(db)]
        errors: List[str] = []
        total = 0
        new = 0

        for channel_id, name in targets:
            try:
                channel = await db.get(MonitoredChannel, channel_id)
                token = await self.token_for(db, channel)
                stats = await self._history_sync.sync(db, channel, token, self._queue.enqueue)
                total += stats.stored
                new += stats.new
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to sync channel {name}: {e}")
                errors.append(f"Failed to sync channel {name}: {e}")

        return SyncResult(
            success=not errors,
            channel_count=len(targets),
            total_message_count=total,
            new_message_count=new,
            errors=errors,
        )
