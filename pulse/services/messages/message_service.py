"""
Team Pulse Message Service — persistence for inbound chat messages.

Identity is (channel, Slack message id); re-ingesting the same message is a
no-op insert followed by a read of the existing row.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.core.database import upsert
from pulse.models.models import Message, MonitoredChannel
from pulse.schemas.schemas import InboundMessage

logger = logging.getLogger(__name__)


class MessageService:
    async def store_message(
        self,
        db: AsyncSession,
        channel: MonitoredChannel,
        data: InboundMessage,
    ) -> Tuple[Message, bool]:
        """Insert-or-ignore a message. Returns (row, created)."""
        stmt = upsert(
            db,
            Message,
            {
                "id": uuid.uuid4(),
                "workspace_id": channel.workspace_id,
                "channel_id": channel.id,
                "slack_message_id": data.slack_message_id,
                "slack_user_id": data.slack_user_id,
                "thread_ts": data.thread_ts,
                "text": data.text,
                "reactions": [r.model_dump() for r in data.reactions] or None,
                "timestamp": data.timestamp,
            },
            index_elements=["channel_id", "slack_message_id"],
        )
        result = await db.execute(stmt)
        created = (result.rowcount or 0) > 0

        message = (await db.execute(
            select(Message).where(
                Message.channel_id == channel.id,
                Message.slack_message_id == data.slack_message_id,
            )
        )).scalar_one()

        if created:
            logger.info(f"Stored message {message.id} from user {data.slack_user_id}")
        return message, created

    async def get_message(self, db: AsyncSession, message_id: uuid.UUID) -> Optional[Message]:
        return await db.get(Message, message_id)

    async def get_channel_messages(
        self,
        db: AsyncSession,
        channel_id: uuid.UUID,
        start: datetime,
        end: datetime,
    ) -> List[Message]:
        result = await db.execute(
            select(Message)
            .where(
                Message.channel_id == channel_id,
                Message.timestamp >= start,
                Message.timestamp < end,
            )
            .order_by(Message.timestamp.asc(), Message.id.asc())
        )
        return list(result.scalars().all())

    async def get_user_messages(
        self,
        db: AsyncSession,
        slack_user_id: str,
        start: datetime,
        end: datetime,
    ) -> List[Message]:
        """One author's messages across active channels, oldest first."""
        result = await db.execute(
            select(Message)
            .join(MonitoredChannel, Message.channel_id == MonitoredChannel.id)
            .where(
                Message.slack_user_id == slack_user_id,
                MonitoredChannel.is_active.is_(True),
                Message.timestamp >= start,
                Message.timestamp < end,
            )
            .order_by(Message.timestamp.asc(), Message.id.asc())
        )
        return list(result.scalars().all())

    async def count_channel_messages(self, db: AsyncSession, channel_id: uuid.UUID) -> int:
        return await db.scalar(
            select(func.count(Message.id)).where(Message.channel_id == channel_id)
        ) or 0
