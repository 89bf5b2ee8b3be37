"""
Team Pulse Channel History Sync — bounded backfill of one channel.

A run pages through ``conversations.history`` from ``now - window`` and stops
at the message cap or the last page, whichever comes first. Messages outside
the window and bot/system messages are dropped; everything else is stored
(idempotently) and queued for sentiment analysis.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.models.models import MonitoredChannel
from pulse.schemas.schemas import SyncStats
from pulse.services.messages.message_service import MessageService
from pulse.services.pipeline.jobs import AnalyzeSentimentJob, Job
from pulse.services.slack.events import is_human_message, to_inbound_message, ts_to_datetime
from pulse.services.slack.slack_client import SlackClientPool

logger = logging.getLogger(__name__)


class ChannelHistorySync:
    def __init__(
        self,
        slack_pool: SlackClientPool,
        messages: MessageService,
        window_days: int = 7,
        max_messages: int = 200,
        page_size: int = 100,
    ):
        self._slack_pool = slack_pool
        self._messages = messages
        self.window = timedelta(days=window_days)
        self.max_messages = max_messages
        self.page_size = page_size

    async def sync(
        self,
        db: AsyncSession,
        channel: MonitoredChannel,
        token: str,
        enqueue: Callable[[Job], Awaitable[None]],
        now: Optional[datetime] = None,
    ) -> SyncStats:
        """
        Backfill ``channel``. ``enqueue`` receives one AnalyzeSentimentJob per
        stored message and is awaited.
        """
        now = now or datetime.now(timezone.utc)
        oldest = now - self.window
        client = self._slack_pool.get(token)
        stats = SyncStats()

        cursor: Optional[str] = None
        while stats.fetched < self.max_messages:
            limit = min(self.page_size, self.max_messages - stats.fetched)
            page, cursor = await client.get_channel_history(
                channel.slack_channel_id,
                cursor=cursor,
                limit=limit,
                oldest=oldest.timestamp(),
            )
            for raw in page[:limit]:
                stats.fetched += 1
                if not raw.get("ts") or not is_human_message(raw):
                    continue

                # A bad entry is skipped; connectivity errors still abort the run
                try:
                    if ts_to_datetime(raw["ts"]) < oldest:
                        continue
                    data = to_inbound_message(raw, channel.slack_channel_id)
                    message, created = await self._messages.store_message(db, channel, data)
                    await db.commit()
                except (ValueError, TypeError, KeyError, IntegrityError, DataError) as e:
                    await db.rollback()
                    await db.refresh(channel)
                    stats.failed += 1
                    logger.warning(
                        f"Skipping message {raw.get('ts')!r} in #{channel.channel_name}: {e}"
                    )
                    continue

                stats.stored += 1
                if created:
                    stats.new += 1
                await enqueue(AnalyzeSentimentJob(message_id=message.id, text=message.text))

            if not cursor or not page:
                break

        logger.info(
            f"Synced #{channel.channel_name}: fetched {stats.fetched}, "
            f"stored {stats.stored}, new {stats.new}, failed {stats.failed}"
        )
        return stats
