"""
Team Pulse Job Pipeline

Runs one typed job through its stage handler. Handlers are idempotent: every
write is an ignore-on-conflict insert or an upsert, so a retried job never
duplicates rows. Follow-up work goes through ``_chain``, which only admits
the kinds the stage lists in ``PIPELINE``.

Scheduled fan-outs (daily moods, weekly report, channel syncs, queue health)
are roots of the graph: they enqueue jobs but are not stages themselves.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.core.database import Database, upsert
from pulse.core.errors import NotFoundError
from pulse.core.metrics import JOBS_TOTAL
from pulse.ml.sentiment.sentiment_classifier import SentimentClassifier
from pulse.models.models import (
    Message,
    MonitoredChannel,
    NotificationDelivery,
    SentimentAnalysis,
    TeamMember,
    Workspace,
)
from pulse.schemas.schemas import EmojiReaction, Recipient
from pulse.services.analytics.analytics_service import AnalyticsService
from pulse.services.channels.channel_service import ChannelService
from pulse.services.messages.message_service import MessageService
from pulse.services.notifications.notification_service import NotificationDispatcher
from pulse.services.pipeline.history_sync import ChannelHistorySync
from pulse.services.pipeline.jobs import (
    PIPELINE,
    AnalyzeSentimentJob,
    CalculateDailyMoodJob,
    GenerateWeeklyReportJob,
    Job,
    JobKind,
    JobQueue,
    SendBurnoutAlertJob,
    Stage,
    StoreMessageJob,
    SyncChannelHistoryJob,
)
from pulse.services.pipeline.ledger import JobLedger

logger = logging.getLogger(__name__)


class JobPipeline:
    def __init__(
        self,
        database: Database,
        queue: JobQueue,
        classifier: SentimentClassifier,
        messages: MessageService,
        analytics: AnalyticsService,
        channels: ChannelService,
        notifications: NotificationDispatcher,
        history_sync: ChannelHistorySync,
        ledger: JobLedger,
        pipeline: Optional[Dict[JobKind, Stage]] = None,
        failed_job_retention: int = 500,
        failed_job_alert_threshold: int = 50,
    ):
        self._database = database
        self._queue = queue
        self._classifier = classifier
        self._messages = messages
        self._analytics = analytics
        self._channels = channels
        self._notifications = notifications
        self._history_sync = history_sync
        self.ledger = ledger
        self.pipeline = pipeline or PIPELINE
        self.failed_job_retention = failed_job_retention
        self.failed_job_alert_threshold = failed_job_alert_threshold

        self._handlers = {
            JobKind.STORE_MESSAGE: self._store_message,
            JobKind.ANALYZE_SENTIMENT: self._analyze_sentiment,
            JobKind.CALCULATE_DAILY_MOOD: self._calculate_daily_mood,
            JobKind.SYNC_CHANNEL_HISTORY: self._sync_channel_history,
            JobKind.SEND_BURNOUT_ALERT: self._send_burnout_alert,
            JobKind.GENERATE_WEEKLY_REPORT: self._generate_weekly_report,
        }

    # ═══════════════════════════════════════════════════════════════════════
    # Dispatch
    # ═══════════════════════════════════════════════════════════════════════

    async def run(self, job: Job) -> Dict[str, Any]:
        kind = JobKind(job.kind)
        try:
            result = await self._handlers[kind](job)
        except Exception:
            JOBS_TOTAL.labels(kind=kind.value, outcome="error").inc()
            raise
        outcome = "skipped" if result.get("skipped") else "success"
        JOBS_TOTAL.labels(kind=kind.value, outcome=outcome).inc()
        return result

    async def _chain(self, source: JobKind, job: Job) -> None:
        target = JobKind(job.kind)
        if target not in self.pipeline[source].triggers:
            raise ValueError(f"Stage {source.value} may not trigger {target.value}")
        await self._queue.enqueue(job)

    # ═══════════════════════════════════════════════════════════════════════
    # Stage handlers
    # ═══════════════════════════════════════════════════════════════════════

    async def _store_message(self, job: StoreMessageJob) -> Dict[str, Any]:
        async with self._database.session() as db:
            channel = await self._channels.get_by_slack_id(db, job.message.slack_channel_id)
            if channel is None or not channel.is_active:
                logger.debug(f"Ignoring message from unmonitored channel {job.message.slack_channel_id}")
                return {"skipped": True, "reason": "channel not monitored"}
            message, created = await self._messages.store_message(db, channel, job.message)
            await db.commit()

        await self._chain(
            JobKind.STORE_MESSAGE,
            AnalyzeSentimentJob(message_id=message.id, text=message.text),
        )
        return {"message_id": str(message.id), "created": created}

    async def _analyze_sentiment(self, job: AnalyzeSentimentJob) -> Dict[str, Any]:
        async with self._database.session() as db:
            message = await self._messages.get_message(db, job.message_id)
            if message is None:
                logger.warning(f"Message {job.message_id} no longer exists; skipping analysis")
                return {"skipped": True, "reason": "message deleted"}

            result = await self._classifier.analyze(job.text)
            emoji_score = None
            if message.reactions:
                emoji_score = self._classifier.analyze_emoji(
                    [EmojiReaction(**r) for r in message.reactions]
                ).overall_score

            values = {
                "score": result.score,
                "label": result.label,
                "confidence": result.confidence,
                "emotions": result.emotions,
                "reasoning": result.reasoning,
                "processed_by": result.processed_by,
                "emoji_score": emoji_score,
                "analyzed_at": datetime.now(timezone.utc),
            }
            await db.execute(upsert(
                db,
                SentimentAnalysis,
                {"id": uuid.uuid4(), "message_id": job.message_id, **values},
                index_elements=["message_id"],
                update_fields=list(values),
            ))
            await db.commit()

        logger.info(
            f"Analyzed message {job.message_id}: {result.label.value} "
            f"({result.score:.2f}) via {result.processed_by}"
        )
        return {"message_id": str(job.message_id), "score": result.score, "label": result.label.value}

    async def _calculate_daily_mood(self, job: CalculateDailyMoodJob) -> Dict[str, Any]:
        async with self._database.session() as db:
            mood = await self._analytics.calculate_daily_mood(db, job.channel_id, job.day)
            warnings = await self._analytics.detect_burnout_indicators(db, job.channel_id)

        if warnings:
            await self._chain(
                JobKind.CALCULATE_DAILY_MOOD,
                SendBurnoutAlertJob(channel_id=job.channel_id, warnings=warnings),
            )
        return {
            "channel_id": str(job.channel_id),
            "day": job.day.isoformat(),
            "avg_sentiment": mood.avg_sentiment,
            "warnings": len(warnings),
        }

    async def _sync_channel_history(self, job: SyncChannelHistoryJob) -> Dict[str, Any]:
        async with self._database.session() as db:
            channel = await self._channels.get_channel(db, job.channel_id)
            if channel is None or not channel.is_active:
                return {"skipped": True, "reason": "channel not monitored"}
            token = job.credential or await self._channels.token_for(db, channel)

            async def enqueue(follow_up: Job) -> None:
                await self._chain(JobKind.SYNC_CHANNEL_HISTORY, follow_up)

            stats = await self._history_sync.sync(db, channel, token, enqueue)
        return stats.model_dump()

    async def _send_burnout_alert(self, job: SendBurnoutAlertJob) -> Dict[str, Any]:
        sent = 0
        async with self._database.session() as db:
            channel = await self._channels.get_channel(db, job.channel_id)
            if channel is None:
                raise NotFoundError(f"Channel {job.channel_id} not found")
            token = await self._channels.token_for(db, channel)
            recipients = [r for r, _ in await self._managers(db, channel.workspace_id)]

            for warning in job.warnings:
                key = (
                    f"burnout:{job.channel_id}:{warning.severity.value}:"
                    f"{warning.detected_at.isoformat()}"
                )

                async def record(slack_user_id: str, key: str = key) -> None:
                    await self._record_delivery(db, key, slack_user_id)

                sent += await self._notifications.send_burnout_alert(
                    warning,
                    recipients,
                    token,
                    already_sent=await self._delivered(db, key),
                    on_delivered=record,
                )
        return {"channel_id": str(job.channel_id), "sent": sent}

    async def _generate_weekly_report(self, job: GenerateWeeklyReportJob) -> Dict[str, Any]:
        sent = 0
        async with self._database.session() as db:
            report = await self._analytics.generate_weekly_report(db, job.week_start)
            managers = await self._managers(db)
            key = f"weekly:{job.week_start.isoformat()}"
            delivered = await self._delivered(db, key)

            for recipient, token in managers:
                if recipient.slack_user_id in delivered:
                    continue
                if await self._notifications.send_weekly_digest(report, recipient, token):
                    await self._record_delivery(db, key, recipient.slack_user_id)
                    sent += 1
        return {"report_id": str(report.id), "digests_sent": sent}

    # ── Delivery log ─────────────────────────────────────────────────────

    async def _delivered(self, db: AsyncSession, key: str) -> Set[str]:
        result = await db.execute(
            select(NotificationDelivery.slack_user_id)
            .where(NotificationDelivery.notification_key == key)
        )
        return set(result.scalars().all())

    async def _record_delivery(self, db: AsyncSession, key: str, slack_user_id: str) -> None:
        await db.execute(upsert(
            db,
            NotificationDelivery,
            {"id": uuid.uuid4(), "notification_key": key, "slack_user_id": slack_user_id},
            index_elements=["notification_key", "slack_user_id"],
        ))
        await db.commit()

    async def _managers(
        self, db: AsyncSession, workspace_id: Optional[uuid.UUID] = None,
    ) -> List[Tuple[Recipient, str]]:
        """Managers with the bot token of their workspace."""
        stmt = (
            select(TeamMember, Workspace.bot_token)
            .join(Workspace, TeamMember.workspace_id == Workspace.id)
            .where(TeamMember.is_manager.is_(True))
            .order_by(TeamMember.slack_user_id)
        )
        if workspace_id is not None:
            stmt = stmt.where(TeamMember.workspace_id == workspace_id)

        managers: List[Tuple[Recipient, str]] = []
        for member, bot_token in (await db.execute(stmt)).all():
            token = bot_token or self._channels.default_token
            if not token:
                logger.warning(f"No bot token for manager {member.slack_user_id}; skipping")
                continue
            managers.append((Recipient.model_validate(member), token))
        return managers

    # ═══════════════════════════════════════════════════════════════════════
    # Scheduled fan-outs
    # ═══════════════════════════════════════════════════════════════════════

    async def _active_channel_ids(self) -> List[Tuple[uuid.UUID, str]]:
        async with self._database.session() as db:
            result = await db.execute(
                select(MonitoredChannel.id, MonitoredChannel.slack_channel_id)
                .where(MonitoredChannel.is_active.is_(True))
                .order_by(MonitoredChannel.channel_name)
            )
            return [(row.id, row.slack_channel_id) for row in result.all()]

    async def schedule_daily_moods(self, day: Optional[date] = None) -> int:
        """Recompute yesterday (UTC) for every active channel."""
        day = day or (datetime.now(timezone.utc).date() - timedelta(days=1))
        channels = await self._active_channel_ids()
        for channel_id, _ in channels:
            await self._queue.enqueue(CalculateDailyMoodJob(channel_id=channel_id, day=day))
        logger.info(f"Scheduled daily mood for {len(channels)} channels on {day}")
        return len(channels)

    async def schedule_weekly_report(self, today: Optional[date] = None) -> date:
        """Report on the last complete Monday-to-Sunday week."""
        today = today or datetime.now(timezone.utc).date()
        week_start = today - timedelta(days=today.weekday() + 7)
        await self._queue.enqueue(GenerateWeeklyReportJob(week_start=week_start))
        logger.info(f"Scheduled weekly report for week of {week_start}")
        return week_start

    async def schedule_channel_syncs(self) -> int:
        channels = await self._active_channel_ids()
        for channel_id, slack_channel_id in channels:
            await self._queue.enqueue(SyncChannelHistoryJob(
                channel_id=channel_id, slack_channel_id=slack_channel_id,
            ))
        logger.info(f"Scheduled history sync for {len(channels)} channels")
        return len(channels)

    async def schedule_reanalysis(
        self,
        channel_id: uuid.UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Queue sentiment analysis for every stored message of one channel."""
        async with self._database.session() as db:
            channel = await self._channels.get_channel(db, channel_id)
            if channel is None or not channel.is_active:
                raise NotFoundError(f"Channel {channel_id} not found")
            stmt = (
                select(Message.id, Message.text)
                .where(Message.channel_id == channel_id)
                .order_by(Message.timestamp.asc(), Message.id.asc())
            )
            if start is not None:
                stmt = stmt.where(Message.timestamp >= start)
            if end is not None:
                stmt = stmt.where(Message.timestamp < end)
            rows = (await db.execute(stmt)).all()

        for row in rows:
            await self._queue.enqueue(AnalyzeSentimentJob(message_id=row.id, text=row.text))
        logger.info(f"Queued re-analysis of {len(rows)} messages in #{channel.channel_name}")
        return len(rows)

    async def check_queue_health(self) -> Dict[str, int]:
        async with self._database.session() as db:
            failed = await self.ledger.count_failed(db)
            if failed > self.failed_job_alert_threshold:
                logger.warning(
                    f"{failed} failed jobs recorded (threshold {self.failed_job_alert_threshold})"
                )
            pruned = await self.ledger.prune_failed(db, keep=self.failed_job_retention)
        return {"failed": failed, "pruned": pruned}
