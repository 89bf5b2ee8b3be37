"""
Team Pulse composition root.

Builds every collaborator once per process and wires them together. The API
and the Celery worker each own one Container; tests build their own with
fakes in place of the queue, the language model and the Slack transport.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from pulse.core.config import Settings
from pulse.core.database import Database
from pulse.ml.sentiment.sentiment_classifier import SentimentClassifier
from pulse.services.analytics.analytics_service import AnalyticsService
from pulse.services.channels.channel_service import ChannelService
from pulse.services.llm.llm_client import LLMClient
from pulse.services.members.member_service import MemberService
from pulse.services.messages.message_service import MessageService
from pulse.services.notifications.notification_service import NotificationDispatcher
from pulse.services.pipeline.history_sync import ChannelHistorySync
from pulse.services.pipeline.jobs import JobQueue, RetryPolicy, build_pipeline
from pulse.services.pipeline.ledger import JobLedger
from pulse.services.pipeline.pipeline import JobPipeline
from pulse.services.slack.slack_client import SlackClientPool

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    database: Database
    queue: JobQueue
    slack_pool: SlackClientPool
    llm: Optional[LLMClient]
    classifier: SentimentClassifier
    messages: MessageService
    analytics: AnalyticsService
    channels: ChannelService
    notifications: NotificationDispatcher
    members: MemberService
    ledger: JobLedger
    pipeline: JobPipeline

    async def close(self) -> None:
        await self.slack_pool.close()
        if self.llm is not None:
            await self.llm.close()
        await self.database.close()


def build_container(
    settings: Settings,
    queue: JobQueue,
    database: Optional[Database] = None,
    llm: Optional[LLMClient] = None,
    slack_transport: Optional[httpx.AsyncBaseTransport] = None,
    check_config: bool = True,
) -> Container:
    """Wire the object graph. Refuses to build with missing credentials."""
    if check_config:
        settings.require_runtime()

    database = database or Database(
        settings.database_url, echo=settings.db_echo, pool_size=settings.db_pool_size,
    )
    if llm is None and settings.openai_api_key:
        llm = LLMClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
            timeout=settings.openai_timeout_seconds,
        )

    slack_pool = SlackClientPool(
        base_url=settings.slack_api_url,
        timeout=settings.slack_timeout_seconds,
        transport=slack_transport,
    )
    classifier = SentimentClassifier(
        llm,
        batch_size=settings.classifier_batch_size,
        batch_delay=settings.classifier_batch_delay,
    )
    messages = MessageService()
    analytics = AnalyticsService.from_settings(settings)
    history_sync = ChannelHistorySync(
        slack_pool,
        messages,
        window_days=settings.history_window_days,
        max_messages=settings.history_max_messages,
        page_size=settings.history_page_size,
    )
    channels = ChannelService(
        slack_pool,
        history_sync,
        queue,
        default_token=settings.slack_bot_token,
        default_team_id=settings.slack_default_team_id,
    )
    notifications = NotificationDispatcher(slack_pool)
    members = MemberService(slack_pool, channels)
    ledger = JobLedger()
    pipeline = JobPipeline(
        database=database,
        queue=queue,
        classifier=classifier,
        messages=messages,
        analytics=analytics,
        channels=channels,
        notifications=notifications,
        history_sync=history_sync,
        ledger=ledger,
        pipeline=build_pipeline(RetryPolicy(
            max_attempts=settings.job_max_attempts,
            base_delay=settings.job_backoff_base_seconds,
        )),
        failed_job_retention=settings.failed_job_retention,
        failed_job_alert_threshold=settings.failed_job_alert_threshold,
    )

    logger.info("Service container built")
    return Container(
        settings=settings,
        database=database,
        queue=queue,
        slack_pool=slack_pool,
        llm=llm,
        classifier=classifier,
        messages=messages,
        analytics=analytics,
        channels=channels,
        notifications=notifications,
        members=members,
        ledger=ledger,
        pipeline=pipeline,
    )
