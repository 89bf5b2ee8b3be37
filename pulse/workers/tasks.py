"""
Team Pulse Celery Worker Tasks

One task per pipeline stage plus the periodic fan-outs:
- Message ingestion and history backfill
- Sentiment analysis
- Daily mood rollups and burnout alerts
- Weekly reports
- Queue health (failed-job ledger)

Retries follow the stage's RetryPolicy (3 attempts, 2s/4s/8s). Errors marked
non-retryable fail on the first attempt. Final failures land in the
``failed_jobs`` table.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

from celery import Celery, Task, signals
from celery.schedules import crontab

from pulse.core.config import get_settings
from pulse.core.container import Container, build_container
from pulse.core.errors import RateLimitedError, is_retryable
from pulse.core.log import configure_logging
from pulse.services.pipeline.jobs import PIPELINE, Job, JobKind, dump_job, parse_job

settings = get_settings()
logger = logging.getLogger(__name__)

# ── Celery App ───────────────────────────────────────────────────────────

celery_app = Celery(
    "pulse",
    broker=settings.celery_broker_url or None,
    backend=settings.celery_result_backend or None,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=600,
    task_time_limit=900,
    # Completed results are pruned; failures persist in failed_jobs
    result_expires=settings.celery_result_expires,
    task_default_queue="default",
    task_routes={
        f"pulse.workers.tasks.{kind.value}_task": {"queue": stage.queue}
        for kind, stage in PIPELINE.items()
    },
)

# ── Periodic Tasks ───────────────────────────────────────────────────────

celery_app.conf.beat_schedule = {
    "daily-moods-at-1am": {
        "task": "pulse.workers.tasks.schedule_daily_moods_task",
        "schedule": crontab(hour=1, minute=0),
    },
    "weekly-report-monday-9am": {
        "task": "pulse.workers.tasks.schedule_weekly_report_task",
        "schedule": crontab(hour=9, minute=0, day_of_week=1),
    },
    "sync-channels-every-4-hours": {
        "task": "pulse.workers.tasks.schedule_channel_syncs_task",
        "schedule": crontab(minute=0, hour="*/4"),
    },
    "queue-health-every-30-minutes": {
        "task": "pulse.workers.tasks.queue_health_task",
        "schedule": crontab(minute="*/30"),
    },
}


# ── Helpers ──────────────────────────────────────────────────────────────

_loop: Optional[asyncio.AbstractEventLoop] = None


def run_async(coro):
    """
    Run a coroutine on this worker process's event loop. The loop outlives
    the task because the database pool and HTTP clients are bound to it.
    """
    global _loop
    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
    return _loop.run_until_complete(coro)


@signals.setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(settings.log_level)


class CeleryJobQueue:
    """JobQueue that routes each job to its stage's task."""

    async def enqueue(self, job: Job) -> None:
        kind = JobKind(job.kind)
        JOB_TASKS[kind].apply_async(args=[dump_job(job)], queue=PIPELINE[kind].queue)


@lru_cache()
def get_container() -> Container:
    return build_container(settings, CeleryJobQueue())


class PipelineTask(Task):
    """Records a job in the failed-job ledger once Celery gives up on it."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        payload = args[0] if args else kwargs.get("payload")
        kind = (payload or {}).get("kind", self.name)
        attempts = self.request.retries + 1
        try:
            run_async(_record_failure(task_id, kind, payload, exc, str(einfo), attempts))
        except Exception as e:
            logger.error(f"Could not record failed job {task_id} ({kind}): {e}")


async def _record_failure(
    task_id: str, kind: str, payload: Optional[dict], exc: BaseException, trace: str, attempts: int,
) -> None:
    container = get_container()
    async with container.database.session() as db:
        await container.ledger.record_failure(
            db,
            task_id=task_id,
            kind=kind,
            payload=payload,
            error=f"{type(exc).__name__}: {exc}",
            traceback=trace,
            attempts=attempts,
        )


def _run_job(task: Task, payload: Dict[str, Any]) -> Dict[str, Any]:
    job = parse_job(payload)
    container = get_container()
    stage = container.pipeline.pipeline[JobKind(job.kind)]
    try:
        return run_async(container.pipeline.run(job))
    except Exception as exc:
        retries = task.request.retries
        if not is_retryable(exc) or not stage.retry.should_retry(retries):
            logger.error(f"Job {job.kind} failed permanently: {exc}")
            raise
        countdown = stage.retry.countdown(retries)
        if isinstance(exc, RateLimitedError) and exc.retry_after:
            countdown = max(countdown, exc.retry_after)
        logger.warning(f"Job {job.kind} failed (attempt {retries + 1}), retrying in {countdown}s: {exc}")
        raise task.retry(exc=exc, countdown=countdown)


# ── Stage Tasks ──────────────────────────────────────────────────────────

_MAX_RETRIES = settings.job_max_attempts - 1


@celery_app.task(
    name="pulse.workers.tasks.store_message_task",
    bind=True, base=PipelineTask, max_retries=_MAX_RETRIES, acks_late=True,
)
def store_message_task(self, payload: dict):
    """Persist an inbound message, then queue its analysis."""
    return _run_job(self, payload)


@celery_app.task(
    name="pulse.workers.tasks.analyze_sentiment_task",
    bind=True, base=PipelineTask, max_retries=_MAX_RETRIES, acks_late=True,
    rate_limit=settings.classifier_rate_limit or None,
)
def analyze_sentiment_task(self, payload: dict):
    return _run_job(self, payload)


@celery_app.task(
    name="pulse.workers.tasks.calculate_daily_mood_task",
    bind=True, base=PipelineTask, max_retries=_MAX_RETRIES, acks_late=True,
)
def calculate_daily_mood_task(self, payload: dict):
    """Recompute one channel-day and raise burnout alerts if warranted."""
    return _run_job(self, payload)


@celery_app.task(
    name="pulse.workers.tasks.sync_channel_history_task",
    bind=True, base=PipelineTask, max_retries=_MAX_RETRIES, acks_late=True,
)
def sync_channel_history_task(self, payload: dict):
    return _run_job(self, payload)


@celery_app.task(
    name="pulse.workers.tasks.send_burnout_alert_task",
    bind=True, base=PipelineTask, max_retries=_MAX_RETRIES, acks_late=True,
)
def send_burnout_alert_task(self, payload: dict):
    return _run_job(self, payload)


@celery_app.task(
    name="pulse.workers.tasks.generate_weekly_report_task",
    bind=True, base=PipelineTask, max_retries=_MAX_RETRIES, acks_late=True,
)
def generate_weekly_report_task(self, payload: dict):
    """Build last week's report and DM the digest to managers."""
    return _run_job(self, payload)


JOB_TASKS = {
    JobKind.STORE_MESSAGE: store_message_task,
    JobKind.ANALYZE_SENTIMENT: analyze_sentiment_task,
    JobKind.CALCULATE_DAILY_MOOD: calculate_daily_mood_task,
    JobKind.SYNC_CHANNEL_HISTORY: sync_channel_history_task,
    JobKind.SEND_BURNOUT_ALERT: send_burnout_alert_task,
    JobKind.GENERATE_WEEKLY_REPORT: generate_weekly_report_task,
}


# ── Periodic Fan-outs ────────────────────────────────────────────────────

@celery_app.task(name="pulse.workers.tasks.schedule_daily_moods_task")
def schedule_daily_moods_task():
    count = run_async(get_container().pipeline.schedule_daily_moods())
    return {"channels": count}


@celery_app.task(name="pulse.workers.tasks.schedule_weekly_report_task")
def schedule_weekly_report_task():
    week_start = run_async(get_container().pipeline.schedule_weekly_report())
    return {"week_start": week_start.isoformat()}


@celery_app.task(name="pulse.workers.tasks.schedule_channel_syncs_task")
def schedule_channel_syncs_task():
    count = run_async(get_container().pipeline.schedule_channel_syncs())
    return {"channels": count}


@celery_app.task(name="pulse.workers.tasks.queue_health_task")
def queue_health_task():
    """Warn when failures pile up; prune the ledger beyond retention."""
    return run_async(get_container().pipeline.check_queue_health())
