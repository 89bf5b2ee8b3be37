"""
Team Pulse Job Definitions

Every unit of pipeline work is a typed job, discriminated by ``kind``:

  store_message ─────────┐
                         ├─► analyze_sentiment
  sync_channel_history ──┘
  calculate_daily_mood ──► send_burnout_alert
  generate_weekly_report

``PIPELINE`` is the single table of what may trigger what; a stage that
enqueues a kind it does not list is a programming error.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter

from pulse.schemas.schemas import BurnoutWarning, InboundMessage


class JobKind(str, Enum):
    STORE_MESSAGE = "store_message"
    ANALYZE_SENTIMENT = "analyze_sentiment"
    CALCULATE_DAILY_MOOD = "calculate_daily_mood"
    SYNC_CHANNEL_HISTORY = "sync_channel_history"
    SEND_BURNOUT_ALERT = "send_burnout_alert"
    GENERATE_WEEKLY_REPORT = "generate_weekly_report"


# ═══════════════════════════════════════════════════════════════════════
# Job variants
# ═══════════════════════════════════════════════════════════════════════

class StoreMessageJob(BaseModel):
    kind: Literal["store_message"] = "store_message"
    message: InboundMessage


class AnalyzeSentimentJob(BaseModel):
    kind: Literal["analyze_sentiment"] = "analyze_sentiment"
    message_id: uuid.UUID
    text: str


class CalculateDailyMoodJob(BaseModel):
    kind: Literal["calculate_daily_mood"] = "calculate_daily_mood"
    channel_id: uuid.UUID
    day: date


class SyncChannelHistoryJob(BaseModel):
    kind: Literal["sync_channel_history"] = "sync_channel_history"
    channel_id: uuid.UUID
    slack_channel_id: str
    # None → resolved from the workspace (or the global bot token) at run time
    credential: Optional[str] = None


class SendBurnoutAlertJob(BaseModel):
    kind: Literal["send_burnout_alert"] = "send_burnout_alert"
    channel_id: uuid.UUID
    warnings: List[BurnoutWarning]


class GenerateWeeklyReportJob(BaseModel):
    kind: Literal["generate_weekly_report"] = "generate_weekly_report"
    week_start: date


Job = Annotated[
    Union[
        StoreMessageJob,
        AnalyzeSentimentJob,
        CalculateDailyMoodJob,
        SyncChannelHistoryJob,
        SendBurnoutAlertJob,
        GenerateWeeklyReportJob,
    ],
    Field(discriminator="kind"),
]

job_adapter: TypeAdapter = TypeAdapter(Job)


def parse_job(payload: dict) -> Job:
    """Rebuild a typed job from its JSON payload."""
    return job_adapter.validate_python(payload)


def dump_job(job: Job) -> dict:
    return job.model_dump(mode="json")


# ═══════════════════════════════════════════════════════════════════════
# Pipeline graph
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 2.0

    def countdown(self, retries: int) -> float:
        """Delay before the next attempt, given how many retries already ran."""
        return self.base_delay * (2 ** retries)

    def should_retry(self, retries: int) -> bool:
        return retries + 1 < self.max_attempts


@dataclass(frozen=True)
class Stage:
    kind: JobKind
    queue: str
    triggers: FrozenSet[JobKind] = frozenset()
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def build_pipeline(retry: Optional[RetryPolicy] = None) -> Dict[JobKind, Stage]:
    retry = retry or RetryPolicy()
    stages = [
        Stage(JobKind.STORE_MESSAGE, "ingest",
              frozenset({JobKind.ANALYZE_SENTIMENT}), retry),
        Stage(JobKind.SYNC_CHANNEL_HISTORY, "ingest",
              frozenset({JobKind.ANALYZE_SENTIMENT}), retry),
        Stage(JobKind.ANALYZE_SENTIMENT, "sentiment", frozenset(), retry),
        Stage(JobKind.CALCULATE_DAILY_MOOD, "analytics",
              frozenset({JobKind.SEND_BURNOUT_ALERT}), retry),
        Stage(JobKind.SEND_BURNOUT_ALERT, "notifications", frozenset(), retry),
        Stage(JobKind.GENERATE_WEEKLY_REPORT, "analytics", frozenset(), retry),
    ]
    pipeline = {stage.kind: stage for stage in stages}
    topological_order(pipeline)
    return pipeline


def topological_order(pipeline: Dict[JobKind, Stage]) -> List[JobKind]:
    """Kahn's algorithm; raises ValueError on a cycle or an unknown trigger."""
    indegree = {kind: 0 for kind in pipeline}
    for stage in pipeline.values():
        for target in stage.triggers:
            if target not in pipeline:
                raise ValueError(f"Stage {stage.kind.value} triggers unknown kind {target}")
            indegree[target] += 1

    ready = sorted((k for k, d in indegree.items() if d == 0), key=lambda k: k.value)
    order: List[JobKind] = []
    while ready:
        kind = ready.pop(0)
        order.append(kind)
        for target in sorted(pipeline[kind].triggers, key=lambda k: k.value):
            indegree[target] -= 1
            if indegree[target] == 0:
                ready.append(target)

    if len(order) != len(pipeline):
        cyclic = sorted(k.value for k in pipeline if k not in order)
        raise ValueError(f"Pipeline graph has a cycle through: {', '.join(cyclic)}")
    return order


PIPELINE = build_pipeline()


class JobQueue(Protocol):
    """Where stages hand off follow-up work."""

    async def enqueue(self, job: Job) -> None:
        ...
