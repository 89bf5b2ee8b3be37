"""
Team Pulse Schemas — Pydantic v2 models shared by the pipeline and the API.
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from pulse.models.models import SentimentLabel, Severity


# ═══════════════════════════════════════════════════════════════════════
# Sentiment
# ═══════════════════════════════════════════════════════════════════════

class SentimentResult(BaseModel):
    score: float = Field(0.0, ge=-1.0, le=1.0)
    label: SentimentLabel = SentimentLabel.NEUTRAL
    confidence: float = Field(0.1, ge=0.0, le=1.0)
    emotions: Dict[str, float] = {}
    reasoning: Optional[str] = None
    processed_by: str = "default"


class EmojiReaction(BaseModel):
    name: str
    count: int = Field(1, ge=0)


class EmojiSentiment(BaseModel):
    overall_score: float = 0.0
    breakdown: Dict[str, float] = {}


# ═══════════════════════════════════════════════════════════════════════
# Chat platform
# ═══════════════════════════════════════════════════════════════════════

class SlackChannelInfo(BaseModel):
    id: str
    name: str
    is_member: bool = False
    is_private: bool = False


class SlackUserInfo(BaseModel):
    id: str
    name: str
    real_name: Optional[str] = None
    email: Optional[str] = None
    is_admin: bool = False
    is_owner: bool = False


class InboundMessage(BaseModel):
    """A chat message ready to be stored."""
    slack_team_id: Optional[str] = None
    slack_channel_id: str
    slack_message_id: str
    slack_user_id: Optional[str] = None
    text: str = ""
    thread_ts: Optional[str] = None
    timestamp: datetime
    reactions: List[EmojiReaction] = []


# ═══════════════════════════════════════════════════════════════════════
# Aggregates
# ═══════════════════════════════════════════════════════════════════════

class TrendDirection(str, Enum):
    STABLE = "STABLE"
    IMPROVING = "IMPROVING"
    DECLINING = "DECLINING"


class DailyMoodSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    channel_id: uuid.UUID
    mood_date: date
    message_count: int
    avg_sentiment: float
    positive_count: int
    negative_count: int
    neutral_count: int
    top_emotions: Dict[str, float] = {}
    burnout_indicators: Dict[str, float | bool] = {}


class BurnoutWarning(BaseModel):
    channel_id: uuid.UUID
    slack_channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    severity: Severity
    indicators: List[str]
    affected_users: List[str] = []
    recommendation: str
    avg_sentiment: float
    message_count: int
    detected_at: datetime


class InsightType(str, Enum):
    TREND = "trend"
    ANOMALY = "anomaly"
    PATTERN = "pattern"


class Insight(BaseModel):
    type: InsightType
    title: str
    description: str
    impact: Severity
    channel_ids: List[str] = []
    created_at: datetime


class RecommendationType(str, Enum):
    ACTION = "action"
    MONITORING = "monitoring"
    INVESTIGATION = "investigation"


class Recommendation(BaseModel):
    type: RecommendationType
    title: str
    description: str
    priority: Severity
    action_items: List[str] = []


class ChannelSentiment(BaseModel):
    channel_id: uuid.UUID
    slack_channel_id: str
    channel_name: str
    avg_sentiment: float = 0.0
    message_count: int = 0
    analyzed_count: int = 0
    trend: TrendDirection = TrendDirection.STABLE
    last_updated: Optional[datetime] = None


class SentimentDistribution(BaseModel):
    positive: int = 0
    negative: int = 0
    neutral: int = 0


class OverallSentiment(BaseModel):
    avg_score: float = 0.0
    trend: TrendDirection = TrendDirection.STABLE
    message_count: int = 0
    distribution: SentimentDistribution = SentimentDistribution()


class TrendPoint(BaseModel):
    start: datetime
    avg_sentiment: float = 0.0
    message_count: int = 0


class DashboardSummary(BaseModel):
    start: datetime
    end: datetime
    overall_sentiment: OverallSentiment
    channel_breakdown: List[ChannelSentiment]
    trend_series: List[TrendPoint]
    burnout_warnings: List[BurnoutWarning]
    insights: List[Insight]


class WeeklyReport(BaseModel):
    id: uuid.UUID
    week_start: datetime
    week_end: datetime
    channels_data: Dict[str, Any]
    channels: List[ChannelSentiment]
    burnout_warnings: List[BurnoutWarning]
    insights: List[Insight]
    recommendations: List[Recommendation]
    created_at: datetime


# ═══════════════════════════════════════════════════════════════════════
# Channel management & sync
# ═══════════════════════════════════════════════════════════════════════

class ChannelSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    slack_channel_id: str
    channel_name: str
    is_active: bool
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class AddChannelRequest(BaseModel):
    slack_channel_id: str = Field(..., min_length=1, max_length=64)
    created_by: Optional[str] = None


class WorkspaceRequest(BaseModel):
    slack_team_id: str = Field(..., min_length=1, max_length=64)
    team_name: str
    bot_token: Optional[str] = None


class SyncStats(BaseModel):
    fetched: int = 0
    stored: int = 0
    new: int = 0
    failed: int = 0


class SyncResult(BaseModel):
    success: bool
    channel_count: int = 0
    total_message_count: int = 0
    new_message_count: int = 0
    errors: List[str] = []


class Recipient(BaseModel):
    """Who receives alerts and digests, with their notification preferences."""
    model_config = ConfigDict(from_attributes=True)

    slack_user_id: str
    display_name: Optional[str] = None
    alerts_enabled: bool = True
    min_alert_severity: Severity = Severity.MEDIUM
    digest_enabled: bool = True


class MemberSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    workspace_id: uuid.UUID
    slack_user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    is_manager: bool
    alerts_enabled: bool
    min_alert_severity: Severity
    digest_enabled: bool
    created_at: Optional[datetime] = None


class MemberPreferences(BaseModel):
    """Partial update; unset fields keep their stored value."""
    is_manager: Optional[bool] = None
    alerts_enabled: Optional[bool] = None
    min_alert_severity: Optional[Severity] = None
    digest_enabled: Optional[bool] = None


class MemberRequest(MemberPreferences):
    slack_user_id: str = Field(..., min_length=1, max_length=64)


class MessageSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    channel_id: uuid.UUID
    slack_message_id: str
    slack_user_id: Optional[str] = None
    text: str
    thread_ts: Optional[str] = None
    timestamp: datetime


class SentimentPoint(BaseModel):
    timestamp: datetime
    score: float
    message_count: int


class ChannelSentimentHistory(BaseModel):
    channel_id: uuid.UUID
    channel_name: str
    avg_sentiment: float
    message_count: int
    sentiment_history: List[SentimentPoint]
    emotion_breakdown: Dict[str, float] = {}


class FailedJobSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    task_id: str
    kind: str
    payload: Optional[dict] = None
    error: str
    attempts: int
    failed_at: Optional[datetime] = None
