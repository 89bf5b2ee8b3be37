"""
Team Pulse ORM Models.

Messages are immutable once stored; their identity is
(channel, Slack message id). Sentiment rows and daily moods are derived and
can be regenerated from messages at any time.
"""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    JSON, Boolean, Date, DateTime, Enum, Float, ForeignKey, Index,
    Integer, String, Text, UniqueConstraint, Uuid, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pulse.core.database import Base


# ═══════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════

class SentimentLabel(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Ordinal used for severity comparisons (alert preferences, recommendations)
SEVERITY_LEVELS = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


# ═══════════════════════════════════════════════════════════════════════
# Workspace & Channels
# ═══════════════════════════════════════════════════════════════════════

class Workspace(Base):
    __tablename__ = "workspaces"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slack_team_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    team_name: Mapped[str] = mapped_column(String(256))
    bot_token: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    channels: Mapped[List["MonitoredChannel"]] = relationship("MonitoredChannel", back_populates="workspace")


class MonitoredChannel(Base):
    __tablename__ = "monitored_channels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("workspaces.id"))
    slack_channel_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    channel_name: Mapped[str] = mapped_column(String(256))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    workspace: Mapped["Workspace"] = relationship("Workspace", back_populates="channels")


# ═══════════════════════════════════════════════════════════════════════
# Messages & Sentiment
# ═══════════════════════════════════════════════════════════════════════

class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("channel_id", "slack_message_id", name="uq_messages_channel_slack_id"),
        Index("ix_messages_channel_timestamp", "channel_id", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("workspaces.id"), nullable=True)
    channel_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("monitored_channels.id"))
    slack_message_id: Mapped[str] = mapped_column(String(64))
    slack_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    thread_ts: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    text: Mapped[str] = mapped_column(Text, default="")
    reactions: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # Authoritative event time from the chat platform
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SentimentAnalysis(Base):
    """Stored sentiment result, one per message."""
    __tablename__ = "sentiment_analysis"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("messages.id"), unique=True, index=True)
    score: Mapped[float] = mapped_column(Float)
    label: Mapped[SentimentLabel] = mapped_column(Enum(SentimentLabel))
    confidence: Mapped[float] = mapped_column(Float)
    emotions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_by: Mapped[str] = mapped_column(String(64))
    emoji_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    analyzed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class DailyMood(Base):
    __tablename__ = "daily_moods"
    __table_args__ = (
        UniqueConstraint("channel_id", "mood_date", name="uq_daily_moods_channel_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    channel_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("monitored_channels.id"), index=True)
    mood_date: Mapped[date] = mapped_column(Date)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    avg_sentiment: Mapped[float] = mapped_column(Float, default=0.0)
    positive_count: Mapped[int] = mapped_column(Integer, default=0)
    negative_count: Mapped[int] = mapped_column(Integer, default=0)
    neutral_count: Mapped[int] = mapped_column(Integer, default=0)
    top_emotions: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    burnout_indicators: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ═══════════════════════════════════════════════════════════════════════
# People & Operations
# ═══════════════════════════════════════════════════════════════════════

class TeamMember(Base):
    """A workspace user; managers receive alerts and digests."""
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("workspace_id", "slack_user_id", name="uq_users_workspace_slack_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("workspaces.id"))
    slack_user_id: Mapped[str] = mapped_column(String(64))
    display_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    is_manager: Mapped[bool] = mapped_column(Boolean, default=False)
    alerts_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    min_alert_severity: Mapped[Severity] = mapped_column(Enum(Severity), default=Severity.MEDIUM)
    digest_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationDelivery(Base):
    """One DM already sent for a notification key; retries skip these recipients."""
    __tablename__ = "notification_deliveries"
    __table_args__ = (
        UniqueConstraint("notification_key", "slack_user_id", name="uq_deliveries_key_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    notification_key: Mapped[str] = mapped_column(String(256))
    slack_user_id: Mapped[str] = mapped_column(String(64))
    delivered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class FailedJob(Base):
    """A pipeline job that exhausted its attempts or failed permanently."""
    __tablename__ = "failed_jobs"
    __table_args__ = (
        Index("ix_failed_jobs_failed_at", "failed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    task_id: Mapped[str] = mapped_column(String(64), index=True)
    kind: Mapped[str] = mapped_column(String(64))
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[str] = mapped_column(Text)
    traceback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    failed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
