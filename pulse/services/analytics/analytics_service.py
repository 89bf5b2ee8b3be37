"""
Team Pulse Analytics Service

Turns stored sentiment into team-level signals:
  - Daily mood rollups per channel (persisted, recomputable)
  - Burnout warnings over a rolling window
  - Per-channel breakdown with trend vs. the preceding window
  - Dashboard summary (overall sentiment, trend series, insights)
  - Weekly reports with recommendations

Burnout tiers: the window average is rounded to 4 decimals, then
avg < -0.5 is HIGH, -0.5 <= avg < -0.2 is MEDIUM, anything else raises
nothing. A channel is only considered once it has more than 10 analyzed
messages in the window.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.core.config import Settings
from pulse.core.database import upsert
from pulse.core.metrics import BURNOUT_WARNINGS_TOTAL
from pulse.ml.sentiment.sentiment_classifier import (
    NEGATIVE_THRESHOLD,
    POSITIVE_THRESHOLD,
    label_for_score,
)
from pulse.models.models import (
    DailyMood,
    Message,
    MonitoredChannel,
    SentimentAnalysis,
    SentimentLabel,
    Severity,
)
from pulse.schemas.schemas import (
    BurnoutWarning,
    ChannelSentiment,
    ChannelSentimentHistory,
    DailyMoodSchema,
    DashboardSummary,
    Insight,
    InsightType,
    OverallSentiment,
    Recommendation,
    RecommendationType,
    SentimentDistribution,
    SentimentPoint,
    TrendDirection,
    TrendPoint,
    WeeklyReport,
)

logger = logging.getLogger(__name__)

HIGH_RECOMMENDATION = "Consider team check-in or workload review for this channel"
MEDIUM_RECOMMENDATION = "Monitor channel sentiment trends closely"

TOP_EMOTIONS = 5
LATE_NIGHT_START = 22
LATE_NIGHT_END = 6


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _round(value: Optional[float]) -> float:
    return round(float(value), 4) if value is not None else 0.0


class AnalyticsService:
    """Aggregation over messages and their sentiment rows."""

    def __init__(
        self,
        burnout_window_days: int = 7,
        burnout_min_messages: int = 10,
        high_threshold: float = -0.5,
        medium_threshold: float = -0.2,
        trend_delta: float = 0.1,
    ):
        self.burnout_window = timedelta(days=burnout_window_days)
        self.burnout_min_messages = burnout_min_messages
        self.high_threshold = high_threshold
        self.medium_threshold = medium_threshold
        self.trend_delta = trend_delta

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalyticsService":
        return cls(
            burnout_window_days=settings.burnout_window_days,
            burnout_min_messages=settings.burnout_min_messages,
            high_threshold=settings.burnout_high_threshold,
            medium_threshold=settings.burnout_medium_threshold,
            trend_delta=settings.trend_delta_threshold,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Pure rules
    # ═══════════════════════════════════════════════════════════════════════

    def classify_trend(
        self, current: Optional[float], previous: Optional[float],
    ) -> TrendDirection:
        if current is None or previous is None:
            return TrendDirection.STABLE
        delta = round(current - previous, 4)
        if delta > self.trend_delta:
            return TrendDirection.IMPROVING
        if delta < -self.trend_delta:
            return TrendDirection.DECLINING
        return TrendDirection.STABLE

    def evaluate_burnout(
        self,
        channel_id: uuid.UUID,
        avg_sentiment: float,
        analyzed_count: int,
        detected_at: datetime,
        slack_channel_id: Optional[str] = None,
        channel_name: Optional[str] = None,
        affected_users: Sequence[str] = (),
    ) -> Optional[BurnoutWarning]:
        """Apply the tier rules to one channel's window aggregate."""
        if analyzed_count <= self.burnout_min_messages:
            return None

        avg = _round(avg_sentiment)
        if avg < self.high_threshold:
            severity = Severity.HIGH
            indicators = [
                f"Very negative sentiment ({self.high_threshold} or lower)",
                f"{analyzed_count} messages analyzed",
            ]
            recommendation = HIGH_RECOMMENDATION
        elif avg < self.medium_threshold:
            severity = Severity.MEDIUM
            indicators = [
                "Negative sentiment detected",
                f"{analyzed_count} messages analyzed",
            ]
            recommendation = MEDIUM_RECOMMENDATION
        else:
            return None

        return BurnoutWarning(
            channel_id=channel_id,
            slack_channel_id=slack_channel_id,
            channel_name=channel_name,
            severity=severity,
            indicators=indicators,
            affected_users=list(affected_users),
            recommendation=recommendation,
            avg_sentiment=avg,
            message_count=analyzed_count,
            detected_at=detected_at,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Daily mood
    # ═══════════════════════════════════════════════════════════════════════

    async def calculate_daily_mood(
        self, db: AsyncSession, channel_id: uuid.UUID, day: date,
    ) -> DailyMoodSchema:
        """
        Recompute and persist one channel's mood for one UTC day.
        Running it twice over the same data yields the same row.
        """
        start, end = _day_bounds(day)
        window = and_(
            Message.channel_id == channel_id,
            Message.timestamp >= start,
            Message.timestamp < end,
        )

        timestamps = (await db.execute(select(Message.timestamp).where(window))).scalars().all()
        message_count = len(timestamps)

        rows = (await db.execute(
            select(SentimentAnalysis.score, SentimentAnalysis.emotions)
            .join(Message, SentimentAnalysis.message_id == Message.id)
            .where(window)
            .order_by(Message.timestamp.asc(), Message.id.asc())
        )).all()
        scores = [row.score for row in rows]
        analyzed = len(scores)

        avg = _round(sum(scores) / analyzed) if analyzed else 0.0
        labels = [label_for_score(s) for s in scores]
        positive = labels.count(SentimentLabel.POSITIVE)
        negative = labels.count(SentimentLabel.NEGATIVE)
        neutral = labels.count(SentimentLabel.NEUTRAL)

        emotion_totals: Dict[str, float] = {}
        for row in rows:
            for name, weight in (row.emotions or {}).items():
                emotion_totals[name] = emotion_totals.get(name, 0.0) + float(weight)
        top_emotions = dict(sorted(
            ((name, _round(total / analyzed)) for name, total in emotion_totals.items()),
            key=lambda item: (-item[1], item[0]),
        )[:TOP_EMOTIONS])

        late_night = sum(
            1 for ts in timestamps
            if _as_utc(ts).hour >= LATE_NIGHT_START or _as_utc(ts).hour < LATE_NIGHT_END
        )
        negative_ratio = _round(negative / analyzed) if analyzed else 0.0
        indicators = {
            "very_negative": analyzed > 0 and avg < self.high_threshold,
            "negative": analyzed > 0 and avg < self.medium_threshold,
            "negative_ratio": negative_ratio,
            "high_negative_ratio": negative_ratio > 0.5,
            "late_night_ratio": _round(late_night / message_count) if message_count else 0.0,
        }

        values = {
            "message_count": message_count,
            "avg_sentiment": avg,
            "positive_count": positive,
            "negative_count": negative,
            "neutral_count": neutral,
            "top_emotions": top_emotions,
            "burnout_indicators": indicators,
            "computed_at": datetime.now(timezone.utc),
        }
        await db.execute(upsert(
            db,
            DailyMood,
            {"id": uuid.uuid4(), "channel_id": channel_id, "mood_date": day, **values},
            index_elements=["channel_id", "mood_date"],
            update_fields=list(values),
        ))
        await db.commit()

        logger.info(
            f"Daily mood for channel {channel_id} on {day}: "
            f"{message_count} messages, avg {avg}"
        )
        return DailyMoodSchema(
            channel_id=channel_id,
            mood_date=day,
            message_count=message_count,
            avg_sentiment=avg,
            positive_count=positive,
            negative_count=negative,
            neutral_count=neutral,
            top_emotions=top_emotions,
            burnout_indicators=indicators,
        )

    async def daily_moods(
        self,
        db: AsyncSession,
        channel_ids: Optional[Sequence[uuid.UUID]],
        start: date,
        end: date,
    ) -> List[DailyMoodSchema]:
        stmt = (
            select(DailyMood)
            .where(DailyMood.mood_date >= start, DailyMood.mood_date <= end)
            .order_by(DailyMood.mood_date.asc(), DailyMood.channel_id)
        )
        if channel_ids:
            stmt = stmt.where(DailyMood.channel_id.in_(list(channel_ids)))
        rows = (await db.execute(stmt)).scalars().all()
        return [DailyMoodSchema.model_validate(row) for row in rows]

    # ═══════════════════════════════════════════════════════════════════════
    # Burnout
    # ═══════════════════════════════════════════════════════════════════════

    async def detect_burnout_indicators(
        self,
        db: AsyncSession,
        channel_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> List[BurnoutWarning]:
        """
        Rolling-window check over active channels: one channel when
        ``channel_id`` is given, every active channel otherwise.
        """
        now = _as_utc(now) if now else datetime.now(timezone.utc)
        warnings = await self._burnout_scan(
            db, now - self.burnout_window, now, channel_id=channel_id, end_inclusive=True,
        )
        for warning in warnings:
            BURNOUT_WARNINGS_TOTAL.labels(severity=warning.severity.value).inc()
            logger.warning(
                f"Burnout {warning.severity.value} in #{warning.channel_name}: "
                f"avg {warning.avg_sentiment} over {warning.message_count} messages"
            )
        return warnings

    async def _burnout_scan(
        self,
        db: AsyncSession,
        start: datetime,
        end: datetime,
        channel_id: Optional[uuid.UUID] = None,
        end_inclusive: bool = False,
    ) -> List[BurnoutWarning]:
        upper = Message.timestamp <= end if end_inclusive else Message.timestamp < end
        stmt = (
            select(
                MonitoredChannel.id,
                MonitoredChannel.slack_channel_id,
                MonitoredChannel.channel_name,
                func.avg(SentimentAnalysis.score).label("avg_sentiment"),
                func.count(SentimentAnalysis.id).label("analyzed_count"),
            )
            .join(Message, Message.channel_id == MonitoredChannel.id)
            .join(SentimentAnalysis, SentimentAnalysis.message_id == Message.id)
            .where(
                MonitoredChannel.is_active.is_(True),
                Message.timestamp >= start,
                upper,
            )
            .group_by(
                MonitoredChannel.id,
                MonitoredChannel.slack_channel_id,
                MonitoredChannel.channel_name,
            )
            .order_by(MonitoredChannel.channel_name)
        )
        if channel_id is not None:
            stmt = stmt.where(MonitoredChannel.id == channel_id)

        warnings: List[BurnoutWarning] = []
        for row in (await db.execute(stmt)).all():
            warning = self.evaluate_burnout(
                channel_id=row.id,
                avg_sentiment=row.avg_sentiment,
                analyzed_count=row.analyzed_count,
                detected_at=end,
                slack_channel_id=row.slack_channel_id,
                channel_name=row.channel_name,
            )
            if warning is None:
                continue
            warning.affected_users = await self._negative_authors(db, row.id, start, upper)
            warnings.append(warning)
        return warnings

    async def _negative_authors(
        self, db: AsyncSession, channel_id: uuid.UUID, start: datetime, upper,
    ) -> List[str]:
        result = await db.execute(
            select(Message.slack_user_id)
            .join(SentimentAnalysis, SentimentAnalysis.message_id == Message.id)
            .where(
                Message.channel_id == channel_id,
                Message.timestamp >= start,
                upper,
                Message.slack_user_id.is_not(None),
                SentimentAnalysis.score < NEGATIVE_THRESHOLD,
            )
            .distinct()
            .order_by(Message.slack_user_id)
        )
        return list(result.scalars().all())

    # ═══════════════════════════════════════════════════════════════════════
    # Channel breakdown
    # ═══════════════════════════════════════════════════════════════════════

    async def _channel_aggregates(
        self, db: AsyncSession, start: datetime, end: datetime,
    ) -> List[ChannelSentiment]:
        # Window predicate lives in the ON clause so quiet channels keep their row
        stmt = (
            select(
                MonitoredChannel.id,
                MonitoredChannel.slack_channel_id,
                MonitoredChannel.channel_name,
                func.count(Message.id).label("message_count"),
                func.count(SentimentAnalysis.id).label("analyzed_count"),
                func.avg(SentimentAnalysis.score).label("avg_sentiment"),
                func.max(Message.timestamp).label("last_message_at"),
            )
            .select_from(MonitoredChannel)
            .outerjoin(Message, and_(
                Message.channel_id == MonitoredChannel.id,
                Message.timestamp >= start,
                Message.timestamp < end,
            ))
            .outerjoin(SentimentAnalysis, SentimentAnalysis.message_id == Message.id)
            .where(MonitoredChannel.is_active.is_(True))
            .group_by(
                MonitoredChannel.id,
                MonitoredChannel.slack_channel_id,
                MonitoredChannel.channel_name,
            )
            .order_by(MonitoredChannel.channel_name)
        )
        return [
            ChannelSentiment(
                channel_id=row.id,
                slack_channel_id=row.slack_channel_id,
                channel_name=row.channel_name,
                avg_sentiment=_round(row.avg_sentiment),
                message_count=row.message_count,
                analyzed_count=row.analyzed_count,
                last_updated=_as_utc(row.last_message_at) if row.last_message_at else None,
            )
            for row in (await db.execute(stmt)).all()
        ]

    async def channel_breakdown(
        self, db: AsyncSession, start: datetime, end: datetime,
    ) -> List[ChannelSentiment]:
        """Every active channel, with its trend against the preceding window."""
        current = await self._channel_aggregates(db, start, end)
        previous = {
            c.channel_id: c
            for c in await self._channel_aggregates(db, start - (end - start), start)
        }
        for channel in current:
            before = previous.get(channel.channel_id)
            channel.trend = self.classify_trend(
                channel.avg_sentiment if channel.analyzed_count else None,
                before.avg_sentiment if before and before.analyzed_count else None,
            )
        return current

    async def channel_sentiment(
        self,
        db: AsyncSession,
        channel_id: uuid.UUID,
        start: datetime,
        end: datetime,
        bucket: timedelta = timedelta(days=1),
    ) -> Optional[ChannelSentimentHistory]:
        """One channel's bucketed sentiment history and mean emotion weights."""
        channel = await db.get(MonitoredChannel, channel_id)
        if channel is None or not channel.is_active:
            return None
        start, end = _as_utc(start), _as_utc(end)

        rows = (await db.execute(
            select(Message.timestamp, SentimentAnalysis.score, SentimentAnalysis.emotions)
            .join(SentimentAnalysis, SentimentAnalysis.message_id == Message.id)
            .where(
                Message.channel_id == channel_id,
                Message.timestamp >= start,
                Message.timestamp < end,
            )
            .order_by(Message.timestamp.asc())
        )).all()

        buckets: Dict[int, List[float]] = {}
        emotion_totals: Dict[str, float] = {}
        for row in rows:
            index = (_as_utc(row.timestamp) - start) // bucket
            buckets.setdefault(index, []).append(row.score)
            for name, weight in (row.emotions or {}).items():
                emotion_totals[name] = emotion_totals.get(name, 0.0) + float(weight)

        analyzed = len(rows)
        history = [
            SentimentPoint(
                timestamp=start + bucket * index,
                score=_round(sum(scores) / len(scores)),
                message_count=len(scores),
            )
            for index, scores in sorted(buckets.items())
        ]
        breakdown = dict(sorted(
            ((name, _round(total / analyzed)) for name, total in emotion_totals.items()),
            key=lambda item: (-item[1], item[0]),
        ))
        return ChannelSentimentHistory(
            channel_id=channel.id,
            channel_name=channel.channel_name,
            avg_sentiment=_round(sum(r.score for r in rows) / analyzed) if analyzed else 0.0,
            message_count=analyzed,
            sentiment_history=history,
            emotion_breakdown=breakdown,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Dashboard
    # ═══════════════════════════════════════════════════════════════════════

    async def _overall(
        self, db: AsyncSession, start: datetime, end: datetime,
    ) -> Tuple[Optional[float], int, SentimentDistribution]:
        row = (await db.execute(
            select(
                func.avg(SentimentAnalysis.score).label("avg_sentiment"),
                func.count(SentimentAnalysis.id).label("analyzed_count"),
                func.sum(case((SentimentAnalysis.score > POSITIVE_THRESHOLD, 1), else_=0)).label("positive"),
                func.sum(case((SentimentAnalysis.score < NEGATIVE_THRESHOLD, 1), else_=0)).label("negative"),
            )
            .select_from(SentimentAnalysis)
            .join(Message, SentimentAnalysis.message_id == Message.id)
            .join(MonitoredChannel, Message.channel_id == MonitoredChannel.id)
            .where(
                MonitoredChannel.is_active.is_(True),
                Message.timestamp >= start,
                Message.timestamp < end,
            )
        )).one()

        count = row.analyzed_count or 0
        positive = row.positive or 0
        negative = row.negative or 0
        distribution = SentimentDistribution(
            positive=positive, negative=negative, neutral=count - positive - negative,
        )
        avg = _round(row.avg_sentiment) if count else None
        return avg, count, distribution

    async def _trend_series(
        self, db: AsyncSession, start: datetime, end: datetime, bucket: timedelta,
    ) -> List[TrendPoint]:
        rows = (await db.execute(
            select(Message.timestamp, SentimentAnalysis.score)
            .join(SentimentAnalysis, SentimentAnalysis.message_id == Message.id)
            .join(MonitoredChannel, Message.channel_id == MonitoredChannel.id)
            .where(
                MonitoredChannel.is_active.is_(True),
                Message.timestamp >= start,
                Message.timestamp < end,
            )
        )).all()

        buckets: Dict[int, List[float]] = {}
        for row in rows:
            index = (_as_utc(row.timestamp) - start) // bucket
            buckets.setdefault(index, []).append(row.score)

        points: List[TrendPoint] = []
        index = 0
        cursor = start
        while cursor < end:
            scores = buckets.get(index, [])
            points.append(TrendPoint(
                start=cursor,
                avg_sentiment=_round(sum(scores) / len(scores)) if scores else 0.0,
                message_count=len(scores),
            ))
            index += 1
            cursor += bucket
        return points

    def generate_insights(
        self,
        overall_avg: Optional[float],
        channels: Sequence[ChannelSentiment],
        warnings: Sequence[BurnoutWarning],
        now: datetime,
    ) -> List[Insight]:
        insights: List[Insight] = []

        if overall_avg is not None and overall_avg > 0.5:
            insights.append(Insight(
                type=InsightType.TREND,
                title="High Team Morale",
                description=f"Overall team sentiment is strongly positive ({overall_avg:.2f}).",
                impact=Severity.LOW,
                created_at=now,
            ))
        elif overall_avg is not None and overall_avg < -0.3:
            insights.append(Insight(
                type=InsightType.TREND,
                title="Declining Team Sentiment",
                description=f"Overall team sentiment is negative ({overall_avg:.2f}).",
                impact=Severity.HIGH,
                created_at=now,
            ))

        for channel in channels:
            if channel.trend == TrendDirection.DECLINING:
                insights.append(Insight(
                    type=InsightType.TREND,
                    title=f"Declining sentiment in #{channel.channel_name}",
                    description="Sentiment dropped compared with the previous period.",
                    impact=Severity.MEDIUM,
                    channel_ids=[channel.slack_channel_id],
                    created_at=now,
                ))
            elif channel.trend == TrendDirection.IMPROVING:
                insights.append(Insight(
                    type=InsightType.TREND,
                    title=f"Improving sentiment in #{channel.channel_name}",
                    description="Sentiment rose compared with the previous period.",
                    impact=Severity.LOW,
                    channel_ids=[channel.slack_channel_id],
                    created_at=now,
                ))

        if warnings:
            worst = Severity.HIGH if any(w.severity == Severity.HIGH for w in warnings) else Severity.MEDIUM
            insights.append(Insight(
                type=InsightType.ANOMALY,
                title="Burnout Risk Detected",
                description=f"{len(warnings)} channel(s) show sustained negative sentiment.",
                impact=worst,
                channel_ids=[w.slack_channel_id for w in warnings if w.slack_channel_id],
                created_at=now,
            ))
        return insights

    def generate_recommendations(
        self, warnings: Sequence[BurnoutWarning],
    ) -> List[Recommendation]:
        recommendations: List[Recommendation] = []
        for warning in warnings:
            name = warning.channel_name or warning.slack_channel_id or str(warning.channel_id)
            if warning.severity == Severity.HIGH:
                recommendations.append(Recommendation(
                    type=RecommendationType.ACTION,
                    title=f"Address burnout risk in #{name}",
                    description=warning.recommendation,
                    priority=Severity.HIGH,
                    action_items=[
                        "Schedule a team check-in this week",
                        "Review current workload and deadlines",
                        "Follow up one-on-one with affected team members",
                    ],
                ))
            else:
                recommendations.append(Recommendation(
                    type=RecommendationType.MONITORING,
                    title=f"Watch sentiment in #{name}",
                    description=warning.recommendation,
                    priority=Severity.MEDIUM,
                    action_items=["Review the channel's daily mood over the next week"],
                ))

        if not recommendations:
            recommendations.append(Recommendation(
                type=RecommendationType.MONITORING,
                title="Continue Monitoring",
                description="Team sentiment looks healthy. Keep tracking trends week over week.",
                priority=Severity.LOW,
            ))
        return recommendations

    async def dashboard_summary(
        self,
        db: AsyncSession,
        start: datetime,
        end: datetime,
        bucket: Optional[timedelta] = None,
    ) -> DashboardSummary:
        start, end = _as_utc(start), _as_utc(end)
        if end <= start:
            raise ValueError("Dashboard window end must be after start")
        bucket = bucket or timedelta(days=1)
        span = end - start

        avg, count, distribution = await self._overall(db, start, end)
        previous_avg, previous_count, _ = await self._overall(db, start - span, start)
        channels = await self.channel_breakdown(db, start, end)
        series = await self._trend_series(db, start, end, bucket)
        warnings = await self._burnout_scan(db, end - self.burnout_window, end, end_inclusive=True)

        overall = OverallSentiment(
            avg_score=avg if avg is not None else 0.0,
            trend=self.classify_trend(avg, previous_avg if previous_count else None),
            message_count=count,
            distribution=distribution,
        )
        return DashboardSummary(
            start=start,
            end=end,
            overall_sentiment=overall,
            channel_breakdown=channels,
            trend_series=series,
            burnout_warnings=warnings,
            insights=self.generate_insights(avg, channels, warnings, datetime.now(timezone.utc)),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Weekly report
    # ═══════════════════════════════════════════════════════════════════════

    async def generate_weekly_report(
        self, db: AsyncSession, week_start: date,
    ) -> WeeklyReport:
        start, _ = _day_bounds(week_start)
        end = start + timedelta(days=7)
        now = datetime.now(timezone.utc)

        avg, count, distribution = await self._overall(db, start, end)
        channels = await self.channel_breakdown(db, start, end)
        warnings = await self._burnout_scan(db, start, end)

        report = WeeklyReport(
            id=uuid.uuid4(),
            week_start=start,
            week_end=end,
            channels_data={
                "overall_sentiment": avg if avg is not None else 0.0,
                "total_messages": sum(c.message_count for c in channels),
                "analyzed_messages": count,
                "channel_count": len(channels),
                "distribution": distribution.model_dump(),
            },
            channels=channels,
            burnout_warnings=warnings,
            insights=self.generate_insights(avg, channels, warnings, now),
            recommendations=self.generate_recommendations(warnings),
            created_at=now,
        )
        logger.info(
            f"Weekly report {report.id} for {week_start}: {len(channels)} channels, "
            f"{len(warnings)} burnout warnings"
        )
        return report
