from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from pulse.models.models import DailyMood, Severity
from pulse.schemas.schemas import TrendDirection
from pulse.services.analytics.analytics_service import (
    HIGH_RECOMMENDATION,
    MEDIUM_RECOMMENDATION,
    AnalyticsService,
)

from tests.conftest import NOW


@pytest.fixture
def analytics() -> AnalyticsService:
    return AnalyticsService()


# ── Burnout ──────────────────────────────────────────────────────────────

async def test_sustained_very_negative_channel_is_high(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    await add_messages(channel, [-0.6] * 11)

    warnings = await analytics.detect_burnout_indicators(session, channel.id, now=NOW)

    assert len(warnings) == 1
    warning = warnings[0]
    assert warning.severity == Severity.HIGH
    assert warning.avg_sentiment == -0.6
    assert warning.message_count == 11
    assert "11 messages analyzed" in warning.indicators
    assert warning.recommendation == HIGH_RECOMMENDATION
    assert warning.affected_users == ["U001"]
    assert warning.channel_name == "general"


@pytest.mark.parametrize("scores,expected", [
    ([-0.9] * 8, None),
    ([-0.9] * 10, None),
    ([-0.3] * 11, Severity.MEDIUM),
    ([-0.5] * 11, Severity.MEDIUM),
    ([-0.2] * 11, None),
    ([-0.5] * 8 + [0.0] * 4, Severity.MEDIUM),
    ([0.4] * 20, None),
])
async def test_burnout_tiers(session, make_channel, add_messages, analytics, scores, expected):
    channel = await make_channel()
    await add_messages(channel, scores)

    warnings = await analytics.detect_burnout_indicators(session, channel.id, now=NOW)

    if expected is None:
        assert warnings == []
    else:
        assert [w.severity for w in warnings] == [expected]


async def test_medium_warning_text(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    await add_messages(channel, [-0.5] * 8 + [0.0] * 4)

    [warning] = await analytics.detect_burnout_indicators(session, channel.id, now=NOW)
    assert warning.avg_sentiment == -0.3333
    assert warning.indicators == ["Negative sentiment detected", "12 messages analyzed"]
    assert warning.recommendation == MEDIUM_RECOMMENDATION


async def test_burnout_ignores_old_unanalyzed_and_inactive(session, make_channel, add_messages, analytics):
    old = await make_channel("C001", "old-news")
    await add_messages(old, [-0.9] * 11, start=NOW - timedelta(days=8))

    partial = await make_channel("C002", "partial")
    await add_messages(partial, [-0.9] * 6 + [None] * 6)

    archived = await make_channel("C003", "archived", is_active=False)
    await add_messages(archived, [-0.9] * 11)

    assert await analytics.detect_burnout_indicators(session, now=NOW) == []


async def test_burnout_scans_every_active_channel(session, make_channel, add_messages, analytics):
    alpha = await make_channel("C001", "alpha")
    beta = await make_channel("C002", "beta")
    await add_messages(alpha, [-0.7] * 11)
    await add_messages(beta, [-0.3] * 11)

    warnings = await analytics.detect_burnout_indicators(session, now=NOW)

    assert [(w.channel_name, w.severity) for w in warnings] == [
        ("alpha", Severity.HIGH), ("beta", Severity.MEDIUM),
    ]


# ── Daily mood ───────────────────────────────────────────────────────────

async def test_daily_mood_is_deterministic(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    day_start = datetime(2026, 3, 10, tzinfo=timezone.utc)
    await add_messages(
        channel, [0.5, -0.5, 0.0, None],
        start=day_start + timedelta(hours=9), step=timedelta(hours=4), emotions={"joy": 0.4},
    )
    await add_messages(channel, [-0.8], start=day_start + timedelta(hours=23, minutes=30), emotions={"anger": 0.8})
    await add_messages(channel, [0.9], start=day_start + timedelta(days=1, minutes=30))

    first = await analytics.calculate_daily_mood(session, channel.id, date(2026, 3, 10))
    second = await analytics.calculate_daily_mood(session, channel.id, date(2026, 3, 10))

    assert first == second
    assert first.message_count == 5
    assert first.avg_sentiment == -0.2
    assert (first.positive_count, first.negative_count, first.neutral_count) == (1, 2, 1)
    assert first.top_emotions == {"joy": 0.3, "anger": 0.2}
    assert first.burnout_indicators["late_night_ratio"] == 0.2
    assert first.burnout_indicators["negative_ratio"] == 0.5
    assert first.burnout_indicators["high_negative_ratio"] is False
    assert first.burnout_indicators["very_negative"] is False

    rows = await session.scalar(select(func.count(DailyMood.id)))
    assert rows == 1
    [stored] = await analytics.daily_moods(session, [channel.id], date(2026, 3, 10), date(2026, 3, 10))
    assert stored.avg_sentiment == -0.2
    assert stored.message_count == 5


async def test_daily_mood_recomputes_when_late_results_land(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    day_start = datetime(2026, 3, 10, 10, tzinfo=timezone.utc)
    await add_messages(channel, [0.6], start=day_start)

    before = await analytics.calculate_daily_mood(session, channel.id, date(2026, 3, 10))
    await add_messages(channel, [-0.6, -0.6], start=day_start + timedelta(hours=1))
    after = await analytics.calculate_daily_mood(session, channel.id, date(2026, 3, 10))

    assert before.avg_sentiment == 0.6
    assert after.avg_sentiment == -0.2
    assert after.message_count == 3


async def test_daily_mood_for_empty_day(session, make_channel, analytics):
    channel = await make_channel()
    mood = await analytics.calculate_daily_mood(session, channel.id, date(2026, 3, 10))
    assert mood.message_count == 0
    assert mood.avg_sentiment == 0.0
    assert mood.top_emotions == {}


# ── Breakdown, trends, dashboard ─────────────────────────────────────────

@pytest.mark.parametrize("current,previous,trend", [
    (0.5, 0.3, TrendDirection.IMPROVING),
    (0.3, 0.5, TrendDirection.DECLINING),
    (0.35, 0.3, TrendDirection.STABLE),
    (0.4, 0.3, TrendDirection.STABLE),
    (0.8, 0.7, TrendDirection.STABLE),
    (0.3, 0.4, TrendDirection.STABLE),
    (0.41, 0.3, TrendDirection.IMPROVING),
    (0.2, 0.31, TrendDirection.DECLINING),
    (None, 0.3, TrendDirection.STABLE),
    (0.3, None, TrendDirection.STABLE),
])
def test_classify_trend(analytics, current, previous, trend):
    assert analytics.classify_trend(current, previous) == trend


async def test_breakdown_includes_quiet_channels(session, make_channel, add_messages, analytics):
    busy = await make_channel("C001", "busy")
    await make_channel("C002", "quiet")
    await make_channel("C003", "gone", is_active=False)
    await add_messages(busy, [-0.5, -0.5], start=NOW - timedelta(days=10))
    await add_messages(busy, [0.5, 0.5, None], start=NOW - timedelta(days=2))

    breakdown = await analytics.channel_breakdown(session, NOW - timedelta(days=7), NOW)

    by_name = {c.channel_name: c for c in breakdown}
    assert set(by_name) == {"busy", "quiet"}
    assert by_name["busy"].message_count == 3
    assert by_name["busy"].analyzed_count == 2
    assert by_name["busy"].avg_sentiment == 0.5
    assert by_name["busy"].trend == TrendDirection.IMPROVING
    assert by_name["quiet"].message_count == 0
    assert by_name["quiet"].avg_sentiment == 0.0
    assert by_name["quiet"].trend == TrendDirection.STABLE


async def test_dashboard_summary(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    await add_messages(channel, [0.8, 0.7, 0.9, 0.0], start=NOW - timedelta(hours=30), step=timedelta(hours=1))

    summary = await analytics.dashboard_summary(
        session, NOW - timedelta(days=7), NOW, bucket=timedelta(days=1),
    )

    assert summary.overall_sentiment.message_count == 4
    assert summary.overall_sentiment.avg_score == 0.6
    assert summary.overall_sentiment.distribution.positive == 3
    assert summary.overall_sentiment.distribution.neutral == 1
    assert len(summary.trend_series) == 7
    assert sum(p.message_count for p in summary.trend_series) == 4
    assert summary.burnout_warnings == []
    assert "High Team Morale" in [i.title for i in summary.insights]


async def test_dashboard_rejects_empty_window(session, analytics):
    with pytest.raises(ValueError):
        await analytics.dashboard_summary(session, NOW, NOW)


async def test_channel_sentiment_buckets_and_emotions(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    await add_messages(
        channel, [0.4, 0.6], start=NOW - timedelta(hours=50), step=timedelta(hours=1),
        emotions={"joy": 0.8, "neutral": 0.2},
    )
    await add_messages(channel, [-0.2, None], start=NOW - timedelta(hours=10), emotions={"frustration": 1.0})
    start = NOW - timedelta(days=3)

    history = await analytics.channel_sentiment(session, channel.id, start, NOW)

    assert history.message_count == 3
    assert history.avg_sentiment == pytest.approx(0.2667)
    assert [(p.timestamp, p.score, p.message_count) for p in history.sentiment_history] == [
        (start, 0.5, 2),
        (start + timedelta(days=2), -0.2, 1),
    ]
    assert list(history.emotion_breakdown) == ["joy", "frustration", "neutral"]
    assert history.emotion_breakdown["joy"] == pytest.approx(0.5333)


async def test_channel_sentiment_unknown_or_inactive(session, make_channel, analytics):
    archived = await make_channel("C002", "archived", is_active=False)

    assert await analytics.channel_sentiment(session, archived.id, NOW - timedelta(days=7), NOW) is None
    assert await analytics.channel_sentiment(session, uuid.uuid4(), NOW - timedelta(days=7), NOW) is None


# ── Weekly report ────────────────────────────────────────────────────────

async def test_weekly_report_healthy_week(session, make_channel, add_messages, analytics):
    channel = await make_channel()
    week_start = date(2026, 3, 2)
    await add_messages(channel, [0.2, 0.3], start=datetime(2026, 3, 3, 10, tzinfo=timezone.utc))

    report = await analytics.generate_weekly_report(session, week_start)

    assert report.week_start == datetime(2026, 3, 2, tzinfo=timezone.utc)
    assert report.week_end == datetime(2026, 3, 9, tzinfo=timezone.utc)
    assert report.channels_data["analyzed_messages"] == 2
    assert report.channels_data["overall_sentiment"] == 0.25
    assert report.burnout_warnings == []
    assert [r.title for r in report.recommendations] == ["Continue Monitoring"]
    assert report.recommendations[0].priority == Severity.LOW


async def test_weekly_report_prioritises_burnout(session, make_channel, add_messages, analytics):
    channel = await make_channel("C001", "oncall")
    await add_messages(channel, [-0.8] * 12, start=datetime(2026, 3, 4, 9, tzinfo=timezone.utc))

    report = await analytics.generate_weekly_report(session, date(2026, 3, 2))

    assert [w.severity for w in report.burnout_warnings] == [Severity.HIGH]
    assert report.recommendations[0].priority == Severity.HIGH
    assert report.recommendations[0].title == "Address burnout risk in #oncall"
    assert "Declining Team Sentiment" in [i.title for i in report.insights]
