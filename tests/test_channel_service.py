from __future__ import annotations

import uuid
from datetime import date

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse.core.errors import (
    ChannelAlreadyMonitoredError,
    ChannelNotFoundError,
    ChatPlatformError,
    NotFoundError,
)
from pulse.models.models import DailyMood, Message, MonitoredChannel, SentimentAnalysis, Workspace


def _visible(*channels):
    return lambda params: {
        "ok": True,
        "channels": [{"id": cid, "name": name, "is_member": True} for cid, name in channels],
    }


async def _count(session, column) -> int:
    return await session.scalar(select(func.count(column)))


async def test_register_workspace_upserts(container, session):
    first = await container.channels.register_workspace(session, "T001", "Acme", "xoxb-acme")
    second = await container.channels.register_workspace(session, "T001", "Acme Corp")

    assert first.id == second.id
    assert second.team_name == "Acme Corp"
    assert second.bot_token == "xoxb-acme"
    assert await _count(session, Workspace.id) == 1


async def test_add_channel_validates_and_backfills(container, queue, slack, session):
    await container.channels.register_workspace(session, "T001", "Acme", "xoxb-acme")
    slack.handlers["conversations.list"] = _visible(("C001", "general"), ("C002", "random"))

    channel = await container.channels.add_channel(session, "C002", created_by="U001")

    assert channel.channel_name == "random"
    assert channel.is_active is True
    [job] = queue.of_kind("sync_channel_history")
    assert job.channel_id == channel.id
    assert job.slack_channel_id == "C002"
    assert job.credential is None


async def test_add_channel_rejections(container, slack, session):
    with pytest.raises(NotFoundError):
        await container.channels.add_channel(session, "C001")

    await container.channels.register_workspace(session, "T001", "Acme")
    slack.handlers["conversations.list"] = _visible(("C001", "general"))

    with pytest.raises(ChannelNotFoundError):
        await container.channels.add_channel(session, "C404")

    await container.channels.add_channel(session, "C001")
    with pytest.raises(ChannelAlreadyMonitoredError):
        await container.channels.add_channel(session, "C001")


async def test_add_channel_surfaces_slack_errors(container, slack, session):
    await container.channels.register_workspace(session, "T001", "Acme")
    slack.handlers["conversations.list"] = lambda params: {"ok": False, "error": "invalid_auth"}

    with pytest.raises(ChatPlatformError) as exc_info:
        await container.channels.add_channel(session, "C001")
    assert exc_info.value.retryable is False


async def test_soft_remove_then_readd(container, queue, slack, session):
    await container.channels.register_workspace(session, "T001", "Acme")
    slack.handlers["conversations.list"] = _visible(("C001", "general"))
    channel = await container.channels.add_channel(session, "C001")

    assert await container.channels.remove_channel(session, channel.id) is True
    assert await container.channels.list_channels(session) == []

    again = await container.channels.add_channel(session, "C001")
    assert again.id == channel.id
    assert again.is_active is True
    assert len(queue.of_kind("sync_channel_history")) == 2


async def test_delete_channel_removes_everything(container, session, make_channel, add_messages):
    analytics_day = date(2026, 3, 10)
    doomed = await make_channel("C001", "doomed")
    keeper = await make_channel("C002", "keeper")
    await add_messages(doomed, [-0.5, 0.2, None])
    await add_messages(keeper, [0.4])
    await container.analytics.calculate_daily_mood(session, doomed.id, analytics_day)
    await container.analytics.calculate_daily_mood(session, keeper.id, analytics_day)

    assert await container.channels.delete_channel(session, doomed.id) is True

    assert await _count(session, MonitoredChannel.id) == 1
    assert await _count(session, Message.id) == 1
    assert await _count(session, SentimentAnalysis.id) == 1
    assert await _count(session, DailyMood.id) == 1


async def test_delete_unknown_channel(container, session):
    assert await container.channels.delete_channel(session, uuid.uuid4()) is False
    assert await container.channels.remove_channel(session, uuid.uuid4()) is False


async def test_delete_channel_rolls_back_on_failure(container, session, make_channel, add_messages, monkeypatch):
    channel = await make_channel()
    await add_messages(channel, [0.1, 0.2])

    original = AsyncSession.execute

    async def failing_execute(self, statement, *args, **kwargs):
        if getattr(getattr(statement, "table", None), "name", None) == DailyMood.__tablename__:
            raise RuntimeError("connection lost")
        return await original(self, statement, *args, **kwargs)

    monkeypatch.setattr(AsyncSession, "execute", failing_execute)
    with pytest.raises(RuntimeError):
        await container.channels.delete_channel(session, channel.id)
    monkeypatch.undo()

    assert await _count(session, MonitoredChannel.id) == 1
    assert await _count(session, Message.id) == 2
    assert await _count(session, SentimentAnalysis.id) == 2


async def test_sync_all_channels_collects_failures(container, slack, make_channel):
    await make_channel("C001", "alpha")
    await make_channel("C002", "beta")

    def history(params):
        if params["channel"] == "C002":
            return {"ok": False, "error": "not_in_channel"}
        return {"ok": True, "messages": [], "has_more": False}

    slack.handlers["conversations.history"] = history

    async with container.database.session() as db:
        result = await container.channels.sync_all_channels(db)

    assert result.success is False
    assert result.channel_count == 2
    assert result.total_message_count == 0
    assert result.errors == ["Failed to sync channel beta: Slack conversations.history failed: not_in_channel"]
