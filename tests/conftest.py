from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl

import httpx
import pytest
from sqlalchemy import select

from pulse.core.config import Settings
from pulse.core.container import build_container
from pulse.core.database import Database
from pulse.models.models import (
    Message,
    MonitoredChannel,
    SentimentAnalysis,
    TeamMember,
    Workspace,
)
from pulse.ml.sentiment.sentiment_classifier import label_for_score


SIGNING_SECRET = "test-signing-secret"


class FakeQueue:
    def __init__(self):
        self.jobs: List[Any] = []

    async def enqueue(self, job) -> None:
        self.jobs.append(job)

    def of_kind(self, kind: str) -> List[Any]:
        return [job for job in self.jobs if job.kind == kind]


class FakeLLM:
    """Returns a canned JSON answer, or raises when ``error`` is set."""

    model = "fake-model"

    def __init__(self, answer: Optional[Callable[[str], Optional[str]]] = None, error: Optional[Exception] = None):
        self.answer = answer or (lambda text: json.dumps({
            "score": 0.6, "confidence": 0.9, "emotions": {"joy": 0.8}, "reasoning": "upbeat",
        }))
        self.error = error
        self.calls: List[str] = []

    async def complete_json(self, system_prompt: str, text: str) -> Optional[str]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.answer(text)

    async def close(self) -> None:
        pass


class SlackStub:
    """httpx MockTransport handler keyed by Web API method name."""

    def __init__(self):
        self.handlers: Dict[str, Callable[[Dict[str, str]], Any]] = {
            "conversations.open": lambda p: {"ok": True, "channel": {"id": f"D-{p['users']}"}},
            "chat.postMessage": lambda p: {"ok": True, "ts": "1.0"},
            "conversations.list": lambda p: {"ok": True, "channels": []},
            "users.info": lambda p: {"ok": True, "user": {
                "id": p["user"], "name": p["user"].lower(), "real_name": f"User {p['user']}",
                "profile": {"email": f"{p['user'].lower()}@example.com"},
            }},
        }
        self.calls: List[tuple] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        params = dict(parse_qsl(request.content.decode()))
        self.calls.append((method, params))
        result = self.handlers[method](params)
        if isinstance(result, httpx.Response):
            return result
        return httpx.Response(200, json=result)

    def calls_to(self, method: str) -> List[Dict[str, str]]:
        return [params for name, params in self.calls if name == method]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        slack_bot_token="xoxb-global",
        slack_signing_secret=SIGNING_SECRET,
        openai_api_key="sk-test",
        classifier_batch_delay=0.0,
    )


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'pulse.db'}")
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
async def session(database):
    async with database.session() as db:
        yield db


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def slack() -> SlackStub:
    return SlackStub()


@pytest.fixture
async def container(settings, queue, database, llm, slack):
    built = build_container(
        settings,
        queue,
        database=database,
        llm=llm,
        slack_transport=httpx.MockTransport(slack),
        check_config=False,
    )
    yield built
    await built.slack_pool.close()


# ── Data builders ────────────────────────────────────────────────────────

NOW = datetime(2026, 3, 11, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_channel(session):
    async def _make(
        slack_channel_id: str = "C001",
        name: str = "general",
        is_active: bool = True,
        bot_token: Optional[str] = None,
        team_id: str = "T001",
    ) -> MonitoredChannel:
        workspace = (await session.execute(
            select(Workspace).where(Workspace.slack_team_id == team_id)
        )).scalar_one_or_none()
        if workspace is None:
            workspace = Workspace(slack_team_id=team_id, team_name="Acme", bot_token=bot_token)
            session.add(workspace)
            await session.flush()
        channel = MonitoredChannel(
            workspace_id=workspace.id,
            slack_channel_id=slack_channel_id,
            channel_name=name,
            is_active=is_active,
        )
        session.add(channel)
        await session.commit()
        return channel

    return _make


@pytest.fixture
def add_messages(session):
    async def _add(
        channel: MonitoredChannel,
        scores: List[Optional[float]],
        start: datetime = NOW - timedelta(days=1),
        step: timedelta = timedelta(minutes=5),
        user: str = "U001",
        emotions: Optional[dict] = None,
    ) -> List[Message]:
        """One message per score; ``None`` leaves the message unanalyzed."""
        messages = []
        for i, score in enumerate(scores):
            message = Message(
                workspace_id=channel.workspace_id,
                channel_id=channel.id,
                slack_message_id=f"{channel.slack_channel_id}-{uuid.uuid4().hex[:8]}",
                slack_user_id=user,
                text=f"message {i}",
                timestamp=start + step * i,
            )
            session.add(message)
            await session.flush()
            if score is not None:
                session.add(SentimentAnalysis(
                    message_id=message.id,
                    score=score,
                    label=label_for_score(score),
                    confidence=0.9,
                    emotions=emotions or {"neutral": 1.0},
                    processed_by="test",
                ))
            messages.append(message)
        await session.commit()
        return messages

    return _add


@pytest.fixture
def make_manager(session):
    async def _make(channel: MonitoredChannel, slack_user_id: str, **prefs) -> TeamMember:
        member = TeamMember(
            workspace_id=channel.workspace_id,
            slack_user_id=slack_user_id,
            display_name=slack_user_id.lower(),
            is_manager=True,
            **prefs,
        )
        session.add(member)
        await session.commit()
        return member

    return _make
