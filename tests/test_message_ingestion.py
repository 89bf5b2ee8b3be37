from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

from pulse.schemas.schemas import EmojiReaction, InboundMessage
from pulse.services.messages.message_service import MessageService
from pulse.services.slack.events import parse_message_event, ts_to_datetime, verify_signature


def _inbound(ts: str = "1773230400.000100", text: str = "hello team") -> InboundMessage:
    return InboundMessage(
        slack_channel_id="C001",
        slack_message_id=ts,
        slack_user_id="U001",
        text=text,
        timestamp=ts_to_datetime(ts),
        reactions=[EmojiReaction(name="tada", count=2)],
    )


async def test_store_message_is_idempotent(session, make_channel):
    channel = await make_channel()
    service = MessageService()

    first, created = await service.store_message(session, channel, _inbound())
    await session.commit()
    second, created_again = await service.store_message(session, channel, _inbound(text="edited"))
    await session.commit()

    assert created is True
    assert created_again is False
    assert first.id == second.id
    assert second.text == "hello team"
    assert second.reactions == [{"name": "tada", "count": 2}]
    assert await service.count_channel_messages(session, channel.id) == 1


async def test_channel_messages_are_ordered_by_timestamp(session, make_channel):
    channel = await make_channel()
    service = MessageService()
    for ts in ("1773230500.000000", "1773230400.000000", "1773230450.000000"):
        await service.store_message(session, channel, _inbound(ts=ts))
    await session.commit()

    messages = await service.get_channel_messages(
        session,
        channel.id,
        datetime(2026, 3, 1, tzinfo=timezone.utc),
        datetime(2026, 4, 1, tzinfo=timezone.utc),
    )
    assert [m.slack_message_id for m in messages] == [
        "1773230400.000000", "1773230450.000000", "1773230500.000000",
    ]


async def test_user_messages_span_active_channels(session, make_channel, add_messages):
    general = await make_channel("C001", "general")
    social = await make_channel("C002", "social")
    archived = await make_channel("C003", "archived", is_active=False)
    start = datetime(2026, 3, 10, tzinfo=timezone.utc)
    await add_messages(social, [0.1], start=start + timedelta(hours=2), user="U001")
    await add_messages(general, [0.2], start=start + timedelta(hours=1), user="U001")
    await add_messages(general, [0.3], start=start + timedelta(hours=1), user="U002")
    await add_messages(archived, [0.4], start=start + timedelta(hours=3), user="U001")
    await add_messages(general, [0.5], start=start - timedelta(days=1), user="U001")

    messages = await MessageService().get_user_messages(session, "U001", start, start + timedelta(days=1))

    assert [m.channel_id for m in messages] == [general.id, social.id]


def test_ts_to_datetime_is_utc():
    assert ts_to_datetime("0.5") == datetime(1970, 1, 1, 0, 0, 0, 500000, tzinfo=timezone.utc)


def test_parse_message_event():
    payload = {
        "type": "event_callback",
        "team_id": "T001",
        "event": {
            "type": "message",
            "channel": "C001",
            "user": "U042",
            "text": "Deploy went fine",
            "ts": "1773230400.000100",
            "thread_ts": "1773230000.000000",
        },
    }
    message = parse_message_event(payload)
    assert message is not None
    assert message.slack_team_id == "T001"
    assert message.slack_channel_id == "C001"
    assert message.slack_message_id == "1773230400.000100"
    assert message.thread_ts == "1773230000.000000"
    assert message.text == "Deploy went fine"


def test_parse_message_event_skips_bots_and_subtypes():
    base = {"type": "message", "channel": "C001", "ts": "1.0", "text": "hi"}
    assert parse_message_event({"type": "event_callback", "event": {**base, "bot_id": "B1"}}) is None
    assert parse_message_event({"type": "event_callback", "event": {**base, "subtype": "channel_join"}}) is None
    assert parse_message_event({"type": "event_callback", "event": {**base, "type": "reaction_added"}}) is None
    assert parse_message_event({"type": "url_verification", "challenge": "abc"}) is None


def _signature(secret: str, timestamp: str, body: bytes) -> str:
    return "v0=" + hmac.new(secret.encode(), b"v0:" + timestamp.encode() + b":" + body, hashlib.sha256).hexdigest()


def test_verify_signature():
    body = b'{"type":"event_callback"}'
    signature = _signature("s3cret", "1773230400", body)

    assert verify_signature("s3cret", "1773230400", body, signature, now=1773230460)
    assert not verify_signature("other", "1773230400", body, signature, now=1773230460)
    assert not verify_signature("s3cret", "1773230400", body + b" ", signature, now=1773230460)
    assert not verify_signature("s3cret", "1773230400", body, signature, now=1773230400 + 301)
    assert not verify_signature("s3cret", "soon", body, signature, now=1773230460)
    assert not verify_signature("s3cret", None, body, signature, now=1773230460)
    assert not verify_signature("", "1773230400", body, signature, now=1773230460)
