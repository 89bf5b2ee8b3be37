"""
Slack payload helpers — turn Events API callbacks and history entries into
InboundMessage objects.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pulse.schemas.schemas import EmojiReaction, InboundMessage


def ts_to_datetime(ts: str) -> datetime:
    """Slack ``ts`` ("1712345678.000200") → aware UTC datetime."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)


def is_human_message(message: Dict[str, Any]) -> bool:
    """Bot posts and system subtypes (joins, edits, topic changes) are skipped."""
    return not message.get("bot_id") and not message.get("subtype")


def to_inbound_message(
    message: Dict[str, Any],
    slack_channel_id: str,
    slack_team_id: Optional[str] = None,
) -> InboundMessage:
    return InboundMessage(
        slack_team_id=slack_team_id,
        slack_channel_id=slack_channel_id,
        slack_message_id=message["ts"],
        slack_user_id=message.get("user"),
        text=message.get("text") or "",
        thread_ts=message.get("thread_ts"),
        timestamp=ts_to_datetime(message["ts"]),
        reactions=[
            EmojiReaction(name=r["name"], count=r.get("count", 1))
            for r in message.get("reactions", [])
            if r.get("name")
        ],
    )


def parse_message_event(payload: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Extract a storable message from an ``event_callback`` payload.
    Returns None for anything that is not a human-authored channel message.
    """
    if payload.get("type") != "event_callback":
        return None
    event = payload.get("event") or {}
    if event.get("type") != "message" or not event.get("channel") or not event.get("ts"):
        return None
    if not is_human_message(event):
        return None
    return to_inbound_message(event, event["channel"], payload.get("team_id"))


def verify_signature(
    signing_secret: str,
    timestamp: Optional[str],
    body: bytes,
    signature: Optional[str],
    now: Optional[float] = None,
    tolerance: int = 300,
) -> bool:
    """
    Check ``X-Slack-Signature`` (``v0=`` HMAC-SHA256 of ``v0:{ts}:{body}``).
    Stale timestamps are rejected to stop replays.
    """
    if not signing_secret or not timestamp or not signature:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - sent_at) > tolerance:
        return False

    base = b"v0:" + timestamp.encode() + b":" + body
    expected = "v0=" + hmac.new(signing_secret.encode(), base, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)
