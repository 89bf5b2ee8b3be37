from __future__ import annotations

import uuid
from datetime import datetime, timezone

import httpx
import pytest

from pulse.core.errors import ChatPlatformError, RateLimitedError, TransientError, is_retryable
from pulse.models.models import Severity
from pulse.schemas.schemas import BurnoutWarning, Recipient
from pulse.services.notifications.notification_service import (
    NotificationDispatcher,
    format_burnout_alert,
    should_alert,
)
from pulse.services.slack.slack_client import SlackClient, SlackClientPool

from tests.conftest import SlackStub


def _warning(severity: Severity) -> BurnoutWarning:
    return BurnoutWarning(
        channel_id=uuid.uuid4(),
        slack_channel_id="C001",
        channel_name="oncall",
        severity=severity,
        indicators=["Very negative sentiment (-0.5 or lower)", "14 messages analyzed"],
        recommendation="Consider team check-in or workload review for this channel",
        avg_sentiment=-0.62,
        message_count=14,
        detected_at=datetime(2026, 3, 11, tzinfo=timezone.utc),
    )


@pytest.mark.parametrize("minimum,severity,expected", [
    (Severity.LOW, Severity.LOW, True),
    (Severity.MEDIUM, Severity.LOW, False),
    (Severity.MEDIUM, Severity.MEDIUM, True),
    (Severity.MEDIUM, Severity.HIGH, True),
    (Severity.HIGH, Severity.MEDIUM, False),
])
def test_severity_gating(minimum, severity, expected):
    recipient = Recipient(slack_user_id="U1", min_alert_severity=minimum)
    assert should_alert(recipient, severity) is expected


def test_alerts_disabled_means_no_alert():
    recipient = Recipient(slack_user_id="U1", alerts_enabled=False, min_alert_severity=Severity.LOW)
    assert should_alert(recipient, Severity.HIGH) is False


def test_alert_format():
    text = format_burnout_alert(_warning(Severity.HIGH))
    assert text.startswith("🔴 *Burnout warning: #oncall*")
    assert "Severity: *HIGH*" in text
    assert "• 14 messages analyzed" in text
    assert "-0.62 over 14 messages" in text


async def test_dispatcher_sends_only_to_eligible_recipients():
    stub = SlackStub()
    dispatcher = NotificationDispatcher(SlackClientPool(transport=httpx.MockTransport(stub)))
    recipients = [
        Recipient(slack_user_id="U1"),
        Recipient(slack_user_id="U2", min_alert_severity=Severity.HIGH),
        Recipient(slack_user_id="U3", alerts_enabled=False),
    ]

    sent = await dispatcher.send_burnout_alert(_warning(Severity.HIGH), recipients, "xoxb-1")

    assert sent == 2
    assert [p["users"] for p in stub.calls_to("conversations.open")] == ["U1", "U2"]


async def test_delivery_failures_propagate():
    stub = SlackStub()
    stub.handlers["chat.postMessage"] = lambda params: {"ok": False, "error": "channel_not_found"}
    dispatcher = NotificationDispatcher(SlackClientPool(transport=httpx.MockTransport(stub)))

    with pytest.raises(ChatPlatformError) as exc_info:
        await dispatcher.send_burnout_alert(
            _warning(Severity.HIGH), [Recipient(slack_user_id="U1")], "xoxb-1",
        )
    assert not is_retryable(exc_info.value)


# ── Slack client ─────────────────────────────────────────────────────────

async def test_rate_limits_are_retryable():
    stub = SlackStub()
    stub.handlers["users.info"] = lambda params: httpx.Response(429, headers={"Retry-After": "30"})
    client = SlackClient("xoxb-1", transport=httpx.MockTransport(stub))

    with pytest.raises(RateLimitedError) as exc_info:
        await client.get_user_info("U1")
    assert exc_info.value.retry_after == 30.0
    assert is_retryable(exc_info.value)
    await client.aclose()


async def test_server_errors_are_transient():
    stub = SlackStub()
    stub.handlers["conversations.list"] = lambda params: httpx.Response(503)
    client = SlackClient("xoxb-1", transport=httpx.MockTransport(stub))

    with pytest.raises(TransientError):
        await client.list_channels()
    await client.aclose()


@pytest.mark.parametrize("response,error", [
    (httpx.Response(403, text="forbidden"), "http_403"),
    (httpx.Response(404, text="<html>not found</html>"), "http_404"),
    (httpx.Response(200, text="upstream proxy page"), "invalid_response"),
])
async def test_client_errors_are_not_retried(response, error):
    stub = SlackStub()
    stub.handlers["users.info"] = lambda params: response
    client = SlackClient("xoxb-1", transport=httpx.MockTransport(stub))

    with pytest.raises(ChatPlatformError) as exc_info:
        await client.get_user_info("U1")
    assert exc_info.value.error == error
    assert not is_retryable(exc_info.value)
    await client.aclose()


async def test_list_channels_follows_cursor():
    stub = SlackStub()
    stub.handlers["conversations.list"] = lambda params: (
        {"ok": True, "channels": [{"id": "C2", "name": "two"}]}
        if params.get("cursor") == "page2"
        else {"ok": True, "channels": [{"id": "C1", "name": "one"}],
              "response_metadata": {"next_cursor": "page2"}}
    )
    client = SlackClient("xoxb-1", transport=httpx.MockTransport(stub))

    channels = await client.list_channels()

    assert [c.id for c in channels] == ["C1", "C2"]
    await client.aclose()


def test_client_pool_reuses_clients_per_token():
    pool = SlackClientPool()
    assert pool.get("xoxb-1") is pool.get("xoxb-1")
    assert pool.get("xoxb-1") is not pool.get("xoxb-2")
