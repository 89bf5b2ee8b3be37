"""
Team Pulse Notification Dispatcher — burnout alerts and weekly digests as
Slack direct messages.

Recipients opt in per kind: alerts respect ``alerts_enabled`` and the
recipient's minimum severity, digests respect ``digest_enabled``. Delivery
failures propagate so the job pipeline can retry them.
"""
from __future__ import annotations

import logging
from typing import AbstractSet, Awaitable, Callable, List, Optional, Sequence

from pulse.models.models import SEVERITY_LEVELS, Severity
from pulse.schemas.schemas import BurnoutWarning, Recipient, TrendDirection, WeeklyReport
from pulse.services.slack.slack_client import SlackClientPool

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    Severity.LOW: "🟡",
    Severity.MEDIUM: "🟠",
    Severity.HIGH: "🔴",
}

TREND_EMOJI = {
    TrendDirection.IMPROVING: "📈",
    TrendDirection.DECLINING: "📉",
    TrendDirection.STABLE: "➡️",
}


def should_alert(recipient: Recipient, severity: Severity) -> bool:
    if not recipient.alerts_enabled:
        return False
    return SEVERITY_LEVELS[severity] >= SEVERITY_LEVELS[recipient.min_alert_severity]


def format_burnout_alert(warning: BurnoutWarning) -> str:
    channel = warning.channel_name or warning.slack_channel_id or str(warning.channel_id)
    lines = [
        f"{SEVERITY_EMOJI[warning.severity]} *Burnout warning: #{channel}*",
        f"Severity: *{warning.severity.value.upper()}*",
        f"Average sentiment: {warning.avg_sentiment:.2f} over {warning.message_count} messages",
        "",
        "*Indicators*",
    ]
    lines.extend(f"• {indicator}" for indicator in warning.indicators)
    lines.extend(["", f"*Recommendation:* {warning.recommendation}"])
    return "\n".join(lines)


def format_weekly_digest(report: WeeklyReport) -> str:
    data = report.channels_data
    lines = [
        f"📊 *Weekly Team Pulse* ({report.week_start:%b %d} – {report.week_end:%b %d})",
        f"Overall sentiment: {float(data.get('overall_sentiment', 0.0)):.2f} "
        f"across {data.get('analyzed_messages', 0)} analyzed messages",
    ]

    if report.channels:
        lines.extend(["", "*Channels*"])
        for channel in report.channels:
            lines.append(
                f"{TREND_EMOJI[channel.trend]} #{channel.channel_name}: "
                f"{channel.avg_sentiment:.2f} ({channel.message_count} messages)"
            )

    if report.burnout_warnings:
        lines.extend(["", "*Burnout warnings*"])
        for warning in report.burnout_warnings:
            lines.append(
                f"{SEVERITY_EMOJI[warning.severity]} #{warning.channel_name}: "
                f"{warning.severity.value}"
            )

    if report.insights:
        lines.extend(["", "*Insights*"])
        lines.extend(f"• {insight.title}" for insight in report.insights)

    lines.extend(["", "*Recommendations*"])
    lines.extend(f"• {rec.title}: {rec.description}" for rec in report.recommendations)
    return "\n".join(lines)


class NotificationDispatcher:
    def __init__(self, slack_pool: SlackClientPool):
        self._slack_pool = slack_pool

    async def send_burnout_alert(
        self,
        warning: BurnoutWarning,
        recipients: Sequence[Recipient],
        token: str,
        already_sent: AbstractSet[str] = frozenset(),
        on_delivered: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> int:
        """
        DM every recipient whose preferences admit this severity. Returns the count sent.

        Recipients in ``already_sent`` are skipped; ``on_delivered`` is awaited
        after each successful DM so a retried job does not notify them twice.
        """
        client = self._slack_pool.get(token)
        text = format_burnout_alert(warning)
        sent: List[str] = []
        for recipient in recipients:
            if recipient.slack_user_id in already_sent:
                continue
            if not should_alert(recipient, warning.severity):
                continue
            await client.post_direct_message(recipient.slack_user_id, text)
            sent.append(recipient.slack_user_id)
            if on_delivered is not None:
                await on_delivered(recipient.slack_user_id)

        logger.info(
            f"Burnout alert ({warning.severity.value}) for channel {warning.channel_id} "
            f"sent to {len(sent)}/{len(recipients)} recipients"
        )
        return len(sent)

    async def send_weekly_digest(
        self,
        report: WeeklyReport,
        recipient: Recipient,
        token: str,
    ) -> bool:
        if not recipient.digest_enabled:
            return False
        await self._slack_pool.get(token).post_direct_message(
            recipient.slack_user_id, format_weekly_digest(report),
        )
        logger.info(f"Weekly digest {report.id} sent to {recipient.slack_user_id}")
        return True
