"""
Team Pulse error taxonomy.

``retryable`` tells the job pipeline whether another attempt can succeed.
Anything that is not a PulseError (database disconnects, timeouts raised by
drivers) is treated as transient.
"""
from __future__ import annotations

from typing import Optional


class PulseError(Exception):
    retryable = True


class TransientError(PulseError):
    """Network failure or timeout talking to an external service."""


class ConfigurationError(PulseError):
    retryable = False


class NotFoundError(PulseError):
    retryable = False


class ChannelNotFoundError(NotFoundError):
    pass


class ChannelAlreadyMonitoredError(PulseError):
    retryable = False


# Slack error codes worth another attempt
TRANSIENT_SLACK_ERRORS = {
    "ratelimited",
    "internal_error",
    "fatal_error",
    "service_unavailable",
    "request_timeout",
}


class ChatPlatformError(PulseError):
    """The chat platform rejected the call (``ok: false`` or an HTTP 4xx)."""

    def __init__(self, method: str, error: str):
        super().__init__(f"Slack {method} failed: {error}")
        self.method = method
        self.error = error
        self.retryable = error in TRANSIENT_SLACK_ERRORS


class RateLimitedError(ChatPlatformError):
    def __init__(self, method: str, retry_after: Optional[float] = None):
        super().__init__(method, "ratelimited")
        self.retry_after = retry_after


def is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", True))
