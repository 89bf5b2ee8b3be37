"""
Team Pulse API dependencies — container access and error translation.
"""
from __future__ import annotations

from fastapi import HTTPException, Request

from pulse.core.container import Container
from pulse.core.errors import (
    ChannelAlreadyMonitoredError,
    ChatPlatformError,
    ConfigurationError,
    NotFoundError,
    PulseError,
)


def get_container(request: Request) -> Container:
    return request.app.state.container


def http_error(exc: PulseError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ChannelAlreadyMonitoredError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, ChatPlatformError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
