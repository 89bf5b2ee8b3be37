"""
Team Pulse API — Slack Events API webhook.
"""
from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, Request

from pulse.api.deps import get_container
from pulse.core.container import Container
from pulse.services.pipeline.jobs import StoreMessageJob
from pulse.services.slack.events import parse_message_event, verify_signature

router = APIRouter(prefix="/slack", tags=["Slack"])


@router.post("/events")
async def slack_events(
    request: Request,
    container: Container = Depends(get_container),
):
    """Signed requests only. URL verification handshake, then message events become StoreMessage jobs."""
    settings = container.settings
    if not settings.slack_signing_secret:
        raise HTTPException(status_code=503, detail="Slack signing secret is not configured")

    body = await request.body()
    if not verify_signature(
        settings.slack_signing_secret,
        request.headers.get("X-Slack-Request-Timestamp"),
        body,
        request.headers.get("X-Slack-Signature"),
        tolerance=settings.slack_signature_tolerance_seconds,
    ):
        raise HTTPException(status_code=401, detail="Invalid Slack signature")

    try:
        payload = json.loads(body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Malformed JSON body")

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    message = parse_message_event(payload)
    if message is not None:
        await container.queue.enqueue(StoreMessageJob(message=message))
    return {"ok": True, "queued": message is not None}
