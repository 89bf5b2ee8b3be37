"""
Team Pulse Slack Client — Slack Web API over httpx.

Responsibilities:
  - List channels visible to the bot
  - Page through channel history (cursor + limit)
  - Look up user profiles
  - Send direct messages (conversations.open + chat.postMessage)

Rate limits (HTTP 429 or ``ratelimited``) surface as RateLimitedError so the
job pipeline can retry them. Clients are reused per bot token.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from pulse.core.errors import ChatPlatformError, RateLimitedError, TransientError
from pulse.core.metrics import SLACK_CALLS_TOTAL
from pulse.schemas.schemas import SlackChannelInfo, SlackUserInfo

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://slack.com/api/"


class SlackClient:
    """One bot token, one pooled HTTP client."""

    def __init__(
        self,
        token: str,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    # ── Transport ────────────────────────────────────────────────────────

    async def _call(self, method: str, **params: Any) -> Dict[str, Any]:
        data = {k: v for k, v in params.items() if v is not None}
        try:
            resp = await self._http.post(method, data=data)
        except httpx.HTTPError as e:
            SLACK_CALLS_TOTAL.labels(method=method, outcome="transport_error").inc()
            raise TransientError(f"Slack {method} request failed: {e}") from e

        if resp.status_code == 429:
            SLACK_CALLS_TOTAL.labels(method=method, outcome="rate_limited").inc()
            retry_after = resp.headers.get("Retry-After")
            raise RateLimitedError(method, float(retry_after) if retry_after else None)
        if resp.status_code >= 500:
            SLACK_CALLS_TOTAL.labels(method=method, outcome="server_error").inc()
            raise TransientError(f"Slack {method} returned HTTP {resp.status_code}")
        if resp.status_code >= 400:
            SLACK_CALLS_TOTAL.labels(method=method, outcome="client_error").inc()
            raise ChatPlatformError(method, f"http_{resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            SLACK_CALLS_TOTAL.labels(method=method, outcome="error").inc()
            raise ChatPlatformError(method, "invalid_response")
        if not body.get("ok"):
            error = body.get("error", "unknown_error")
            SLACK_CALLS_TOTAL.labels(method=method, outcome="error").inc()
            if error == "ratelimited":
                raise RateLimitedError(method)
            raise ChatPlatformError(method, error)

        SLACK_CALLS_TOTAL.labels(method=method, outcome="ok").inc()
        return body

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── Read API ─────────────────────────────────────────────────────────

    async def list_channels(self) -> List[SlackChannelInfo]:
        channels: List[SlackChannelInfo] = []
        cursor: Optional[str] = None
        while True:
            body = await self._call(
                "conversations.list",
                types="public_channel,private_channel",
                exclude_archived="true",
                limit=1000,
                cursor=cursor,
            )
            for ch in body.get("channels", []):
                channels.append(SlackChannelInfo(
                    id=ch["id"],
                    name=ch.get("name", ch["id"]),
                    is_member=ch.get("is_member", False),
                    is_private=ch.get("is_private", False),
                ))
            cursor = (body.get("response_metadata") or {}).get("next_cursor") or None
            if not cursor:
                return channels

    async def get_channel_history(
        self,
        channel_id: str,
        cursor: Optional[str] = None,
        limit: int = 100,
        oldest: Optional[float] = None,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """One page of history; returns (messages, next_cursor)."""
        body = await self._call(
            "conversations.history",
            channel=channel_id,
            cursor=cursor,
            limit=limit,
            oldest=f"{oldest:.6f}" if oldest is not None else None,
            include_all_metadata="true",
        )
        next_cursor = None
        if body.get("has_more"):
            next_cursor = (body.get("response_metadata") or {}).get("next_cursor") or None
        return body.get("messages", []), next_cursor

    async def get_user_info(self, user_id: str) -> SlackUserInfo:
        body = await self._call("users.info", user=user_id)
        user = body["user"]
        return SlackUserInfo(
            id=user["id"],
            name=user.get("name", user["id"]),
            real_name=user.get("real_name"),
            email=(user.get("profile") or {}).get("email"),
            is_admin=user.get("is_admin", False),
            is_owner=user.get("is_owner", False),
        )

    # ── Write API ────────────────────────────────────────────────────────

    async def post_direct_message(self, user_id: str, text: str) -> None:
        opened = await self._call("conversations.open", users=user_id)
        dm_channel = (opened.get("channel") or {}).get("id")
        if not dm_channel:
            raise ChatPlatformError("conversations.open", "no_channel_returned")
        await self._call("chat.postMessage", channel=dm_channel, text=text, mrkdwn="true")


class SlackClientPool:
    """Reuses one SlackClient per bot token."""

    def __init__(
        self,
        base_url: str = DEFAULT_API_URL,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport
        self._clients: Dict[str, SlackClient] = {}

    def get(self, token: str) -> SlackClient:
        if token not in self._clients:
            self._clients[token] = SlackClient(
                token, base_url=self._base_url, timeout=self._timeout, transport=self._transport,
            )
        return self._clients[token]

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
