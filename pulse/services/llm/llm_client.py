"""
Team Pulse LLM Client — thin wrapper over the OpenAI chat completions API.

The caller decides what to do with bad output; this layer only guarantees a
bounded call (client-level timeout) and raw JSON text back.
"""
from __future__ import annotations

import logging
from typing import Optional

from openai import AsyncOpenAI

from pulse.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class LLMClient:
    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.1,
        max_tokens: int = 300,
        timeout: float = 20.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        if not api_key and client is None:
            raise ConfigurationError("Missing required configuration: PULSE_OPENAI_API_KEY")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client or AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    async def complete_json(self, system_prompt: str, text: str) -> Optional[str]:
        """Run one chat completion and return the message content, if any."""
        resp = await self._client.chat.completions.create(
            model=self.model,
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
        )
        if not resp.choices:
            return None
        return resp.choices[0].message.content

    async def close(self) -> None:
        await self._client.close()
