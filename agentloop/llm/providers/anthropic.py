"""
Anthropic Messages API provider.

Streams ``POST {base_url}/v1/messages`` over SSE.  The Messages API is the
strict one: system text travels in the top-level ``system`` field and the
message array must alternate user/assistant starting with user, so this
provider runs the formatter in strict mode.

MiniMax serves an Anthropic-compatible endpoint that ignores the
top-level ``system`` field; for it the system prompt is sent as a leading
``system`` message instead.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from agentloop.config import ProviderConfig
from agentloop.llm.formatter import ConversationFormatter
from agentloop.llm.providers.base import Provider
from agentloop.llm.providers.streams import iter_sse_events
from agentloop.llm.types import ToolSpec
from agentloop.tools.base import to_anthropic_tool

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"
JSON_MODE_INSTRUCTION = "Respond with a single valid JSON object and nothing else."


def is_minimax(config: ProviderConfig) -> bool:
    return "minimax" in config.model.lower() or "minimax" in (config.base_url or "").lower()


class AnthropicProvider(Provider):
    name = "anthropic"
    strict_alternation = True
    system_in_messages = False
    reserved_buffer = 1000

    def __init__(self, config: ProviderConfig, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.minimax = is_minimax(config)
        if self.minimax:
            self.formatter = ConversationFormatter(
                strict_alternation=True, system_in_messages=True
            )

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    def build_request(
        self,
        messages: list[dict],
        system: str | None,
        tools: list[ToolSpec] | None,
        json_mode: bool = False,
    ) -> dict:
        if json_mode:
            system = f"{system}\n\n{JSON_MODE_INSTRUCTION}" if system else JSON_MODE_INSTRUCTION

        wire = list(messages)
        body: dict = {
            "model": self.config.model,
            "max_tokens": self.config.context_limits.model_output_limit,
            "stream": True,
            "temperature": self.config.temperature,
        }
        if system:
            if self.minimax:
                if wire and wire[0].get("role") == "system":
                    wire[0] = {"role": "system", "content": f"{wire[0]['content']}\n\n{system}"}
                else:
                    wire.insert(0, {"role": "system", "content": system})
            else:
                body["system"] = system
        body["messages"] = wire
        if tools:
            body["tools"] = [to_anthropic_tool(t) for t in tools]
        self._log_request(wire, tools)
        return body

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    async def _open_stream(self, request: dict) -> AsyncIterator[dict]:
        url = f"{self.base_url}/v1/messages"
        async for event in self._post_stream(url, request, self._headers(), iter_sse_events):
            yield event
