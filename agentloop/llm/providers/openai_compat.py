"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol -- OpenAI itself, Azure OpenAI, vLLM, LM Studio, OpenRouter, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator
from urllib.parse import urlparse

from agentloop.llm.providers.base import Provider
from agentloop.llm.providers.streams import iter_sse_events
from agentloop.llm.types import ToolCall, ToolSpec
from agentloop.tools.base import to_openai_tool

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
CONTINUATION_PROMPT = "Continue with the next step or provide your final answer."


def is_official_openai(base_url: str) -> bool:
    return urlparse(base_url or DEFAULT_BASE_URL).hostname == "api.openai.com"


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Third-party endpoints differ from OpenAI in two ways that matter here:
    they reject ``content: null`` on assistant tool-call turns, and some
    stall after tool results unless nudged with a user turn.  Both are
    handled when the base URL is not ``api.openai.com``.
    """

    name = "openai"

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    @property
    def official(self) -> bool:
        return is_official_openai(self.base_url)

    def build_request(
        self,
        messages: list[dict],
        system: str | None,
        tools: list[ToolSpec] | None,
        json_mode: bool = False,
    ) -> dict:
        wire = list(messages)
        if system:
            wire.insert(0, {"role": "system", "content": system})

        body: dict = {
            "model": self.config.model,
            "messages": wire,
            "stream": True,
            "temperature": self.config.temperature,
        }
        if tools:
            body["tools"] = [to_openai_tool(t) for t in tools]
            body["tool_choice"] = "auto"
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        self._log_request(wire, tools)
        return body

    def assistant_message(self, text: str, calls: list[ToolCall]) -> dict:
        return self.encoder.tool_invocation_message(
            text, calls, null_content=self.official
        )

    def result_messages(self, calls: list[ToolCall], results: list[Any]) -> list[dict]:
        messages = super().result_messages(calls, results)
        if not self.official:
            messages.append({"role": "user", "content": CONTINUATION_PROMPT})
        return messages

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _open_stream(self, request: dict) -> AsyncIterator[dict]:
        url = f"{self.base_url}/chat/completions"
        async for event in self._post_stream(url, request, self._headers(), iter_sse_events):
            yield event
