"""
Gemini provider.

Talks to the Generative Language REST API directly:
``POST {base_url}/v1beta/models/{model}:streamGenerateContent?alt=sse``.
Each SSE ``data`` line is one ``GenerateContentResponse`` chunk, which the
Gemini decoder turns into text and whole function calls.

Dependencies: ``httpx`` (async HTTP client).  No Google SDK needed.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from agentloop.llm.formatter import FormattedConversation
from agentloop.llm.providers.base import Provider
from agentloop.llm.providers.streams import iter_sse_events
from agentloop.llm.types import ToolSpec
from agentloop.tools.base import to_gemini_declaration

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
API_VERSION = "v1beta"


class GeminiProvider(Provider):
    """
    Gemini takes the system prompt as a ``systemInstruction`` side channel
    and names the assistant role ``model``.  Messages carry ``parts``
    instead of a ``content`` string.
    """

    name = "gemini"
    system_in_messages = False

    @property
    def base_url(self) -> str:
        return (self.config.base_url or DEFAULT_BASE_URL).rstrip("/")

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    def build_messages(self, conversation: FormattedConversation) -> list[dict]:
        return [
            {
                "role": "model" if m["role"] == "assistant" else "user",
                "parts": [{"text": m["content"]}],
            }
            for m in conversation.messages
            if m["role"] in ("user", "assistant")
        ]

    def build_request(
        self,
        messages: list[dict],
        system: str | None,
        tools: list[ToolSpec] | None,
        json_mode: bool = False,
    ) -> dict:
        generation_config: dict = {
            "temperature": self.config.temperature,
            "maxOutputTokens": self.config.context_limits.model_output_limit,
        }
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        body: dict = {
            "contents": list(messages),
            "generationConfig": generation_config,
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            body["tools"] = [
                {"functionDeclarations": [to_gemini_declaration(t) for t in tools]}
            ]
        self._log_request(messages, tools)
        return body

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self.config.api_key:
            headers["x-goog-api-key"] = self.config.api_key
        return headers

    async def _open_stream(self, request: dict) -> AsyncIterator[dict]:
        url = (
            f"{self.base_url}/{API_VERSION}/models/"
            f"{self.config.model}:streamGenerateContent?alt=sse"
        )
        async for event in self._post_stream(url, request, self._headers(), iter_sse_events):
            yield event
