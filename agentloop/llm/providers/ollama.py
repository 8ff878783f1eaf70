"""
Ollama provider.

Streams responses from a local Ollama instance via its ``/api/chat`` endpoint.
Supports tool calling when the Ollama model advertises it.

Dependencies: ``httpx``.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from agentloop.llm.providers.base import Provider
from agentloop.llm.providers.streams import iter_ndjson
from agentloop.llm.types import ToolSpec
from agentloop.tools.base import to_openai_tool

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"


class OllamaProvider(Provider):
    """
    Provider for a local `Ollama <https://ollama.com>`_ instance.

    Ollama sends whole tool calls (arguments as an object, no ids) and
    expects them back the same way.
    """

    name = "ollama"

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
        wire = list(messages)
        if system:
            wire.insert(0, {"role": "system", "content": system})

        body: dict = {
            "model": self.config.model,
            "messages": wire,
            "stream": True,
            "options": {
                "temperature": self.config.temperature,
                "num_ctx": self.config.context_limits.model_context_limit,
            },
        }
        if tools:
            body["tools"] = [to_openai_tool(t) for t in tools]
        if json_mode:
            body["format"] = "json"
        self._log_request(wire, tools)
        return body

    async def _open_stream(self, request: dict) -> AsyncIterator[dict]:
        url = f"{self.base_url}/api/chat"
        headers = {"Content-Type": "application/json"}
        async for event in self._post_stream(url, request, headers, iter_ndjson):
            yield event
