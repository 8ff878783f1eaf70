"""
Per-provider stream decoders.

A decoder turns one parsed wire event (a dict) into updates on a
``StreamDecoderState`` and returns the text fragment the event carried,
if any.  Four event shapes are handled:

* delta-indexed (OpenAI ``chat.completion.chunk``): tool calls arrive as
  ``{index, id?, function: {name?, arguments?}}`` fragments;
* block-indexed (Anthropic ``content_block_*`` events): tool calls are
  content blocks whose JSON input streams as ``partial_json``;
* Gemini ``GenerateContentResponse`` chunks: each ``functionCall`` part
  is a whole call;
* Ollama NDJSON objects: ``message.tool_calls`` holds whole calls.

Decoders never reorder: fragments for an index are applied in the order
they are fed.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from agentloop.errors import (
    ContextWindowExceeded,
    ProviderError,
    TransientServerError,
    looks_like_context_overflow,
)
from agentloop.llm.tool_call_assembler import ToolCallAccumulator, materialize
from agentloop.llm.types import RawToolDelta, StreamDecoderState, ToolCall

logger = logging.getLogger(__name__)

OPENAI_TOOL_STOP_REASONS = frozenset({"tool_calls", "tool_call", "function_call"})
ANTHROPIC_TOOL_STOP_REASONS = frozenset({"tool_use", "tool_calls", "tool_call"})

_ANTHROPIC_TRANSIENT_ERRORS = frozenset({"overloaded_error", "api_error", "rate_limit_error"})


class StreamDecoder(ABC):
    """Normalizes one provider's stream events into ``StreamDecoderState``."""

    provider: str = ""

    def new_state(self) -> StreamDecoderState:
        return StreamDecoderState()

    @abstractmethod
    def feed(self, state: StreamDecoderState, event: Any) -> str:
        """Apply *event* to *state*; return the text it carried (or ``""``)."""

    def get_tool_calls(self, state: StreamDecoderState) -> list[ToolCall]:
        """Materialize the calls buffered in *state*.  Pure."""
        return materialize(state, self.provider)

    def finish(self, state: StreamDecoderState) -> None:
        """Hook run after the transport reports end of stream."""


# ---------------------------------------------------------------------------
# OpenAI
# ---------------------------------------------------------------------------


class OpenAIStreamDecoder(StreamDecoder):
    provider = "openai"

    def feed(self, state: StreamDecoderState, event: Any) -> str:
        if not isinstance(event, dict):
            return ""
        choices = event.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        choice = choices[0]
        if not isinstance(choice, dict):
            return ""

        text = ""
        delta = choice.get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                state.accumulated_text += content
                text = content

            raw_calls = delta.get("tool_calls")
            if isinstance(raw_calls, list):
                acc = ToolCallAccumulator(state, self.provider)
                for raw in raw_calls:
                    if not isinstance(raw, dict):
                        continue
                    index = raw.get("index")
                    if not isinstance(index, int):
                        index = 0
                    func = raw.get("function")
                    func = func if isinstance(func, dict) else {}
                    name = func.get("name")
                    args = func.get("arguments")
                    call_id = raw.get("id")
                    acc.feed(
                        RawToolDelta(
                            call_index=index,
                            id=call_id if isinstance(call_id, str) else None,
                            name=name if isinstance(name, str) else None,
                            args_delta=args if isinstance(args, str) else "",
                        )
                    )

        finish_reason = choice.get("finish_reason")
        if isinstance(finish_reason, str):
            state.finish_reason = finish_reason
            if finish_reason in OPENAI_TOOL_STOP_REASONS:
                state.is_complete = True

        return text


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class AnthropicStreamDecoder(StreamDecoder):
    provider = "anthropic"

    def feed(self, state: StreamDecoderState, event: Any) -> str:
        if not isinstance(event, dict):
            return ""
        event_type = event.get("type")
        index = event.get("index")
        if not isinstance(index, int):
            index = 0

        if event_type == "error":
            self._raise_stream_error(event.get("error"))

        if event_type == "content_block_start":
            block = event.get("content_block")
            if isinstance(block, dict) and block.get("type") == "tool_use":
                acc = ToolCallAccumulator(state, self.provider)
                block_id = block.get("id")
                block_name = block.get("name")
                acc.feed(
                    RawToolDelta(
                        call_index=index,
                        id=block_id if isinstance(block_id, str) else None,
                        name=block_name if isinstance(block_name, str) else None,
                    )
                )
                seed = _seed_arguments(block.get("input"))
                if seed:
                    acc.seed(index, seed)
            return ""

        if event_type == "content_block_delta":
            delta = event.get("delta")
            if not isinstance(delta, dict):
                return ""
            partial = delta.get("partial_json")
            if isinstance(partial, str):
                ToolCallAccumulator(state, self.provider).feed(
                    RawToolDelta(call_index=index, args_delta=partial)
                )
            text = delta.get("text")
            if isinstance(text, str) and text:
                state.accumulated_text += text
                return text
            return ""

        if event_type == "message_delta":
            delta = event.get("delta")
            if isinstance(delta, dict):
                self._apply_stop_reason(state, delta.get("stop_reason"))
            return ""

        if event_type == "message_stop":
            self._apply_stop_reason(state, event.get("stop_reason"))
            if not state.is_complete and state.tool_calls:
                state.is_complete = True
        return ""

    @staticmethod
    def _apply_stop_reason(state: StreamDecoderState, reason: Any) -> None:
        if not isinstance(reason, str):
            return
        state.finish_reason = reason
        if reason in ANTHROPIC_TOOL_STOP_REASONS:
            state.is_complete = True

    def _raise_stream_error(self, error: Any) -> None:
        error = error if isinstance(error, dict) else {}
        message = str(error.get("message") or "stream error")
        if looks_like_context_overflow(message):
            raise ContextWindowExceeded(message, provider=self.provider)
        if error.get("type") in _ANTHROPIC_TRANSIENT_ERRORS:
            raise TransientServerError(message, provider=self.provider)
        raise ProviderError(message, provider=self.provider)


def _seed_arguments(value: Any) -> str:
    """Serialize a block-start ``input`` for seeding; empty inputs seed nothing."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)) and value:
        return json.dumps(value, ensure_ascii=False)
    return ""


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiStreamDecoder(StreamDecoder):
    """
    Decodes ``GenerateContentResponse`` chunks from the SSE stream.

    REST payloads use camelCase keys; snake_case is accepted too.
    """

    provider = "gemini"

    def feed(self, state: StreamDecoderState, event: Any) -> str:
        if not isinstance(event, dict):
            return ""
        candidates = event.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            return ""
        candidate = candidates[0]
        if not isinstance(candidate, dict):
            return ""

        text_parts: list[str] = []
        content = candidate.get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if isinstance(parts, list):
            acc = ToolCallAccumulator(state, self.provider)
            for part in parts:
                if not isinstance(part, dict) or part.get("thought") is True:
                    continue
                text = part.get("text")
                if isinstance(text, str) and text:
                    text_parts.append(text)
                call = _pick(part, "functionCall", "function_call")
                if isinstance(call, dict):
                    name = call.get("name")
                    call_id = call.get("id")
                    args = call.get("args")
                    acc.feed(
                        RawToolDelta(
                            call_index=acc.next_index(),
                            id=call_id if isinstance(call_id, str) else None,
                            name=name if isinstance(name, str) else None,
                            args_delta=json.dumps(args if isinstance(args, dict) else {}),
                        )
                    )

        finish_reason = _pick(candidate, "finishReason", "finish_reason")
        if isinstance(finish_reason, str):
            state.finish_reason = finish_reason
            if state.tool_calls:
                state.is_complete = True

        fragment = "".join(text_parts)
        state.accumulated_text += fragment
        return fragment

    def finish(self, state: StreamDecoderState) -> None:
        # Function calls are delivered whole, so a finished stream with
        # calls is a finished tool turn even without a finish reason.
        if state.tool_calls:
            state.is_complete = True


def _pick(mapping: dict, *keys: str) -> Any:
    for key in keys:
        if key in mapping:
            return mapping[key]
    return None


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


class OllamaStreamDecoder(StreamDecoder):
    provider = "ollama"

    def feed(self, state: StreamDecoderState, event: Any) -> str:
        if not isinstance(event, dict):
            return ""

        if isinstance(event.get("error"), str):
            raise ProviderError(event["error"], provider=self.provider)

        text = ""
        message = event.get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str) and content:
                state.accumulated_text += content
                text = content

            raw_calls = message.get("tool_calls")
            if isinstance(raw_calls, list):
                acc = ToolCallAccumulator(state, self.provider)
                for raw in raw_calls:
                    func = raw.get("function") if isinstance(raw, dict) else None
                    if not isinstance(func, dict):
                        continue
                    args = func.get("arguments", {})
                    name = func.get("name")
                    acc.feed(
                        RawToolDelta(
                            call_index=acc.next_index(),
                            name=name if isinstance(name, str) else None,
                            args_delta=args if isinstance(args, str) else json.dumps(args),
                        )
                    )

        if event.get("done") is True:
            reason = event.get("done_reason")
            state.finish_reason = reason if isinstance(reason, str) else "stop"
            if state.tool_calls:
                state.is_complete = True

        return text


DECODERS: dict[str, type[StreamDecoder]] = {
    "openai": OpenAIStreamDecoder,
    "anthropic": AnthropicStreamDecoder,
    "gemini": GeminiStreamDecoder,
    "ollama": OllamaStreamDecoder,
}


def get_decoder(provider: str) -> StreamDecoder:
    """Return a fresh decoder for *provider*; unknown names get the OpenAI dialect."""
    cls = DECODERS.get(provider)
    if cls is None:
        logger.debug("No decoder for %r, using the OpenAI dialect", provider)
        cls = OpenAIStreamDecoder
    return cls()
