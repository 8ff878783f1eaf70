"""Tests for the per-provider stream decoders."""

from __future__ import annotations

import pytest

from agentloop.errors import ContextWindowExceeded, ProviderError, TransientServerError
from agentloop.llm.decoders import (
    AnthropicStreamDecoder,
    GeminiStreamDecoder,
    OllamaStreamDecoder,
    OpenAIStreamDecoder,
    get_decoder,
)


def _feed_all(decoder, events):
    state = decoder.new_state()
    texts = [decoder.feed(state, e) for e in events]
    decoder.finish(state)
    return state, "".join(texts)


class TestOpenAIDecoder:
    def test_accumulates_call_across_fragments(self):
        events = [
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"name": "f"}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": '{"a":'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "1}"}}]}}]},
            {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
        ]
        decoder = OpenAIStreamDecoder()
        state, _ = _feed_all(decoder, events)

        calls = decoder.get_tool_calls(state)
        assert len(calls) == 1
        assert calls[0].name == "f"
        assert calls[0].args == {"a": 1}
        assert state.is_complete is True
        assert state.finish_reason == "tool_calls"

    def test_text_only(self):
        events = [
            {"choices": [{"delta": {"content": "Hello "}}]},
            {"choices": [{"delta": {"content": "world"}}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
        ]
        decoder = OpenAIStreamDecoder()
        state, text = _feed_all(decoder, events)
        assert text == "Hello world"
        assert state.accumulated_text == "Hello world"
        assert state.is_complete is False
        assert state.finish_reason == "stop"

    def test_get_tool_calls_is_idempotent(self):
        decoder = OpenAIStreamDecoder()
        state = decoder.new_state()
        decoder.feed(state, {"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "c1", "function": {"name": "f", "arguments": '{"x": 1'}}
        ]}}]})
        assert decoder.get_tool_calls(state) == decoder.get_tool_calls(state)

    def test_ignores_malformed_events(self):
        decoder = OpenAIStreamDecoder()
        state = decoder.new_state()
        for event in ("junk", {}, {"choices": []}, {"choices": ["x"]}, {"choices": [{"delta": "x"}]}):
            assert decoder.feed(state, event) == ""
        assert state.tool_calls == {}
        assert state.accumulated_text == ""

    def test_missing_index_defaults_to_zero(self):
        decoder = OpenAIStreamDecoder()
        state = decoder.new_state()
        decoder.feed(state, {"choices": [{"delta": {"tool_calls": [{"id": "c", "function": {"name": "f"}}]}}]})
        assert list(state.tool_calls) == [0]

    def test_null_fields_are_ignored(self):
        decoder = OpenAIStreamDecoder()
        state = decoder.new_state()
        decoder.feed(state, {"choices": [{"delta": {"content": None, "tool_calls": [
            {"index": 0, "id": "c1", "function": {"name": "f", "arguments": None}}
        ]}, "finish_reason": None}]})
        [call] = decoder.get_tool_calls(state)
        assert call.id == "c1"
        assert state.finish_reason is None


class TestAnthropicDecoder:
    def test_accumulates_tool_use_block(self):
        events = [
            {"type": "content_block_start", "index": 0,
             "content_block": {"type": "tool_use", "id": "x", "name": "g", "input": {}}},
            {"type": "content_block_delta", "index": 0,
             "delta": {"type": "input_json_delta", "partial_json": '{"b":2}'}},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
        ]
        decoder = AnthropicStreamDecoder()
        state, _ = _feed_all(decoder, events)

        [call] = decoder.get_tool_calls(state)
        assert call.id == "x"
        assert call.name == "g"
        assert call.args == {"b": 2}
        assert state.is_complete is True

    def test_text_and_tool_blocks(self):
        events = [
            {"type": "message_start", "message": {"id": "msg_1"}},
            {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
            {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Checking."}},
            {"type": "content_block_stop", "index": 0},
            {"type": "content_block_start", "index": 1,
             "content_block": {"type": "tool_use", "id": "t1", "name": "lookup"}},
            {"type": "content_block_delta", "index": 1,
             "delta": {"type": "input_json_delta", "partial_json": '{"q": '}},
            {"type": "content_block_delta", "index": 1,
             "delta": {"type": "input_json_delta", "partial_json": '"x"}'}},
            {"type": "content_block_stop", "index": 1},
            {"type": "message_delta", "delta": {"stop_reason": "tool_use"}},
            {"type": "message_stop"},
        ]
        decoder = AnthropicStreamDecoder()
        state, text = _feed_all(decoder, events)
        assert text == "Checking."
        [call] = decoder.get_tool_calls(state)
        assert call.args == {"q": "x"}

    def test_non_empty_block_input_seeds_arguments(self):
        decoder = AnthropicStreamDecoder()
        state = decoder.new_state()
        decoder.feed(state, {"type": "content_block_start", "index": 0,
                             "content_block": {"type": "tool_use", "id": "x", "name": "g",
                                               "input": {"b": 2}}})
        [call] = decoder.get_tool_calls(state)
        assert call.args == {"b": 2}

    def test_message_stop_with_partial_calls_completes(self):
        decoder = AnthropicStreamDecoder()
        state = decoder.new_state()
        decoder.feed(state, {"type": "content_block_start", "index": 0,
                             "content_block": {"type": "tool_use", "id": "x", "name": "g"}})
        decoder.feed(state, {"type": "message_stop"})
        assert state.is_complete is True

    def test_end_turn_is_not_complete(self):
        decoder = AnthropicStreamDecoder()
        state, _ = _feed_all(decoder, [
            {"type": "content_block_delta", "index": 0, "delta": {"text": "hi"}},
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"}},
            {"type": "message_stop"},
        ])
        assert state.is_complete is False
        assert state.finish_reason == "end_turn"

    def test_overloaded_error_is_transient(self):
        decoder = AnthropicStreamDecoder()
        with pytest.raises(TransientServerError):
            decoder.feed(decoder.new_state(), {
                "type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}
            })

    def test_invalid_request_error_is_provider_error(self):
        decoder = AnthropicStreamDecoder()
        with pytest.raises(ProviderError) as exc_info:
            decoder.feed(decoder.new_state(), {
                "type": "error", "error": {"type": "invalid_request_error", "message": "bad"}
            })
        assert not isinstance(exc_info.value, TransientServerError)

    @pytest.mark.parametrize("message", [
        "prompt is too long: 210000 tokens > 200000 maximum",
        "context window exceeds limit (2013)",
    ])
    def test_overflow_error_event_is_context_window_exceeded(self, message):
        decoder = AnthropicStreamDecoder()
        with pytest.raises(ContextWindowExceeded, match="too long|context window"):
            decoder.feed(decoder.new_state(), {
                "type": "error", "error": {"type": "invalid_request_error", "message": message}
            })


class TestGeminiDecoder:
    def test_function_call_parts(self):
        events = [
            {"candidates": [{"content": {"role": "model", "parts": [{"text": "Let me check. "}]}}]},
            {"candidates": [{"content": {"role": "model", "parts": [
                {"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}},
                {"functionCall": {"name": "get_time", "args": {"tz": "CET"}}},
            ]}, "finishReason": "STOP"}]},
        ]
        decoder = GeminiStreamDecoder()
        state, text = _feed_all(decoder, events)
        assert text == "Let me check. "
        calls = decoder.get_tool_calls(state)
        assert [c.name for c in calls] == ["get_weather", "get_time"]
        assert calls[0].args == {"city": "Paris"}
        assert calls[0].id == "gemini-call-0"
        assert state.is_complete is True

    def test_snake_case_keys(self):
        decoder = GeminiStreamDecoder()
        state, _ = _feed_all(decoder, [
            {"candidates": [{"content": {"parts": [
                {"function_call": {"name": "f", "args": {"a": 1}, "id": "fc-1"}}
            ]}, "finish_reason": "STOP"}]},
        ])
        [call] = decoder.get_tool_calls(state)
        assert call.id == "fc-1"
        assert call.args == {"a": 1}

    def test_thought_parts_are_skipped(self):
        decoder = GeminiStreamDecoder()
        state, text = _feed_all(decoder, [
            {"candidates": [{"content": {"parts": [
                {"text": "thinking...", "thought": True}, {"text": "Answer"}
            ]}}]},
        ])
        assert text == "Answer"

    def test_text_only_is_not_complete(self):
        decoder = GeminiStreamDecoder()
        state, _ = _feed_all(decoder, [
            {"candidates": [{"content": {"parts": [{"text": "hi"}]}, "finishReason": "STOP"}]},
        ])
        assert state.is_complete is False
        assert state.finish_reason == "STOP"

    def test_finish_completes_calls_without_finish_reason(self):
        decoder = GeminiStreamDecoder()
        state, _ = _feed_all(decoder, [
            {"candidates": [{"content": {"parts": [{"functionCall": {"name": "f", "args": {}}}]}}]},
        ])
        assert state.is_complete is True


class TestOllamaDecoder:
    def test_text_then_done(self):
        decoder = OllamaStreamDecoder()
        state, text = _feed_all(decoder, [
            {"message": {"role": "assistant", "content": "Hel"}, "done": False},
            {"message": {"role": "assistant", "content": "lo"}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True, "done_reason": "stop"},
        ])
        assert text == "Hello"
        assert state.finish_reason == "stop"
        assert state.is_complete is False

    def test_tool_calls(self):
        decoder = OllamaStreamDecoder()
        state, _ = _feed_all(decoder, [
            {"message": {"role": "assistant", "content": "", "tool_calls": [
                {"function": {"name": "get_weather", "arguments": {"city": "Paris"}}}
            ]}, "done": False},
            {"message": {"role": "assistant", "content": ""}, "done": True},
        ])
        [call] = decoder.get_tool_calls(state)
        assert call.name == "get_weather"
        assert call.args == {"city": "Paris"}
        assert call.id == "ollama-call-0"
        assert state.is_complete is True

    def test_error_object_raises(self):
        decoder = OllamaStreamDecoder()
        with pytest.raises(ProviderError, match="model not found"):
            decoder.feed(decoder.new_state(), {"error": "model not found"})


class TestGetDecoder:
    def test_known_providers(self):
        assert isinstance(get_decoder("anthropic"), AnthropicStreamDecoder)
        assert isinstance(get_decoder("gemini"), GeminiStreamDecoder)
        assert isinstance(get_decoder("ollama"), OllamaStreamDecoder)

    def test_unknown_falls_back_to_openai(self):
        assert isinstance(get_decoder("vllm"), OpenAIStreamDecoder)

    def test_fresh_instances(self):
        assert get_decoder("openai") is not get_decoder("openai")
