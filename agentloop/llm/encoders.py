"""
Result encoders: tool outputs back into each provider's message shape.

Each encoder knows three things about its dialect:

* how a single tool result is wrapped (``encode_result``);
* how the results of one round are combined into next-turn messages
  (``result_messages``);
* how the assistant turn that requested the calls is replayed
  (``tool_invocation_message``).

Field names here are fixed by the vendors' public APIs.
"""

from __future__ import annotations

import json
import re
from typing import Any

from agentloop.llm.types import ToolCall

INTERNAL_TOOL_NAMES = frozenset(
    {
        "create_file",
        "update_file",
        "delete_file",
        "read_file",
        "search_files",
        "search_knowledge_base",
    }
)

TOOL_RESULT_MAX_CHARS = 8000
TRUNCATION_MARKER = "...(truncated)"
_OUTPUT_PREVIEW_CHARS = 500
_INLINE_JSON_CHARS = 300


def stringify(result: Any) -> str:
    """Strings pass through; everything else is JSON-encoded."""
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def ensure_json_arguments(raw_args: str | None, args: dict | None) -> str:
    """Prefer the model's raw argument text when it is valid JSON."""
    if raw_args and raw_args.strip():
        try:
            json.loads(raw_args)
        except (json.JSONDecodeError, ValueError):
            pass
        else:
            return raw_args
    return json.dumps(args or {}, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Compaction
# ---------------------------------------------------------------------------


def summarize_tool_result(tool_name: str, result: Any) -> str:
    """Render an external tool's result as a short human-readable summary."""
    record = result if isinstance(result, dict) else {}
    ok = record.get("success") is not False
    mark = "✅" if ok else "❌"

    if not ok:
        detail = record.get("output") or record.get("error") or record.get("message") or ""
        return f"{mark} **{tool_name}** failed\n> Error: {stringify(detail)}"

    if "snapshot" in tool_name:
        output = record.get("output", result)
        if isinstance(output, str) and "Page content" in output:
            lines = output.split("\n")
            head = "\n".join(lines[:10])
            return (
                f"{mark} **Page Snapshot** captured\n```\n{head}\n"
                f"...({len(lines)} total lines)\n```"
            )

    if tool_name in ("fill", "fill_form"):
        return f"{mark} **Form filled** successfully"
    if tool_name == "click":
        return f"{mark} **Clicked** element"
    if tool_name in ("navigate_page", "new_page"):
        output = record.get("output", "")
        if isinstance(output, str) and "Pages" in output:
            match = re.search(r"(\d+):.*\[selected\]", output)
            selected = f" (page {match.group(1)} selected)" if match else ""
            return f"{mark} **{tool_name}** completed{selected}"
        return f"{mark} **Navigated** to page"
    if tool_name == "take_screenshot":
        return f"{mark} **Screenshot** captured"
    if tool_name == "list_pages":
        pages = record.get("pages", result)
        if isinstance(pages, list):
            return f"{mark} **Found {len(pages)} pages**"

    output = record.get("output")
    if isinstance(output, str):
        if len(output) > _OUTPUT_PREVIEW_CHARS:
            output = output[:_OUTPUT_PREVIEW_CHARS] + "..."
        return f"{mark} **{tool_name}** completed\n```\n{output}\n```"

    if isinstance(result, str):
        if len(result) > _OUTPUT_PREVIEW_CHARS:
            result = result[:_OUTPUT_PREVIEW_CHARS] + "..."
        return f"{mark} **{tool_name}** completed\n```\n{result}\n```"

    if result is None:
        return f"{mark} **{tool_name}** completed"
    dumped = json.dumps(result, indent=2, ensure_ascii=False, default=str)
    if len(dumped) > _INLINE_JSON_CHARS:
        return f"{mark} **{tool_name}** completed (result truncated)"
    return f"{mark} **{tool_name}** completed\n```json\n{dumped}\n```"


def compact_tool_result(
    tool_name: str,
    result: Any,
    max_chars: int = TOOL_RESULT_MAX_CHARS,
) -> Any:
    """Bound an external tool's output; internal tools pass through."""
    if tool_name in INTERNAL_TOOL_NAMES:
        return result
    summary = summarize_tool_result(tool_name, result)
    if len(summary) > max_chars:
        return summary[:max_chars] + TRUNCATION_MARKER
    return summary


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------


class ResultEncoder:
    """OpenAI chat-completions dialect."""

    def encode_result(self, call: ToolCall, result: Any) -> dict:
        return {"role": "tool", "tool_call_id": call.id, "content": stringify(result)}

    def result_messages(self, encoded: list[dict]) -> list[dict]:
        return list(encoded)

    def tool_invocation_message(
        self,
        text: str,
        calls: list[ToolCall],
        *,
        null_content: bool = True,
    ) -> dict:
        if text.strip():
            content: str | None = text
        else:
            content = None if null_content else ""
        return {
            "role": "assistant",
            "content": content,
            "tool_calls": [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": ensure_json_arguments(call.raw_args, call.args),
                    },
                }
                for call in calls
            ],
        }


class AnthropicResultEncoder(ResultEncoder):
    def encode_result(self, call: ToolCall, result: Any) -> dict:
        return {
            "role": "user",
            "content": [
                {
                    "type": "tool_result",
                    "tool_use_id": call.id,
                    "content": stringify(result),
                }
            ],
        }

    def result_messages(self, encoded: list[dict]) -> list[dict]:
        # One user turn per round keeps the array alternating.
        blocks = [block for msg in encoded for block in msg["content"]]
        return [{"role": "user", "content": blocks}] if blocks else []

    def tool_invocation_message(self, text, calls, *, null_content=True) -> dict:
        blocks: list[dict] = []
        if text.strip():
            blocks.append({"type": "text", "text": text})
        for call in calls:
            blocks.append(
                {"type": "tool_use", "id": call.id, "name": call.name, "input": call.args}
            )
        return {"role": "assistant", "content": blocks}


class GeminiResultEncoder(ResultEncoder):
    def encode_result(self, call: ToolCall, result: Any) -> dict:
        # functionResponse.response must be an object.
        response = result if isinstance(result, dict) else {"result": result}
        return {
            "role": "user",
            "parts": [{"functionResponse": {"name": call.name, "response": response}}],
        }

    def result_messages(self, encoded: list[dict]) -> list[dict]:
        parts = [part for msg in encoded for part in msg["parts"]]
        return [{"role": "user", "parts": parts}] if parts else []

    def tool_invocation_message(self, text, calls, *, null_content=True) -> dict:
        parts: list[dict] = []
        if text.strip():
            parts.append({"text": text})
        for call in calls:
            parts.append({"functionCall": {"name": call.name, "args": call.args}})
        return {"role": "model", "parts": parts}


class OllamaResultEncoder(ResultEncoder):
    def encode_result(self, call: ToolCall, result: Any) -> dict:
        return {"role": "tool", "content": stringify(result)}

    def tool_invocation_message(self, text, calls, *, null_content=True) -> dict:
        return {
            "role": "assistant",
            "content": text,
            "tool_calls": [
                {"function": {"name": call.name, "arguments": call.args}}
                for call in calls
            ],
        }


ENCODERS: dict[str, type[ResultEncoder]] = {
    "openai": ResultEncoder,
    "anthropic": AnthropicResultEncoder,
    "gemini": GeminiResultEncoder,
    "ollama": OllamaResultEncoder,
}


def get_encoder(provider: str) -> ResultEncoder:
    return ENCODERS.get(provider, ResultEncoder)()
