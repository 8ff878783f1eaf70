"""
Merges streaming tool-call fragments into ``ToolCall`` objects.

Design goals:
  - Accumulate ``RawToolDelta`` fragments keyed by ``call_index``, in
    arrival order.  Argument fragments are only ever appended.
  - ``id`` and ``name`` are sticky: a blank or absent value never clears
    what an earlier fragment set.
  - Materialization is pure.  ``tool_calls()`` may be polled at any point
    mid-stream (for progress display) and returns the same result until
    new fragments arrive.  Incomplete JSON yields ``args == {}`` while the
    raw buffer is kept, so a later poll can succeed.
"""

from __future__ import annotations

import json

from agentloop.llm.types import PartialCall, RawToolDelta, StreamDecoderState, ToolCall


def parse_arguments(raw: str) -> dict | None:
    """Parse a JSON argument buffer; ``None`` when it is not (yet) an object."""
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return None
    if isinstance(parsed, dict):
        return parsed
    return None


def fallback_call_id(provider: str, index: int) -> str:
    """Deterministic id for calls whose provider did not send one."""
    return f"{provider}-call-{index}"


class ToolCallAccumulator:
    """Buffers tool-call fragments for one round inside a ``StreamDecoderState``."""

    def __init__(self, state: StreamDecoderState, provider: str) -> None:
        self.state = state
        self.provider = provider

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def feed(self, delta: RawToolDelta) -> PartialCall:
        """Apply a single fragment and return the updated buffer."""
        buf = self.state.tool_calls.get(delta.call_index)
        if buf is None:
            buf = PartialCall()
            self.state.tool_calls[delta.call_index] = buf

        if delta.id:
            buf.id = delta.id
        if delta.name:
            buf.name = delta.name
        if delta.args_delta:
            buf.raw_arguments += delta.args_delta
        return buf

    def seed(self, call_index: int, raw_arguments: str) -> None:
        """Prime an empty argument buffer (block-start payloads)."""
        buf = self.state.tool_calls.setdefault(call_index, PartialCall())
        if not buf.raw_arguments:
            buf.raw_arguments = raw_arguments

    def next_index(self) -> int:
        """Smallest index above every buffered call."""
        if not self.state.tool_calls:
            return 0
        return max(self.state.tool_calls) + 1

    def tool_calls(self) -> list[ToolCall]:
        """Materialize every named call, ordered by index.  Side-effect free."""
        return materialize(self.state, self.provider)


def materialize(state: StreamDecoderState, provider: str) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for idx in sorted(state.tool_calls):
        buf = state.tool_calls[idx]
        name = buf.name.strip()
        if not name:
            continue

        parsed = parse_arguments(buf.raw_arguments)
        calls.append(
            ToolCall(
                id=buf.id or fallback_call_id(provider, idx),
                name=name,
                args=parsed if parsed is not None else {},
                provider=provider,
                raw_args=buf.raw_arguments if buf.raw_arguments.strip() else None,
            )
        )
    return calls
