"""Core types for the LLM subsystem."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Message:
    """A single message in a conversation."""

    role: str  # "user", "assistant", "system", "tool"
    content: str
    id: str = field(default_factory=_new_id)
    timestamp: float = field(default_factory=time.time)
    tool_call_id: str | None = None


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


# Allowed forward moves; terminal states have no successors.
_TRANSITIONS: dict[ToolCallStatus, frozenset[ToolCallStatus]] = {
    ToolCallStatus.PENDING: frozenset({ToolCallStatus.RUNNING}),
    ToolCallStatus.RUNNING: frozenset({ToolCallStatus.SUCCESS, ToolCallStatus.ERROR}),
    ToolCallStatus.SUCCESS: frozenset(),
    ToolCallStatus.ERROR: frozenset(),
}


@dataclass(frozen=True)
class ToolCall:
    """
    A tool invocation requested by the model.

    Instances are immutable.  Lifecycle changes go through
    :meth:`transition`, which only allows forward moves
    (pending -> running -> success | error) and keeps timestamps
    non-decreasing.
    """

    id: str
    name: str
    args: dict
    provider: str
    status: ToolCallStatus = ToolCallStatus.PENDING
    partial_args: dict | None = None
    raw_args: str | None = None
    result: Any = None
    error: str | None = None
    start_time: float | None = None
    end_time: float | None = None

    def transition(self, status: ToolCallStatus, **changes: Any) -> ToolCall:
        """Return a copy moved to *status*; raise ``ValueError`` on a backward move."""
        status = ToolCallStatus(status)
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"illegal tool call transition {self.status.value} -> {status.value}"
            )

        now = time.time()
        if status is ToolCallStatus.RUNNING:
            changes.setdefault("start_time", now)
        else:
            floor = self.start_time or now
            changes.setdefault("end_time", max(now, floor))
        return replace(self, status=status, **changes)


@dataclass
class PartialCall:
    """Per-index buffer for a tool call that is still streaming."""

    id: str = ""
    name: str = ""
    raw_arguments: str = ""


@dataclass
class StreamDecoderState:
    """
    Decoder state for one in-flight model round.

    Created at the start of a round and thrown away at its end.  Nothing
    from an aborted round may leak into the next one, so the agent loop
    always builds a fresh instance per round.
    """

    tool_calls: dict[int, PartialCall] = field(default_factory=dict)
    accumulated_text: str = ""
    finish_reason: str | None = None
    is_complete: bool = False


@dataclass
class RawToolDelta:
    """
    An incremental fragment for a streaming tool call.

    Decoders translate provider events into these and feed them to the
    ``ToolCallAccumulator``.  ``args_delta`` is always appended; ``id`` and
    ``name`` replace the buffered value only when non-empty.
    """

    call_index: int
    id: str | None = None
    name: str | None = None
    args_delta: str = ""


@dataclass
class ToolSpec:
    """Provider-neutral tool declaration (name, description, JSON schema)."""

    name: str
    description: str = ""
    parameters: dict = field(default_factory=dict)
