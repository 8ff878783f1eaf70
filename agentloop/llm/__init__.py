"""LLM subsystem -- providers, stream decoding, formatting and result encoding."""

from agentloop.llm.types import (
    Message,
    RawToolDelta,
    StreamDecoderState,
    ToolCall,
    ToolCallStatus,
    ToolSpec,
)
from agentloop.llm.context import HistoryTruncator
from agentloop.llm.formatter import ConversationFormatter
from agentloop.llm.tool_call_assembler import ToolCallAccumulator
from agentloop.llm.token_counter import TokenCounter

__all__ = [
    "ConversationFormatter",
    "HistoryTruncator",
    "Message",
    "RawToolDelta",
    "StreamDecoderState",
    "TokenCounter",
    "ToolCall",
    "ToolCallAccumulator",
    "ToolCallStatus",
    "ToolSpec",
]
