"""
Error taxonomy for provider calls and the agent loop.

Timeouts are deliberately absent: the loop reports them as descriptive
text instead of raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from agentloop.llm.types import ToolCall


class AgentLoopError(Exception):
    """Base class for every error surfaced to callers of the agent loop."""

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code

    def __str__(self) -> str:
        prefix = f"[{self.provider}] " if self.provider else ""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{prefix}{self.message}{status}"


class ProviderError(AgentLoopError):
    """The provider rejected the request; not retried."""


class AuthError(ProviderError):
    """Bad or missing credentials."""


class TransientServerError(ProviderError):
    """5xx, rate limiting or a network failure; safe to retry."""


class ContextWindowExceeded(ProviderError):
    """The request did not fit the model's context window."""


class ProtocolViolation(AgentLoopError):
    """The message array breaks the provider's role-alternation rules."""


class ToolExecutionError(AgentLoopError):
    """A tool executor raised; the loop is aborted."""

    def __init__(self, tool_call: ToolCall, cause: BaseException) -> None:
        super().__init__(
            f"Tool {tool_call.name!r} failed: {cause}",
            provider=tool_call.provider,
        )
        self.tool_call = tool_call
        self.cause = cause


_CONTEXT_MARKERS = (
    "context window",
    "context_length_exceeded",
    "maximum context length",
    "prompt is too long",
    "too many tokens",
)


def looks_like_context_overflow(message: str) -> bool:
    """True if a provider error message reports a context-window overflow."""
    lowered = message.lower()
    return any(marker in lowered for marker in _CONTEXT_MARKERS)


def error_for_status(
    status_code: int,
    message: str,
    *,
    provider: str | None = None,
) -> ProviderError:
    """Map an HTTP status code and error text onto the taxonomy."""
    if status_code in (401, 403):
        return AuthError(message, provider=provider, status_code=status_code)
    if status_code == 429 or status_code >= 500:
        return TransientServerError(message, provider=provider, status_code=status_code)
    if status_code in (400, 413) and looks_like_context_overflow(message):
        return ContextWindowExceeded(message, provider=provider, status_code=status_code)
    return ProviderError(message, provider=provider, status_code=status_code)
