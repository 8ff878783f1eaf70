"""
Token-budgeted history truncation.

Given the chronological history, the system prompt, the pending user
prompt and a budget, :class:`HistoryTruncator` keeps the longest suffix of
history that fits.  The strategy is:

1.  Subtract the system prompt and pending prompt estimates from the
    budget.
2.  Walk backwards from the most recent message, charging each one
    against what is left.
3.  On the first message that does not fit, give up on incremental
    dropping: the whole window collapses into one placeholder user
    message that names how many messages were omitted and carries the
    pending prompt.

The collapse is all-or-nothing.  There is never a partially trimmed
window with a gap in it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from agentloop.llm.token_counter import TokenCounter
from agentloop.llm.types import Message

TRUNCATION_TEMPLATE = (
    "[context truncated — {omitted} earlier messages omitted]\n\n---\n\n{prompt}"
)


@dataclass
class TruncationResult:
    """Outcome of :meth:`HistoryTruncator.truncate`."""

    kept: list[Message]
    pending_prompt: str
    omitted: int = 0
    placeholder: Message | None = None
    remaining_tokens: int = 0
    notes: list[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.placeholder is not None

    @property
    def window(self) -> list[Message]:
        """
        Messages to render, oldest first.  Never empty.

        Without truncation this is the kept suffix followed by the pending
        prompt.  With truncation it is the single placeholder, which
        already embeds the pending prompt.
        """
        if self.placeholder is not None:
            return [self.placeholder]
        return [*self.kept, Message(role="user", content=self.pending_prompt)]


class HistoryTruncator:
    """
    Fit conversation history into a token budget.

    Parameters
    ----------
    token_counter:
        Anything exposing ``count_text(str) -> int``.  Defaults to the
        ``chars / 3`` heuristic.
    """

    def __init__(self, token_counter: TokenCounter | None = None) -> None:
        self.token_counter = token_counter or TokenCounter()

    def truncate(
        self,
        history: list[Message],
        system_prompt: str,
        pending_prompt: str,
        budget: int,
    ) -> TruncationResult:
        count = self.token_counter.count_text
        available = budget - count(system_prompt or "") - count(pending_prompt or "")

        kept: list[Message] = []
        for idx in range(len(history) - 1, -1, -1):
            msg = history[idx]
            cost = count(msg.content or "")
            if available - cost < 0:
                omitted = idx + 1
                placeholder = Message(
                    role="user",
                    content=TRUNCATION_TEMPLATE.format(
                        omitted=omitted, prompt=pending_prompt
                    ),
                )
                return TruncationResult(
                    kept=[],
                    pending_prompt=pending_prompt,
                    omitted=omitted,
                    placeholder=placeholder,
                    remaining_tokens=available,
                )
            available -= cost
            kept.append(msg)

        kept.reverse()
        return TruncationResult(
            kept=kept,
            pending_prompt=pending_prompt,
            remaining_tokens=available,
        )
