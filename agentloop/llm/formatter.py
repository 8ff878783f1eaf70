"""
Conversation formatting and role-alternation repair.

Strict-alternation providers (Anthropic) reject a message array unless:

1. system text is passed out of band, not as a message;
2. roles strictly alternate user -> assistant -> user ...;
3. the first message is from the user;
4. only ``user`` and ``assistant`` roles appear.

:class:`ConversationFormatter` builds such an array from a truncated
window, validates it, and runs a greedy repair pass if validation fails.
For tolerant providers it only drops roles their wire format cannot carry
and otherwise leaves the window untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from agentloop.errors import ProtocolViolation
from agentloop.llm.types import Message

logger = logging.getLogger(__name__)

CONTINUE_PLACEHOLDER = "[Continuing previous conversation]"
START_PLACEHOLDER = "[Conversation start]"
TOOL_RESULT_MARKER = "[Tool Result]:"

_ALLOWED_ROLES = ("user", "assistant")


@dataclass
class FormattedConversation:
    """A provider-neutral role/content array plus the system side channel."""

    messages: list[dict] = field(default_factory=list)
    system: str | None = None
    repaired: bool = False

    def roles(self) -> list[str]:
        return [m["role"] for m in self.messages]


def validate_alternation(entries: list[dict]) -> str | None:
    """Return a description of the first alternation violation, or ``None``."""
    if not entries:
        return "message array is empty"
    if entries[0]["role"] != "user":
        return f"first message must be user, got {entries[0]['role']}"
    for i, entry in enumerate(entries):
        if entry["role"] not in _ALLOWED_ROLES:
            return f"message {i} has invalid role {entry['role']!r}"
        if i and entry["role"] == entries[i - 1]["role"]:
            return f"messages {i - 1} and {i} share role {entry['role']!r}"
    return None


def repair_alternation(entries: list[dict], pending_prompt: str) -> list[dict]:
    """
    Greedily rebuild *entries* into a valid strict-alternation array.

    Unknown roles are dropped, same-role neighbours are merged with a blank
    line, and a leading assistant turn gets a placeholder user turn in
    front of it.  An empty result falls back to the pending prompt alone.
    """
    fixed: list[dict] = []
    for entry in entries:
        role = entry["role"]
        if role not in _ALLOWED_ROLES:
            continue
        if not fixed:
            if role == "assistant":
                fixed.append({"role": "user", "content": START_PLACEHOLDER})
            fixed.append({"role": role, "content": entry["content"]})
        elif fixed[-1]["role"] == role:
            fixed[-1]["content"] += "\n\n" + entry["content"]
        else:
            fixed.append({"role": role, "content": entry["content"]})

    if not fixed:
        fixed.append({"role": "user", "content": pending_prompt})
    return fixed


class ConversationFormatter:
    """
    Render a truncated window into a generic ``{"role", "content"}`` array.

    Parameters
    ----------
    strict_alternation:
        Enforce the alternation rules above (merge, placeholder, validate,
        repair).
    system_in_messages:
        Put the system prompt at the head of the array instead of the
        side channel.
    """

    def __init__(
        self,
        *,
        strict_alternation: bool = False,
        system_in_messages: bool = True,
    ) -> None:
        self.strict_alternation = strict_alternation
        self.system_in_messages = system_in_messages

    def format(
        self,
        window: list[Message],
        system_prompt: str | None,
        pending_prompt: str,
    ) -> FormattedConversation:
        system_parts = [system_prompt] if system_prompt else []
        system_parts.extend(m.content for m in window if m.role == "system" and m.content)
        system = "\n\n".join(system_parts) or None

        if self.strict_alternation:
            entries, repaired = self._build_strict(window, pending_prompt)
        else:
            entries, repaired = self._build_tolerant(window), False

        if system and self.system_in_messages:
            entries.insert(0, {"role": "system", "content": system})
            system = None

        return FormattedConversation(messages=entries, system=system, repaired=repaired)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _build_tolerant(window: list[Message]) -> list[dict]:
        return [
            {"role": m.role, "content": m.content}
            for m in window
            if m.role in _ALLOWED_ROLES
        ]

    def _build_strict(
        self, window: list[Message], pending_prompt: str
    ) -> tuple[list[dict], bool]:
        entries: list[dict] = []
        for msg in window:
            if msg.role == "system":
                continue
            role, content = msg.role, msg.content

            if role == "tool":
                role = "user"
                if entries and entries[-1]["role"] == "user":
                    entries[-1]["content"] += f"\n\n{TOOL_RESULT_MARKER}\n{content}"
                    continue

            if entries and entries[-1]["role"] == role:
                entries[-1]["content"] += "\n\n" + content
                continue

            if not entries and role == "assistant":
                entries.append({"role": "user", "content": CONTINUE_PLACEHOLDER})

            entries.append({"role": role, "content": content})

        if not entries:
            logger.warning("Window held only system messages; sending a placeholder turn")
            return [{"role": "user", "content": START_PLACEHOLDER}], False

        problem = validate_alternation(entries)
        if problem is None:
            return entries, False

        logger.warning(
            "Message validation failed (%s); roles: %s",
            problem,
            " -> ".join(e["role"] for e in entries),
        )
        fixed = repair_alternation(entries, pending_prompt)
        problem = validate_alternation(fixed)
        if problem is not None:
            raise ProtocolViolation(f"alternation repair failed: {problem}")
        logger.info("Messages repaired: %s", " -> ".join(e["role"] for e in fixed))
        return fixed, True
