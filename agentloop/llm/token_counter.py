"""
Heuristic token estimation.

Every budget decision in the package goes through ``estimate_tokens``:
one token per three characters, rounded up.  This is an approximation,
not a tokenizer; it over-counts short English words and under-counts
CJK text.
"""

from __future__ import annotations

import json
import math
from typing import Any

CHARS_PER_TOKEN = 3


def estimate_tokens(text: str) -> int:
    """Return ``ceil(len(text) / 3)``."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class TokenCounter:
    """Estimate token counts for text, messages and wire payloads."""

    def count_text(self, text: str) -> int:
        """Return the estimated token count for a plain string."""
        return estimate_tokens(text)

    def count_content(self, content: Any) -> int:
        """Count a message body that may be a string or structured blocks."""
        if isinstance(content, str):
            return estimate_tokens(content)
        return estimate_tokens(json.dumps(content, ensure_ascii=False))

    def count_messages(self, messages: list) -> int:
        """
        Estimate the total for a list of ``Message`` objects or wire dicts.

        Unlike a real tokenizer there is no per-message overhead; only
        content is counted.
        """
        total = 0
        for msg in messages:
            if isinstance(msg, dict):
                content = msg.get("content", msg.get("parts", ""))
            else:
                content = getattr(msg, "content", "")
            total += self.count_content(content or "")
        return total
