"""
Provider factory.

Maps a ``ProviderConfig`` onto the adapter for its dialect.  The agent
loop is provider-agnostic; everything dialect-specific lives behind the
``Provider`` returned here.
"""

from __future__ import annotations

import logging

from agentloop.config import ProviderConfig
from agentloop.llm.providers.anthropic import AnthropicProvider
from agentloop.llm.providers.base import Provider
from agentloop.llm.providers.gemini import GeminiProvider
from agentloop.llm.providers.ollama import OllamaProvider
from agentloop.llm.providers.openai_compat import OpenAICompatProvider

logger = logging.getLogger(__name__)

_PROVIDERS: dict[str, type[Provider]] = {
    "openai": OpenAICompatProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
}


def create_provider(config: ProviderConfig, **kwargs) -> Provider:
    """
    Build the provider adapter for ``config.provider``.

    Extra keyword arguments (``client``, ``max_retries``, ``retry_delay``,
    ``timeout``) are passed through.

    Raises ``ValueError`` for an unknown provider name.
    """
    cls = _PROVIDERS.get(config.provider)
    if cls is None:
        raise ValueError(
            f"Unknown provider {config.provider!r}. Supported: {sorted(_PROVIDERS)}"
        )
    logger.debug("Creating %s provider for model %s", config.provider, config.model)
    return cls(config, **kwargs)
