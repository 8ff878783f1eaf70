"""agentloop-core: provider-agnostic LLM tool-calling loop."""

__version__ = "0.1.0"
