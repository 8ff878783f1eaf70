"""Mock tools and tool services for testing."""

from __future__ import annotations

import asyncio

from agentloop.llm.types import ToolSpec
from agentloop.tools.base import Tool


class EchoTool(Tool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echoes the input message back."

    @property
    def parameters(self) -> dict:
        return {
            "type": "object",
            "properties": {
                "message": {"type": "string", "description": "Message to echo"},
            },
            "required": ["message"],
        }

    async def execute(self, **kwargs) -> str:
        return kwargs.get("message", "")


class FailingTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Always fails."

    @property
    def parameters(self) -> dict:
        return {}

    async def execute(self, **kwargs):
        raise RuntimeError("kaboom")


class FakeToolService:
    """
    In-memory external tool service.

    ``list_tools`` returns the current catalog and counts calls.  Tools in
    ``hidden`` are executable but only appear in the catalog after the
    first refresh, which mimics a server that gained tools since the
    last discovery.
    """

    def __init__(self, tools: dict | None = None, *, hidden: dict | None = None,
                 discovery_delay: float = 0.0):
        self.tools = dict(tools or {})
        self.hidden = dict(hidden or {})
        self.discovery_delay = discovery_delay
        self.list_calls = 0
        self.executed: list[tuple[str, dict]] = []

    async def list_tools(self) -> list[ToolSpec]:
        self.list_calls += 1
        if self.discovery_delay:
            await asyncio.sleep(self.discovery_delay)
        if self.list_calls > 1:
            self.tools.update(self.hidden)
            self.hidden = {}
        return [ToolSpec(name=name, description=f"remote {name}") for name in self.tools]

    async def execute(self, name: str, args: dict):
        if name not in self.tools:
            raise LookupError(f"Tool {name} not found")
        self.executed.append((name, args))
        return self.tools[name](**args)
