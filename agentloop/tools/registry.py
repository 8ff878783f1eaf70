from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Any

from agentloop.llm.types import ToolSpec
from agentloop.tools.base import FunctionTool, Tool
from agentloop.tools.catalog import ToolCatalogCache, ToolService

logger = logging.getLogger(__name__)


def _is_unknown_tool_error(exc: Exception) -> bool:
    return "not found" in str(exc).lower()


class ToolRegistry:
    """
    Local tools plus an optional external tool service.

    ``registry.execute`` has the tool-executor signature the agent loop
    expects, so a registry can be passed straight to it.  Local tools win
    on a name clash.
    """

    def __init__(
        self,
        service: ToolService | None = None,
        *,
        cache: ToolCatalogCache | None = None,
    ):
        self._tools: dict[str, Tool] = {}
        self._service = service
        self._cache = cache

    def register(self, tool: Tool, *, overwrite: bool = False) -> None:
        if tool.name in self._tools and not overwrite:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        t = self.get(name)
        if not t:
            raise KeyError(name)
        return t

    def list(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: t.name)

    def load_plugins(
        self,
        *,
        group: str = "agentloop.tools",
        allow_tools: set[str] | None = None,
    ) -> int:
        """Register tools advertised under the *group* entry point.

        An entry point may name a ``Tool`` subclass (constructed with no
        arguments), a ``Tool`` instance, or a plain callable, which is
        wrapped in a ``FunctionTool``.
        """
        loaded = 0
        for ep in entry_points(group=group):
            if allow_tools and ep.name not in allow_tools:
                continue
            target = ep.load()
            if isinstance(target, type) and issubclass(target, Tool):
                tool = target()
            elif isinstance(target, Tool):
                tool = target
            else:
                tool = FunctionTool(target, name=ep.name)
            self.register(tool)
            loaded += 1
        return loaded

    async def specs(self) -> list[ToolSpec]:
        """Declarations for every local and external tool, sorted by name."""
        specs = {t.name: t.spec() for t in self.list()}
        if self._service is not None:
            for spec in await self._external_tools():
                specs.setdefault(spec.name, spec)
        return [specs[name] for name in sorted(specs)]

    async def execute(self, name: str, args: dict) -> Any:
        tool = self.get(name)
        if tool is not None:
            return await tool.execute(**(args or {}))

        if self._service is None:
            raise KeyError(f"Unknown tool: {name}")

        try:
            result = await self._service.execute(name, args)
        except Exception as exc:
            if not _is_unknown_tool_error(exc):
                raise
            # The catalog may be stale; rediscover once and retry.
            logger.info("Tool %r not found; refreshing catalog and retrying", name)
            if self._cache is not None:
                self._cache.invalidate()
            await self._external_tools()
            result = await self._service.execute(name, args)
        return result

    async def _external_tools(self) -> list[ToolSpec]:
        if self._cache is not None:
            return await self._cache.get(self._service)
        return list(await self._service.list_tools())
