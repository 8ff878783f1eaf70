"""
External tool service contract and its catalog cache.

Discovering an external service's tools is slow, so the list is cached
for a TTL.  The cache is an ordinary object handed to whoever needs it:
tests and independent sessions get their own instance, and dropping the
cache altogether changes only latency, never results.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Protocol, runtime_checkable

from agentloop.llm.types import ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_TTL = 300.0


@runtime_checkable
class ToolService(Protocol):
    """An out-of-process tool provider (e.g. an MCP bridge)."""

    async def list_tools(self) -> list[ToolSpec]: ...

    async def execute(self, name: str, args: dict) -> Any: ...


class ToolCatalogCache:
    """
    TTL-bounded, single-flight cache of ``ToolService.list_tools()``.

    Concurrent callers that find the cache stale share one discovery call:
    the first takes the lock and refreshes, the rest wait on the lock and
    then read the fresh entry.

    Parameters
    ----------
    ttl:
        Seconds a discovered catalog stays valid.
    clock:
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_CATALOG_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._tools: list[ToolSpec] | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()
        self.discoveries = 0

    @property
    def is_fresh(self) -> bool:
        return self._tools is not None and self._clock() - self._fetched_at < self.ttl

    async def get(self, service: ToolService) -> list[ToolSpec]:
        """Return the cached catalog, discovering it if missing or expired."""
        if self.is_fresh:
            return list(self._tools)

        async with self._lock:
            # Another caller may have refreshed while we waited.
            if self.is_fresh:
                return list(self._tools)
            tools = list(await service.list_tools())
            self._tools = tools
            self._fetched_at = self._clock()
            self.discoveries += 1
            logger.info("Discovered %d external tools", len(tools))
            return list(tools)

    def invalidate(self) -> None:
        self._tools = None
        self._fetched_at = 0.0
