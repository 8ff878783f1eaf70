from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable

from agentloop.llm.types import ToolSpec

# JSON-schema keys Gemini's function-declaration schema rejects.
_GEMINI_UNSUPPORTED_KEYS = frozenset({"additionalProperties", "$schema", "$id", "$ref", "default"})


def _is_async_callable(fn: Callable) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


async def run_callable(fn: Callable, *args, **kwargs) -> Any:
    """
    Await ``fn`` if it is a coroutine function, otherwise run it in a worker
    thread so a blocking call cannot stall the event loop (or the timeouts
    armed on it).  An awaitable returned by a sync callable is awaited too.
    """
    if _is_async_callable(fn):
        result = fn(*args, **kwargs)
    else:
        result = await asyncio.to_thread(fn, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def normalize_schema(schema: dict) -> dict:
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    return s


def _strip_for_gemini(schema: Any) -> Any:
    if isinstance(schema, dict):
        return {
            k: _strip_for_gemini(v)
            for k, v in schema.items()
            if k not in _GEMINI_UNSUPPORTED_KEYS
        }
    if isinstance(schema, list):
        return [_strip_for_gemini(v) for v in schema]
    return schema


# ---------------------------------------------------------------------------
# Per-dialect declarations
# ---------------------------------------------------------------------------


def to_openai_tool(spec: ToolSpec) -> dict:
    """OpenAI and Ollama share the ``{"type": "function", ...}`` shape."""
    return {
        "type": "function",
        "function": {
            "name": spec.name,
            "description": spec.description,
            "parameters": normalize_schema(spec.parameters),
        },
    }


def to_anthropic_tool(spec: ToolSpec) -> dict:
    return {
        "name": spec.name,
        "description": spec.description,
        "input_schema": normalize_schema(spec.parameters),
    }


def to_gemini_declaration(spec: ToolSpec) -> dict:
    return {
        "name": spec.name,
        "description": spec.description,
        "parameters": _strip_for_gemini(normalize_schema(spec.parameters)),
    }


# ---------------------------------------------------------------------------
# Local tools
# ---------------------------------------------------------------------------


class Tool(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @abstractmethod
    async def execute(self, **kwargs) -> Any: ...

    def spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            description=self.description,
            parameters=normalize_schema(self.parameters),
        )


class FunctionTool(Tool):
    """Wrap a plain sync or async callable as a ``Tool``."""

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        name: str | None = None,
        description: str | None = None,
        parameters: dict | None = None,
    ) -> None:
        self._fn = fn
        self._name = name or fn.__name__
        self._description = description if description is not None else (inspect.getdoc(fn) or "")
        self._parameters = parameters or {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict:
        return self._parameters

    async def execute(self, **kwargs) -> Any:
        return await run_callable(self._fn, **kwargs)
