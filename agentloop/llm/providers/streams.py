"""
Wire-level stream readers shared by the HTTP providers.

Both readers decode raw bytes from an ``httpx.Response`` incrementally and
split on newlines, so events and multi-byte characters that straddle chunk
boundaries are reassembled.
A line that does not parse as JSON is dropped and logged; the stream
carries on.
"""

from __future__ import annotations

import codecs
import json
import logging
import os
from typing import AsyncIterator

import httpx

logger = logging.getLogger(__name__)

STREAM_DEBUG_ENV = "AGENTLOOP_STREAM_DEBUG"


def stream_debug_enabled() -> bool:
    """Per-event stream logging is opt-in via ``AGENTLOOP_STREAM_DEBUG=1``."""
    return os.environ.get(STREAM_DEBUG_ENV, "").strip().lower() in ("1", "true", "yes", "on")


async def _iter_lines(response: httpx.Response) -> AsyncIterator[str]:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for raw_bytes in response.aiter_bytes():
        buffer += decoder.decode(raw_bytes)
        while "\n" in buffer:
            line, buffer = buffer.split("\n", 1)
            yield line.rstrip("\r")
    buffer += decoder.decode(b"", final=True)
    if buffer.strip():
        yield buffer.rstrip("\r")


async def iter_sse_events(response: httpx.Response) -> AsyncIterator[dict]:
    """
    Yield the JSON payload of every ``data:`` line of a Server-Sent Events
    stream.

    ``event:`` and comment lines are ignored; Anthropic repeats the event
    name inside the payload's ``type`` field.  ``data: [DONE]`` ends the
    stream.
    """
    debug = stream_debug_enabled()
    async for line in _iter_lines(response):
        if not line or not line.startswith("data:"):
            continue
        data_str = line[len("data:"):].strip()
        if data_str == "[DONE]":
            return
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            logger.debug("Dropping malformed SSE data: %s", data_str[:200])
            continue
        if debug:
            logger.debug("SSE event: %s", data_str[:500])
        if isinstance(data, dict):
            yield data


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[dict]:
    """Yield each object of a newline-delimited JSON stream (Ollama)."""
    debug = stream_debug_enabled()
    async for line in _iter_lines(response):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Dropping malformed NDJSON line: %s", line[:200])
            continue
        if debug:
            logger.debug("NDJSON event: %s", line[:500])
        if isinstance(data, dict):
            yield data


def error_message_from_body(body: bytes | str, status_code: int) -> str:
    """Best-effort extraction of a human-readable error from a response body."""
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return text.strip()[:500] or f"HTTP {status_code}"

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if data.get("message"):
            return str(data["message"])
    return text.strip()[:500]
