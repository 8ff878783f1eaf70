"""Abstract base class for LLM providers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx

from agentloop.config import ProviderConfig
from agentloop.errors import (
    AgentLoopError,
    TransientServerError,
    error_for_status,
)
from agentloop.llm.decoders import StreamDecoder, get_decoder
from agentloop.llm.encoders import ResultEncoder, get_encoder
from agentloop.llm.formatter import ConversationFormatter, FormattedConversation
from agentloop.llm.providers.streams import error_message_from_body
from agentloop.llm.types import ToolCall, ToolSpec

logger = logging.getLogger(__name__)


class Provider(ABC):
    """
    A provider encapsulates one LLM dialect: how a conversation is laid out
    on the wire, how its stream is decoded, and how tool results go back.

    The agent loop is shared; a provider only supplies the pieces below.

    Parameters
    ----------
    config:
        Resolved, immutable connection settings.
    client:
        Optional ``httpx.AsyncClient`` to reuse.  When omitted a client is
        opened per request.
    max_retries:
        Extra attempts for transient failures that happen before the
        first stream event.
    retry_delay:
        Fixed delay in seconds between those attempts.
    timeout:
        HTTP timeout in seconds for requests on a per-request client.
    """

    name: str = ""
    strict_alternation: bool = False
    system_in_messages: bool = True
    reserved_buffer: int = 500

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 120.0,
    ) -> None:
        self.config = config
        self._client = client
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.decoder: StreamDecoder = get_decoder(self.name)
        self.encoder: ResultEncoder = get_encoder(self.name)
        self.formatter = ConversationFormatter(
            strict_alternation=self.strict_alternation,
            system_in_messages=self.system_in_messages,
        )

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def budget(self) -> int:
        """Token budget for system prompt, history and pending prompt."""
        return self.config.context_limits.budget(self.reserved_buffer)

    def build_messages(self, conversation: FormattedConversation) -> list[dict]:
        """Turn the formatter's generic array into wire messages."""
        return [dict(m) for m in conversation.messages]

    @abstractmethod
    def build_request(
        self,
        messages: list[dict],
        system: str | None,
        tools: list[ToolSpec] | None,
        json_mode: bool = False,
    ) -> dict:
        """Build the request payload for one round."""

    def assistant_message(self, text: str, calls: list[ToolCall]) -> dict:
        """The assistant turn that requested *calls*, in wire shape."""
        return self.encoder.tool_invocation_message(text, calls)

    def result_messages(self, calls: list[ToolCall], results: list[Any]) -> list[dict]:
        """Encode one round of tool results into next-turn messages."""
        encoded = [self.encoder.encode_result(c, r) for c, r in zip(calls, results)]
        return self.encoder.result_messages(encoded)

    async def stream(self, request: dict) -> AsyncIterator[dict]:
        """
        Yield decoded wire events for *request*.

        Transient failures raised before the first event are retried with a
        fixed delay.  Once an event has been yielded, errors propagate:
        the caller has already consumed part of the answer.
        """
        attempt = 0
        while True:
            started = False
            try:
                async for event in self._open_stream(request):
                    started = True
                    yield event
                return
            except Exception as exc:
                error = self.classify_error(exc)
                if error is None:
                    raise
                retryable = isinstance(error, TransientServerError) and not started
                if not retryable or attempt >= self.max_retries:
                    if error is exc:
                        raise
                    raise error from exc
                attempt += 1
                logger.warning(
                    "%s: transient failure (%s), retry %d/%d in %.1fs",
                    self.name,
                    error,
                    attempt,
                    self.max_retries,
                    self.retry_delay,
                )
                await asyncio.sleep(self.retry_delay)

    def classify_error(self, exc: BaseException) -> AgentLoopError | None:
        """Map a transport exception onto the error taxonomy; ``None`` if unknown."""
        if isinstance(exc, AgentLoopError):
            return exc
        if isinstance(exc, httpx.HTTPStatusError):
            return error_for_status(
                exc.response.status_code, str(exc), provider=self.name
            )
        if isinstance(exc, httpx.TransportError):
            return TransientServerError(
                f"{type(exc).__name__}: {exc}", provider=self.name
            )
        return None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @abstractmethod
    def _open_stream(self, request: dict) -> AsyncIterator[dict]:
        """Open the transport and yield raw wire events as dicts."""

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def _post_stream(
        self,
        url: str,
        body: dict,
        headers: dict[str, str],
        reader,
    ) -> AsyncIterator[dict]:
        """POST *body* and yield the events *reader* parses from the response."""
        async with self._http() as client:
            async with client.stream("POST", url, json=body, headers=headers) as response:
                if response.status_code >= 400:
                    raw = await response.aread()
                    raise error_for_status(
                        response.status_code,
                        error_message_from_body(raw, response.status_code),
                        provider=self.name,
                    )
                async for event in reader(response):
                    yield event

    def _log_request(self, messages: list, tools: list | None) -> None:
        logger.info(
            "REQUEST: provider=%s model=%s tools=%d messages=%d",
            self.name,
            self.config.model,
            len(tools) if tools else 0,
            len(messages),
        )
