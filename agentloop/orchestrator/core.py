"""
Orchestrator core -- the agent loop that ties everything together.

The loop:
1. Truncates history to the provider's token budget
2. Formats the window once into the provider's message array
3. Streams a model round and decodes it into text and tool calls
4. Executes requested tool calls in order, reporting each transition
5. Appends the invocation and encoded results, then loops
6. Stops on a final answer, the completion marker, the iteration cap or
   a timeout

Timeouts and the iteration cap are soft failures: the loop returns the
best text it has plus a notice.  Provider and tool failures raise.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from agentloop.config import AgentLoopConfig, LoopSettings
from agentloop.errors import ContextWindowExceeded, ToolExecutionError
from agentloop.llm.context import HistoryTruncator
from agentloop.llm.encoders import compact_tool_result
from agentloop.llm.providers.base import Provider
from agentloop.llm.router import create_provider
from agentloop.llm.tool_call_assembler import fallback_call_id
from agentloop.llm.types import (
    Message,
    StreamDecoderState,
    ToolCall,
    ToolCallStatus,
    ToolSpec,
)
from agentloop.tools.base import run_callable

logger = logging.getLogger(__name__)

MAX_ITERATIONS_NOTICE = "Maximum tool iterations reached. Task may be incomplete."
EMERGENCY_PLACEHOLDER = "[Conversation continues]"

ToolExecutor = Callable[[str, dict], Union[Any, Awaitable[Any]]]
ToolEventCallback = Callable[[ToolCall], Union[None, Awaitable[None]]]
TextCallback = Callable[[str], None]


class LoopOutcome(str, Enum):
    COMPLETED = "completed"
    MARKER = "marker"
    MAX_ITERATIONS = "max_iterations"
    ROUND_TIMEOUT = "round_timeout"
    TOTAL_TIMEOUT = "total_timeout"


@dataclass
class LoopResult:
    """What a run produced: the text, how many tool rounds it took, and why it stopped."""

    text: str
    iterations: int
    outcome: LoopOutcome
    messages: list[dict] = field(default_factory=list)


def _describe_seconds(seconds: float) -> str:
    if seconds >= 120 and seconds % 60 == 0:
        return f"{int(seconds // 60)} minutes"
    return f"{seconds:g} seconds"


def total_timeout_notice(seconds: float) -> str:
    return f"Total timeout reached ({_describe_seconds(seconds)})."


def round_timeout_notice(seconds: float) -> str:
    return f"Single round timeout ({seconds:g} seconds)."


def _with_notice(text: str, notice: str) -> str:
    text = text.strip()
    return f"{text}\n\n{notice}" if text else notice


@dataclass
class _RunState:
    """Mutable bookkeeping for one ``AgentLoop.run`` call."""

    prompt: str
    history: list[Message]
    system_prompt: str | None
    messages: list[dict]
    system: str | None
    tools: list[ToolSpec] | None
    tool_executor: ToolExecutor | None
    tool_event_callback: ToolEventCallback | None
    on_text: TextCallback | None
    json_mode: bool
    iterations: int = 0
    decoder_state: StreamDecoderState | None = None
    last_text: str = ""
    emergency_used: bool = False
    emergency_error: ContextWindowExceeded | None = None

    def partial_text(self) -> str:
        if self.decoder_state is not None and self.decoder_state.accumulated_text.strip():
            return self.decoder_state.accumulated_text
        return self.last_text


class AgentLoop:
    """
    Drives one conversational turn-cycle against a single provider.

    Parameters
    ----------
    provider : Provider
        Dialect adapter (formatter, transport, decoder, encoder).
    settings : LoopSettings
        Limits, timeouts and the completion marker.
    truncator : HistoryTruncator
        Budget truncation strategy; defaults to the ``chars / 3`` one.
    """

    def __init__(
        self,
        provider: Provider,
        settings: LoopSettings | None = None,
        truncator: HistoryTruncator | None = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or LoopSettings()
        self.truncator = truncator or HistoryTruncator()
        self._observer_tasks: set[asyncio.Task] = set()

    async def run(
        self,
        prompt: str,
        *,
        system_instruction: str | None = None,
        history: list[Message] | None = None,
        tools: list[ToolSpec] | None = None,
        tool_executor: ToolExecutor | None = None,
        tool_event_callback: ToolEventCallback | None = None,
        on_text: TextCallback | None = None,
        json_mode: bool = False,
    ) -> LoopResult:
        """
        Run the loop for *prompt* and return the final text.

        Tool declarations are sent only when a *tool_executor* is given and
        *json_mode* is off.
        """
        history = list(history or [])
        messages, system = self._initial_messages(history, system_instruction, prompt)
        run = _RunState(
            prompt=prompt,
            history=history,
            system_prompt=system_instruction,
            messages=messages,
            system=system,
            tools=tools if tools and tool_executor is not None and not json_mode else None,
            tool_executor=tool_executor,
            tool_event_callback=tool_event_callback,
            on_text=on_text,
            json_mode=json_mode,
        )

        settings = self.settings
        deadline = time.monotonic() + settings.total_timeout_seconds

        while run.iterations < settings.max_iterations:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return self._timed_out(run, LoopOutcome.TOTAL_TIMEOUT)

            round_budget = min(settings.round_timeout_seconds, remaining)
            try:
                final = await asyncio.wait_for(self._round(run), timeout=round_budget)
            except asyncio.TimeoutError:
                if round_budget < settings.round_timeout_seconds:
                    return self._timed_out(run, LoopOutcome.TOTAL_TIMEOUT)
                return self._timed_out(run, LoopOutcome.ROUND_TIMEOUT)
            except ContextWindowExceeded as exc:
                self._enter_emergency_mode(run, exc)
                continue

            if final is not None:
                return final

        logger.warning("Stopped after %d tool iterations", run.iterations)
        return LoopResult(
            text=_with_notice(run.last_text, MAX_ITERATIONS_NOTICE),
            iterations=run.iterations,
            outcome=LoopOutcome.MAX_ITERATIONS,
            messages=run.messages,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _initial_messages(
        self,
        history: list[Message],
        system_instruction: str | None,
        prompt: str,
    ) -> tuple[list[dict], str | None]:
        truncation = self.truncator.truncate(
            history, system_instruction or "", prompt, self.provider.budget
        )
        if truncation.truncated:
            logger.info(
                "History truncated: %d messages omitted (budget %d tokens)",
                truncation.omitted,
                self.provider.budget,
            )
        conversation = self.provider.formatter.format(
            truncation.window, system_instruction, prompt
        )
        return self.provider.build_messages(conversation), conversation.system

    def _enter_emergency_mode(self, run: _RunState, exc: ContextWindowExceeded) -> None:
        """Retry once with only the tail of history and no tools."""
        if run.emergency_used:
            first = run.emergency_error
            raise ContextWindowExceeded(
                f"Context window exceeded: {first.message}; "
                f"emergency retry also failed: {exc.message}",
                provider=exc.provider,
                status_code=exc.status_code,
            ) from exc

        logger.warning("Context window exceeded (%s); retrying with minimal context", exc)
        tail = run.history[-2:] or [Message(role="user", content=EMERGENCY_PLACEHOLDER)]
        conversation = self.provider.formatter.format(
            [*tail, Message(role="user", content=run.prompt)],
            run.system_prompt,
            run.prompt,
        )
        run.messages = self.provider.build_messages(conversation)
        run.system = conversation.system
        run.tools = None
        run.emergency_used = True
        run.emergency_error = exc

    def _timed_out(self, run: _RunState, outcome: LoopOutcome) -> LoopResult:
        if outcome is LoopOutcome.TOTAL_TIMEOUT:
            notice = total_timeout_notice(self.settings.total_timeout_seconds)
        else:
            notice = round_timeout_notice(self.settings.round_timeout_seconds)
        logger.warning("%s after %d iterations", notice, run.iterations)
        return LoopResult(
            text=_with_notice(run.partial_text(), notice),
            iterations=run.iterations,
            outcome=outcome,
            messages=run.messages,
        )

    async def _round(self, run: _RunState) -> LoopResult | None:
        """
        One model round, plus tool execution if the model asked for it.

        Returns the final result, or ``None`` when another round is needed.
        """
        provider = self.provider
        decoder = provider.decoder
        state = decoder.new_state()
        run.decoder_state = state
        announced: set[int] = set()

        request = provider.build_request(run.messages, run.system, run.tools, run.json_mode)
        async for event in provider.stream(request):
            fragment = decoder.feed(state, event)
            if fragment and run.on_text is not None:
                run.on_text(fragment)
            self._announce_pending(run, state, announced)
        decoder.finish(state)
        self._announce_pending(run, state, announced)

        text = state.accumulated_text
        calls = decoder.get_tool_calls(state)
        marker = self.settings.completion_marker

        if marker and marker in text:
            logger.info("Completion marker found; finishing early")
            return LoopResult(
                text=text.replace(marker, "").strip(),
                iterations=run.iterations,
                outcome=LoopOutcome.MARKER,
                messages=run.messages,
            )

        if not (state.is_complete and calls and run.tool_executor is not None):
            return LoopResult(
                text=text,
                iterations=run.iterations,
                outcome=LoopOutcome.COMPLETED,
                messages=run.messages,
            )

        results = [await self._execute(run, call) for call in calls]
        run.messages.append(provider.assistant_message(text, calls))
        run.messages.extend(provider.result_messages(calls, results))
        run.iterations += 1
        run.last_text = text
        logger.info("Tool round %d finished (%d calls)", run.iterations, len(calls))
        return None

    async def _execute(self, run: _RunState, call: ToolCall) -> Any:
        running = call.transition(ToolCallStatus.RUNNING)
        self._emit(run, running)
        try:
            result = await run_callable(run.tool_executor, call.name, call.args)
        except Exception as exc:
            self._emit(run, running.transition(ToolCallStatus.ERROR, error=str(exc)))
            raise ToolExecutionError(call, exc) from exc

        self._emit(run, running.transition(ToolCallStatus.SUCCESS, result=result))
        return compact_tool_result(call.name, result, self.settings.tool_result_max_chars)

    def _announce_pending(
        self, run: _RunState, state: StreamDecoderState, announced: set[int]
    ) -> None:
        if run.tool_event_callback is None:
            return
        for index, buf in state.tool_calls.items():
            if index in announced or not buf.name.strip():
                continue
            announced.add(index)
            self._emit(
                run,
                ToolCall(
                    id=buf.id or fallback_call_id(self.provider.name, index),
                    name=buf.name.strip(),
                    args={},
                    provider=self.provider.name,
                ),
            )

    def _emit(self, run: _RunState, call: ToolCall) -> None:
        """Fire-and-forget notification; observer failures are only logged."""
        callback = run.tool_event_callback
        if callback is None:
            return
        try:
            outcome = callback(call)
        except Exception:
            logger.exception("Tool event callback failed for %s (%s)", call.name, call.status.value)
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._observer_tasks.add(task)
            task.add_done_callback(self._observer_done)

    def _observer_done(self, task: asyncio.Task) -> None:
        self._observer_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async tool event callback failed: %s", exc, exc_info=exc)


async def run_agent_loop(
    prompt: str,
    config: AgentLoopConfig,
    system_instruction: str | None = None,
    tool_executor: ToolExecutor | None = None,
    tool_event_callback: ToolEventCallback | None = None,
    *,
    provider: Provider | None = None,
    **kwargs,
) -> str:
    """
    Build a provider from *config*, run one loop and return its text.

    Remaining keyword arguments (``history``, ``tools``, ``on_text``,
    ``json_mode``) go to :meth:`AgentLoop.run`.
    """
    if provider is None:
        provider = create_provider(
            config.to_provider_config(),
            max_retries=config.loop.max_retries,
            retry_delay=config.loop.retry_delay_seconds,
            timeout=config.provider.timeout_seconds,
        )
    loop = AgentLoop(provider, config.loop)
    result = await loop.run(
        prompt,
        system_instruction=system_instruction,
        tool_executor=tool_executor,
        tool_event_callback=tool_event_callback,
        **kwargs,
    )
    return result.text
