"""Agent loop: streams assistant turns, validates and runs tool calls, repeats.

States: Idle -> Running <-> WaitingForTool -> Done | Aborted | Failed.
Suspension points (provider events, tool futures, retry backoff, queue polls)
all race the abort signal; in interrupt mode they also poll the message queue.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, replace
from typing import Any

from ..abort import AbortSignal
from ..config import get_settings
from ..errors import (
    AgentLoopError,
    ProviderProtocolError,
    SchemaInvalidError,
    ToolArgumentsInvalidError,
    ToolExecutionError,
    ToolNotFoundError,
    WeftError,
)
from ..events.stream import AgentEventStream
from ..infra.logging import get_logger
from ..providers.base import AssistantMessageBuilder
from ..providers.registry import get_default_registry
from ..providers.reliable import ReliableProvider
from ..tools import AgentTool, ToolValidator
from ..types import (
    AssistantMessage,
    Context,
    ErrorEvent,
    ErrorReason,
    Message,
    Model,
    StopReason,
    StreamOptions,
    TextContent,
    ToolCall,
    ToolResultMessage,
    event_message,
    is_terminal,
)
from .events import (
    AgentEndEvent,
    AgentEvent,
    AgentStartEvent,
    MessageEndEvent,
    MessageStartEvent,
    MessageUpdateEvent,
    MetricsEvent,
    ModelFallbackEvent,
    RetryScheduledEvent,
    RunErrorEvent,
    StateChangeEvent,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
    TurnEndEvent,
    TurnStartEvent,
)
from .types import (
    AgentContext,
    AgentLoopConfig,
    AgentRunMetrics,
    AgentState,
    QueueMode,
    RunResult,
    RunStopReason,
)

logger = get_logger(__name__)

ABORT_SKIP_TEXT = "Skipped due to abort signal."
INTERRUPT_SKIP_TEXT = "Skipped due to queued user message."
FAILED_SKIP_TEXT = "Skipped due to run failure."

_background: set[asyncio.Task] = set()


def _keep_alive(task: asyncio.Task) -> None:
    """Let an abandoned task finish on its own; its result is discarded."""
    _background.add(task)
    task.add_done_callback(_background.discard)


class _Aborted:
    pass


_ABORTED = _Aborted()


@dataclass
class _Interrupted:
    messages: list[Message]


@dataclass
class _Step:
    """Outcome of one assistant request."""

    kind: str  # "done" | "failed" | "aborted" | "interrupted"
    message: AssistantMessage | None = None
    error: WeftError | None = None
    queued: list[Message] | None = None
    emitted: bool = False


@dataclass
class _Outcome:
    state: AgentState
    stop_reason: RunStopReason
    error: WeftError | None = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _dedupe_models(models: list[Model]) -> list[Model]:
    seen: set[tuple[str, str]] = set()
    out: list[Model] = []
    for m in models:
        if m.key not in seen:
            seen.add(m.key)
            out.append(m)
    return out


def _error_result(call: ToolCall, text: str, error: WeftError | None = None) -> ToolResultMessage:
    return ToolResultMessage(
        tool_call_id=call.id,
        tool_name=call.name,
        content=[TextContent(text=text)],
        details={"error": error.to_dict()} if error is not None else None,
        is_error=True,
    )


def _message_error(message: AssistantMessage) -> WeftError:
    raw = message.error_message or ""
    return WeftError.from_json(raw) or ProviderProtocolError(raw or "Provider request failed")


class _Runner:
    def __init__(
        self,
        context: AgentContext,
        config: AgentLoopConfig,
        signal: AbortSignal | None,
        out: AgentEventStream,
    ) -> None:
        self.context = context
        self.config = config
        self.signal = signal
        self.out = out
        self.state = AgentState.IDLE
        self.metrics = AgentRunMetrics()
        self.new_messages: list[Message] = []
        self.last_message: AssistantMessage | None = None
        self.validator = ToolValidator(context.tools)
        self.tools: dict[str, AgentTool] = {t.name: t for t in context.tools}
        self.models = _dedupe_models([config.model, *config.fallback_models])
        self.registry = config.registry or get_default_registry()
        self.poll_interval = config.queue_poll_interval or get_settings().queue_poll_interval
        self._pending: list[Message] = []
        self._abort_waiter: asyncio.Future | None = None
        self._sink_queue: asyncio.Queue | None = asyncio.Queue() if config.event_sink is not None else None
        self._sink_task: asyncio.Task | None = None
        self.log = logger.bind(model=config.model.id, api=config.model.api)

    # -- events --

    def _emit(self, event: AgentEvent) -> None:
        self.out.push(event)
        if self._sink_queue is not None:
            self._sink_queue.put_nowait(event)

    async def _sink_pump(self) -> None:
        bus = self.config.event_sink
        while True:
            event = await self._sink_queue.get()
            if event is None:
                return
            await bus.emit(event)

    def _set_state(self, state: AgentState) -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        self._emit(StateChangeEvent(previous=previous, current=state))

    def _append(self, message: Message, announce: bool = True) -> None:
        self.context.messages.append(message)
        self.new_messages.append(message)
        if announce:
            self._emit(MessageStartEvent(message=message))
        self._emit(MessageEndEvent(message=message))

    # -- abort / queue --

    def _aborted(self) -> bool:
        return self.signal is not None and self.signal.aborted

    def _abort_future(self) -> asyncio.Future | None:
        if self.signal is None:
            return None
        if self._abort_waiter is None:
            self._abort_waiter = asyncio.ensure_future(self.signal.wait())
        return self._abort_waiter

    @property
    def _interruptible(self) -> bool:
        return self.config.queue_mode == QueueMode.INTERRUPT and self.config.get_queued_messages is not None

    async def _poll_queue(self) -> list[Message]:
        source = self.config.get_queued_messages
        if source is None:
            return []
        return list(await _maybe_await(source()) or [])

    async def _race(self, waitables: set[asyncio.Future]) -> set[asyncio.Future] | _Aborted | _Interrupted:
        """Wait for any of ``waitables``, the abort signal, or (interrupt mode) a queued message."""
        abort = self._abort_future()
        watch = set(waitables)
        if abort is not None:
            watch.add(abort)
        timeout = self.poll_interval if self._interruptible else None
        while True:
            done, _ = await asyncio.wait(watch, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            if abort is not None and abort in done:
                return _ABORTED
            if done:
                return done
            queued = await self._poll_queue()
            if queued:
                return _Interrupted(queued)
            if self._aborted():
                return _ABORTED

    # -- run --

    async def run(self, prompts: list[Message]) -> None:
        started = time.monotonic()
        if self._sink_queue is not None:
            self._sink_task = asyncio.ensure_future(self._sink_pump())
        self._emit(AgentStartEvent())
        self._set_state(AgentState.RUNNING)
        try:
            outcome = await self._run(prompts)
        except asyncio.CancelledError:
            self._cleanup()
            if self._sink_task is not None:
                self._sink_task.cancel()
            raise
        except Exception as exc:
            self.log.exception("agent_loop_crashed")
            outcome = _Outcome(AgentState.FAILED, RunStopReason.ERROR, WeftError.wrap(exc))
        self._set_state(outcome.state)
        if outcome.error is not None:
            self._emit(RunErrorEvent(error=outcome.error.to_dict()))
        self.metrics.duration_ms = int((time.monotonic() - started) * 1000)
        self._emit(MetricsEvent(metrics=self.metrics.copy()))
        self.log.info(
            "agent_run_finished",
            state=outcome.state.value,
            stop_reason=outcome.stop_reason.value,
            turns=self.metrics.turn_count,
            requests=self.metrics.assistant_request_count,
            tools=self.metrics.tool_execution_count,
            retries=self.metrics.retry_count,
            total_tokens=self.metrics.usage.total_tokens,
            duration_ms=self.metrics.duration_ms,
        )
        result = RunResult(
            state=outcome.state,
            stop_reason=outcome.stop_reason,
            messages=list(self.new_messages),
            context=self.context.snapshot(),
            metrics=self.metrics.copy(),
            error=outcome.error,
            last_message=self.last_message,
        )
        self._emit(AgentEndEvent(result=result))
        self._cleanup()
        if self._sink_task is not None:
            self._sink_queue.put_nowait(None)
            await self._sink_task

    def _cleanup(self) -> None:
        if self._abort_waiter is not None and not self._abort_waiter.done():
            self._abort_waiter.cancel()

    async def _run(self, prompts: list[Message]) -> _Outcome:
        inputs = list(prompts)
        while True:
            for m in inputs:
                self._append(m)
            outcome = await self._run_turns()
            if self.config.queue_mode == QueueMode.ENQUEUE and outcome.state in (AgentState.DONE, AgentState.FAILED):
                if self._aborted():
                    return _Outcome(AgentState.ABORTED, RunStopReason.ABORTED)
                inputs = await self._poll_queue()
                if inputs:
                    self.log.debug("continuing_with_queued_messages", count=len(inputs))
                    self._set_state(AgentState.RUNNING)
                    continue
            return outcome

    async def _run_turns(self) -> _Outcome:
        cfg = self.config
        while True:
            if self._pending:
                pending, self._pending = self._pending, []
                for m in pending:
                    self._append(m)
            if self._aborted():
                return _Outcome(AgentState.ABORTED, RunStopReason.ABORTED)
            if cfg.max_turns is not None and self.metrics.turn_count >= cfg.max_turns:
                return _Outcome(AgentState.DONE, RunStopReason.MAX_TURNS)
            if cfg.max_total_tokens is not None and self.metrics.usage.total_tokens >= cfg.max_total_tokens:
                return _Outcome(AgentState.DONE, RunStopReason.MAX_TOKENS)

            self.metrics.turn_count += 1
            turn = self.metrics.turn_count
            self._set_state(AgentState.RUNNING)
            self._emit(TurnStartEvent(turn=turn))

            step = await self._assistant_step()
            if step.kind == "interrupted":
                self._pending = list(step.queued or [])
                self._emit(TurnEndEvent(turn=turn))
                continue

            message = step.message
            if message is not None:
                self._append(message, announce=not step.emitted)
                self.last_message = message

            if step.kind == "aborted":
                results = self._skip_all(message, ABORT_SKIP_TEXT)
                self._emit(TurnEndEvent(turn=turn, message=message, tool_results=results))
                return _Outcome(AgentState.ABORTED, RunStopReason.ABORTED)
            if step.kind == "failed":
                results = self._skip_all(message, FAILED_SKIP_TEXT)
                self._emit(TurnEndEvent(turn=turn, message=message, tool_results=results))
                return _Outcome(AgentState.FAILED, RunStopReason.ERROR, step.error)

            calls = message.tool_calls
            if not calls:
                self._emit(TurnEndEvent(turn=turn, message=message))
                if self._interruptible:
                    queued = await self._poll_queue()
                    if queued:
                        self._pending = queued
                        continue
                if message.stop_reason == StopReason.LENGTH:
                    return _Outcome(AgentState.DONE, RunStopReason.LENGTH)
                return _Outcome(AgentState.DONE, RunStopReason.STOP)

            self._set_state(AgentState.WAITING_FOR_TOOL)
            results, fatal, aborted, queued = await self._execute_tools(calls)
            for r in results:
                self._append(r)
            self._emit(TurnEndEvent(turn=turn, message=message, tool_results=results))
            if fatal is not None:
                return _Outcome(AgentState.FAILED, RunStopReason.ERROR, fatal)
            if aborted:
                return _Outcome(AgentState.ABORTED, RunStopReason.ABORTED)
            if queued:
                self._pending = queued
            elif self._interruptible:
                self._pending = await self._poll_queue()

    def _skip_all(self, message: AssistantMessage | None, text: str) -> list[ToolResultMessage]:
        if message is None:
            return []
        results = [_error_result(call, text) for call in message.tool_calls]
        for r in results:
            self._append(r)
        return results

    # -- assistant --

    async def _llm_context(self) -> Context:
        messages = list(self.context.messages)
        if self.config.convert_to_llm is not None:
            messages = list(await _maybe_await(self.config.convert_to_llm(messages)))
        snap = self.context.snapshot()
        return snap.model_copy(update={"messages": messages})

    async def _assistant_step(self) -> _Step:
        previous: Model | None = None
        step = _Step("failed")
        for index, model in enumerate(self.models):
            if previous is not None and step.error is not None:
                self.log.warning(
                    "model_fallback", from_model=previous.id, to_model=model.id, code=step.error.code.value,
                )
                self._emit(ModelFallbackEvent(
                    from_model=previous.id, to_model=model.id, error=step.error.to_dict(),
                ))
            step = await self._stream_assistant(model)
            last = index + 1 == len(self.models)
            if step.kind == "failed" and not step.emitted and not last and not self._aborted():
                previous = model
                continue
            if step.kind == "failed" and not step.emitted and step.message is not None:
                self._emit(MessageStartEvent(message=step.message))
                step.emitted = True
            return step
        return step

    def _on_retry(self, model: Model):
        def callback(attempt: int, max_retries: int, delay_ms: int, error: WeftError) -> None:
            self.metrics.retry_count += 1
            self._emit(RetryScheduledEvent(
                attempt=attempt,
                max_attempts=max_retries + 1,
                delay_ms=delay_ms,
                error=error.to_dict(),
                model=model.id,
            ))
        return callback

    async def _stream_assistant(self, model: Model) -> _Step:
        builder = AssistantMessageBuilder(model, model.api)
        provider = self.registry.get(model.api)
        if provider is None:
            err = ProviderProtocolError(
                f"No provider registered for api {model.api}",
                details={"api": model.api, "registered": self.registry.apis()},
            )
            return _Step("failed", message=builder.error(err).error, error=err)

        retry = self.config.retry
        reliable = ReliableProvider(
            provider,
            max_retries=retry.max_retries,
            on_retry=self._on_retry(model),
            backoff=retry.delay_ms,
        )
        options = replace(self.config.stream_options or StreamOptions(), signal=self.signal)
        llm_context = await self._llm_context()

        started = time.monotonic()
        self.metrics.assistant_request_count += 1
        stream = reliable.stream(model, llm_context, options)
        partial: AssistantMessage | None = None
        emitted = False
        try:
            while True:
                next_event = asyncio.ensure_future(stream.next())
                raced = await self._race({next_event})
                if isinstance(raced, (_Aborted, _Interrupted)):
                    next_event.cancel()
                    stream.close()
                    if partial is not None:
                        self.metrics.add_usage(partial.usage)
                    if isinstance(raced, _Interrupted):
                        if emitted:
                            self._emit(MessageEndEvent(
                                message=partial.model_copy(update={"stop_reason": StopReason.ABORTED}),
                                discarded=True,
                            ))
                        self.log.info("assistant_interrupted", queued=len(raced.messages))
                        return _Step("interrupted", queued=raced.messages)
                    aborted = self._aborted_message(partial, builder)
                    return _Step("aborted", message=aborted if emitted else None, emitted=emitted)
                event = next_event.result()
                if event is None:
                    err = ProviderProtocolError("Provider stream closed without a terminal event")
                    message = builder.error(err).error if partial is None else partial.model_copy(
                        update={"stop_reason": StopReason.ERROR, "error_message": err.to_json()})
                    return _Step("failed", message=message, error=err, emitted=emitted)

                message = event_message(event)
                if isinstance(event, ErrorEvent):
                    self.metrics.add_usage(event.error.usage)
                    if event.reason == ErrorReason.ABORTED:
                        return _Step("aborted", message=event.error if emitted else None, emitted=emitted)
                    err = _message_error(event.error)
                    self.log.warning("assistant_request_failed", code=err.code.value, error=err.message)
                    return _Step("failed", message=event.error, error=err, emitted=emitted)

                if not emitted:
                    emitted = True
                    self._emit(MessageStartEvent(message=message))
                partial = message
                if is_terminal(event):
                    self.metrics.add_usage(message.usage)
                    return _Step("done", message=message, emitted=True)
                self._emit(MessageUpdateEvent(message=message, assistant_message_event=event))
        finally:
            self.metrics.assistant_request_total_ms += int((time.monotonic() - started) * 1000)

    @staticmethod
    def _aborted_message(partial: AssistantMessage | None, builder: AssistantMessageBuilder) -> AssistantMessage:
        if partial is None:
            return builder.aborted().error
        return partial.model_copy(update={"stop_reason": StopReason.ABORTED, "error_message": "Request was aborted"})

    # -- tools --

    async def _execute_tools(
        self, calls: list[ToolCall]
    ) -> tuple[list[ToolResultMessage], WeftError | None, bool, list[Message]]:
        results: dict[int, ToolResultMessage] = {}
        valid: list[tuple[int, ToolCall, Any]] = []
        fatal: WeftError | None = None

        for index, call in enumerate(calls):
            self._emit(ToolExecutionStartEvent(tool_call_id=call.id, tool_name=call.name, args=call.arguments))
            try:
                args = self.validator.validate(call)
            except SchemaInvalidError as e:
                fatal = fatal or e
                results[index] = _error_result(call, e.to_json(), e)
            except (ToolNotFoundError, ToolArgumentsInvalidError) as e:
                self.log.info("tool_call_rejected", tool=call.name, code=e.code.value)
                results[index] = _error_result(call, e.to_json(), e)
            else:
                valid.append((index, call, args))
                continue
            self._emit(ToolExecutionEndEvent(
                tool_call_id=call.id, tool_name=call.name, result=results[index], is_error=True,
            ))

        if fatal is not None:
            self.log.error("tool_schema_invalid", tool=fatal.details.get("toolName"))
            for index, call, _ in valid:
                results[index] = _error_result(call, FAILED_SKIP_TEXT)
                self._emit(ToolExecutionEndEvent(
                    tool_call_id=call.id, tool_name=call.name, result=results[index], is_error=True,
                ))
            return [results[i] for i in range(len(calls))], fatal, False, []

        tasks: dict[asyncio.Future, tuple[int, ToolCall]] = {
            asyncio.ensure_future(self._run_tool(call, args)): (index, call) for index, call, args in valid
        }
        pending = set(tasks)
        aborted = False
        queued: list[Message] = []
        while pending:
            raced = await self._race(pending)
            if isinstance(raced, (_Aborted, _Interrupted)):
                text = ABORT_SKIP_TEXT if isinstance(raced, _Aborted) else INTERRUPT_SKIP_TEXT
                for task in pending:
                    index, call = tasks[task]
                    _keep_alive(task)
                    results[index] = _error_result(call, text)
                    self._emit(ToolExecutionEndEvent(
                        tool_call_id=call.id, tool_name=call.name, result=results[index], is_error=True,
                    ))
                if isinstance(raced, _Aborted):
                    aborted = True
                else:
                    queued = raced.messages
                    self.log.info("tools_interrupted", skipped=len(pending), queued=len(queued))
                break
            for task in raced:
                pending.discard(task)
                index, call = tasks[task]
                result, duration_ms = task.result()
                results[index] = result
                self._emit(ToolExecutionEndEvent(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    result=result,
                    is_error=result.is_error,
                    duration_ms=duration_ms,
                ))

        return [results[i] for i in range(len(calls))], None, aborted, queued

    async def _run_tool(self, call: ToolCall, args: Any) -> tuple[ToolResultMessage, int]:
        tool = self.tools[call.name]
        started = time.monotonic()
        timeout = self.config.tool_timeout
        try:
            task = asyncio.ensure_future(tool.run(call.id, args, self.signal))
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if task not in done:
                _keep_alive(task)
                err = ToolExecutionError(
                    f"Tool '{call.name}' timed out after {timeout}s",
                    details={"toolName": call.name, "timeoutMs": int(timeout * 1000)},
                )
                result = _error_result(call, err.message, err)
            else:
                output = task.result()
                result = ToolResultMessage(
                    tool_call_id=call.id,
                    tool_name=call.name,
                    content=output.content,
                    details=output.details,
                    is_error=False,
                )
        except Exception as e:
            self.log.warning("tool_execution_failed", tool=call.name, error=str(e))
            err = ToolExecutionError(
                str(e) or type(e).__name__, details={"toolName": call.name}, cause=e,
            )
            result = _error_result(call, err.message, err)
        duration_ms = int((time.monotonic() - started) * 1000)
        self.metrics.tool_execution_count += 1
        self.metrics.tool_execution_total_ms += duration_ms
        return result, duration_ms


def _start(
    prompts: list[Message],
    context: AgentContext,
    config: AgentLoopConfig,
    signal: AbortSignal | None,
) -> AgentEventStream:
    out = AgentEventStream()
    runner = _Runner(context, config, signal, out)
    out.attach(asyncio.get_running_loop().create_task(runner.run(prompts)))
    return out


def agent_loop(
    prompts: list[Message],
    context: AgentContext,
    config: AgentLoopConfig,
    signal: AbortSignal | None = None,
) -> AgentEventStream:
    """Start a run with ``prompts`` appended to ``context``; events stream as they happen."""
    return _start(list(prompts), context, config, signal)


def validate_continuation(context: AgentContext) -> None:
    if not context.messages:
        raise AgentLoopError("Cannot continue: no messages in context")
    last = context.messages[-1]
    if last.role == "assistant":
        raise AgentLoopError(f"Cannot continue from message role: {last.role}")


def agent_loop_continue(
    context: AgentContext,
    config: AgentLoopConfig,
    signal: AbortSignal | None = None,
) -> AgentEventStream:
    """Resume from the existing context (its last message must be a user or tool result)."""
    validate_continuation(context)
    return _start([], context, config, signal)


async def run_agent_loop(
    prompts: list[Message],
    context: AgentContext,
    config: AgentLoopConfig,
    signal: AbortSignal | None = None,
) -> RunResult:
    stream = agent_loop(prompts, context, config, signal)
    async for _ in stream:
        pass
    return await stream.result()
