"""Stateful Agent wrapping the agent loop."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, Union

from ..abort import AbortController
from ..errors import AgentLoopError, WeftError
from ..events import AgentEventStream, EventBus
from ..providers.registry import ApiRegistry
from ..tools import AgentTool
from ..types import AssistantMessage, Message, Model, StreamOptions, UserMessage
from .events import AgentEvent
from .loop import agent_loop, agent_loop_continue
from .types import (
    AgentContext,
    AgentLoopConfig,
    AgentRetryConfig,
    AgentState,
    MessageConverter,
    QueueMode,
    RunResult,
)

logger = logging.getLogger(__name__)

PromptInput = Union[str, Message, list[Message]]


@dataclass
class AgentConfig:
    model: Model
    system_prompt: str | None = None
    tools: list[AgentTool] = field(default_factory=list)
    fallback_models: list[Model] = field(default_factory=list)
    retry: AgentRetryConfig = field(default_factory=AgentRetryConfig)
    queue_mode: QueueMode = QueueMode.INTERRUPT
    max_turns: int | None = None
    max_total_tokens: int | None = None
    tool_timeout: float | None = None
    queue_poll_interval: float | None = None
    registry: ApiRegistry | None = None
    stream_options: StreamOptions | None = None
    convert_to_llm: MessageConverter | None = None


@dataclass
class AgentSnapshot:
    messages: list[Message]
    is_running: bool
    run_state: AgentState
    streaming_message: AssistantMessage | None
    pending_tool_calls: set[str]
    queued: int
    error: WeftError | None


class Agent:
    """Conversation owner: keeps the context between runs and serializes prompts."""

    def __init__(
        self,
        config: AgentConfig,
        event_bus: EventBus | None = None,
        messages: list[Message] | None = None,
        name: str | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.name = name or f"agent-{self.id}"
        self.config = config
        self.event_bus = event_bus or EventBus(node_id=self.name)
        self.context = AgentContext(
            system_prompt=config.system_prompt,
            messages=list(messages or []),
            tools=list(config.tools),
        )
        self._queue: list[Message] = []
        self._controller: AbortController | None = None
        self._running = False
        self._idle = asyncio.Event()
        self._idle.set()
        self._run_state = AgentState.IDLE
        self._streaming: AssistantMessage | None = None
        self._pending_tools: set[str] = set()
        self._last_error: WeftError | None = None

    # -- subscription --

    def on(self, event_type: str, handler: Callable[[Any], Awaitable[None]]) -> None:
        self.event_bus.on(event_type, handler)

    # -- setters --

    def set_model(self, model: Model) -> None:
        self.config = replace(self.config, model=model)

    def set_tools(self, tools: list[AgentTool]) -> None:
        self.config = replace(self.config, tools=list(tools))
        self.context.tools = list(tools)

    def set_system_prompt(self, prompt: str | None) -> None:
        self.config = replace(self.config, system_prompt=prompt)
        self.context.system_prompt = prompt

    def set_queue_mode(self, mode: QueueMode) -> None:
        self.config = replace(self.config, queue_mode=mode)

    def set_retry(self, retry: AgentRetryConfig) -> None:
        self.config = replace(self.config, retry=retry)

    # -- queue --

    def enqueue(self, message: str | Message) -> None:
        self._queue.append(UserMessage(content=message) if isinstance(message, str) else message)

    def clear_queue(self) -> None:
        self._queue.clear()

    def _take_queue(self) -> list[Message]:
        queued, self._queue = self._queue, []
        return queued

    # -- runs --

    @property
    def is_running(self) -> bool:
        return self._running

    async def prompt(self, input: PromptInput) -> RunResult:
        return await self._drain(self.stream(input))

    async def continue_run(self) -> RunResult:
        return await self._drain(self.stream_continue())

    async def stream(self, input: PromptInput) -> AsyncGenerator[AgentEvent, None]:
        messages = _to_messages(input)
        async for event in self._run(lambda cfg, sig: agent_loop(messages, self.context, cfg, sig)):
            yield event

    async def stream_continue(self) -> AsyncGenerator[AgentEvent, None]:
        messages = self.context.messages
        if messages and messages[-1].role == "assistant" and self._queue:
            queued = self._take_queue()
            async for event in self._run(lambda cfg, sig: agent_loop(queued, self.context, cfg, sig)):
                yield event
            return
        async for event in self._run(lambda cfg, sig: agent_loop_continue(self.context, cfg, sig)):
            yield event

    async def _drain(self, events: AsyncGenerator[AgentEvent, None]) -> RunResult:
        result: RunResult | None = None
        async for event in events:
            if event.type == "agent_end":
                result = event.result
        return result

    async def _run(
        self, start: Callable[[AgentLoopConfig, Any], AgentEventStream]
    ) -> AsyncGenerator[AgentEvent, None]:
        if self._running:
            raise AgentLoopError(
                "Agent is already processing a prompt. Use enqueue() or wait_for_idle()."
            )
        self._running = True
        self._idle.clear()
        self._last_error = None
        self._controller = AbortController()
        try:
            stream = start(self._loop_config(), self._controller.signal)
            completed = False
            try:
                async for event in stream:
                    self._track(event)
                    yield event
                completed = True
            finally:
                if not completed:
                    stream.close()
            await stream.join()
        finally:
            self._running = False
            self._streaming = None
            self._pending_tools.clear()
            self._controller = None
            self._idle.set()

    def _loop_config(self) -> AgentLoopConfig:
        cfg = self.config
        return AgentLoopConfig(
            model=cfg.model,
            fallback_models=tuple(cfg.fallback_models),
            convert_to_llm=cfg.convert_to_llm,
            retry=cfg.retry,
            queue_mode=cfg.queue_mode,
            get_queued_messages=self._take_queue,
            max_turns=cfg.max_turns,
            max_total_tokens=cfg.max_total_tokens,
            tool_timeout=cfg.tool_timeout,
            queue_poll_interval=cfg.queue_poll_interval,
            registry=cfg.registry,
            stream_options=cfg.stream_options,
            event_sink=self.event_bus,
        )

    def _track(self, event: AgentEvent) -> None:
        kind = event.type
        if kind == "state_change":
            self._run_state = event.current
        elif kind in ("message_start", "message_update") and event.message.role == "assistant":
            self._streaming = event.message
        elif kind == "message_end":
            self._streaming = None
        elif kind == "tool_execution_start":
            self._pending_tools.add(event.tool_call_id)
        elif kind == "tool_execution_end":
            self._pending_tools.discard(event.tool_call_id)
        elif kind == "agent_end":
            self._last_error = event.result.error
            if event.result.error is not None:
                logger.warning("Agent %s run failed: %s", self.name, event.result.error.message)

    def abort(self) -> None:
        if self._controller is not None:
            self._controller.abort()

    async def wait_for_idle(self) -> None:
        await self._idle.wait()

    def reset(self) -> None:
        self.abort()
        self.context.messages.clear()
        self._queue.clear()
        self._run_state = AgentState.IDLE
        self._streaming = None
        self._pending_tools.clear()
        self._last_error = None

    def snapshot(self) -> AgentSnapshot:
        return AgentSnapshot(
            messages=list(self.context.messages),
            is_running=self._running,
            run_state=self._run_state,
            streaming_message=self._streaming,
            pending_tool_calls=set(self._pending_tools),
            queued=len(self._queue),
            error=self._last_error,
        )


def _to_messages(input: PromptInput) -> list[Message]:
    if isinstance(input, str):
        return [UserMessage(content=input)]
    if isinstance(input, list):
        return list(input)
    return [input]
