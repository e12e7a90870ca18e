"""Ordered single-producer / single-consumer event channel with a terminal result."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, TypeVar

from ..types import AssistantMessage, AssistantMessageEvent, DoneEvent, ErrorEvent

T = TypeVar("T")
R = TypeVar("R")

_END = object()


class EventStream(Generic[T, R]):
    """Async channel that ends with exactly one terminal event.

    The producer calls :meth:`push` (never blocks). The consumer iterates with
    ``async for`` or :meth:`next` and may await :meth:`result` for the value
    extracted from the terminal event. Pushes after the terminal event are
    ignored.
    """

    def __init__(
        self,
        is_terminal: Callable[[T], bool],
        extract_result: Callable[[T], R],
    ) -> None:
        self._is_terminal = is_terminal
        self._extract_result = extract_result
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._finished = asyncio.Event()
        self._closed = False
        self._drained = False
        self._result: R | None = None
        self._task: asyncio.Task | None = None

    @property
    def done(self) -> bool:
        return self._closed

    def push(self, event: T) -> None:
        if self._closed:
            return
        self._queue.put_nowait(event)
        if self._is_terminal(event):
            self._finish(self._extract_result(event))

    def end(self, result: R | None = None) -> None:
        """Close the stream without a terminal event (or with an explicit result)."""
        if self._closed:
            return
        self._finish(result)

    def _finish(self, result: R | None) -> None:
        self._closed = True
        self._result = result
        self._queue.put_nowait(_END)
        self._finished.set()

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def close(self) -> None:
        """End the stream and cancel the producer task, if any."""
        self.end()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def join(self) -> None:
        """Wait for the producer task to exit."""
        if self._task is not None:
            await self._task

    async def next(self) -> T | None:
        """Next event in emission order, or ``None`` once the stream is drained."""
        if self._drained:
            return None
        item = await self._queue.get()
        if item is _END:
            self._drained = True
            return None
        return item

    async def result(self) -> R | None:
        await self._finished.wait()
        return self._result

    def __aiter__(self) -> EventStream[T, R]:
        return self

    async def __anext__(self) -> T:
        item = await self.next()
        if item is None:
            raise StopAsyncIteration
        return item


def _assistant_terminal(event: AssistantMessageEvent) -> bool:
    return isinstance(event, (DoneEvent, ErrorEvent))


def _assistant_result(event: AssistantMessageEvent) -> AssistantMessage:
    if isinstance(event, DoneEvent):
        return event.message
    return event.error


class AssistantMessageEventStream(EventStream[AssistantMessageEvent, AssistantMessage]):
    """Stream of provider events whose result is the final assistant message."""

    def __init__(self) -> None:
        super().__init__(_assistant_terminal, _assistant_result)


def _agent_terminal(event: Any) -> bool:
    return getattr(event, "type", None) == "agent_end"


def _agent_result(event: Any) -> Any:
    return event.result


class AgentEventStream(EventStream[Any, Any]):
    """Stream of agent run events whose result is the run's ``RunResult``."""

    def __init__(self) -> None:
        super().__init__(_agent_terminal, _agent_result)
