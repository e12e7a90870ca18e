"""Provider adapter base: event pumping, error classification and partial-message accumulation."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator
from typing import Any, Protocol, runtime_checkable

from ..errors import ProviderProtocolError, ProviderTransportError, WeftError
from ..events.stream import AssistantMessageEventStream
from ..types import (
    AssistantMessage,
    AssistantMessageEvent,
    Context,
    DoneEvent,
    DoneReason,
    ErrorEvent,
    ErrorReason,
    Model,
    StartEvent,
    StopReason,
    StreamOptions,
    TextContent,
    TextDeltaEvent,
    TextEndEvent,
    TextStartEvent,
    ThinkingContent,
    ThinkingDeltaEvent,
    ThinkingEndEvent,
    ThinkingStartEvent,
    ToolCall,
    ToolCallDeltaEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    Usage,
    UsageEvent,
    calculate_cost,
    is_terminal,
)

logger = logging.getLogger(__name__)

ABORTED_MESSAGE = "Request was aborted"


@runtime_checkable
class ApiProvider(Protocol):
    @property
    def api(self) -> str: ...
    def stream(
        self, model: Model, context: Context, options: StreamOptions | None = None
    ) -> AssistantMessageEventStream: ...
    def stream_simple(
        self, model: Model, context: Context, options: StreamOptions | None = None
    ) -> AssistantMessageEventStream: ...


def parse_partial_json(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return {}


def parse_tool_arguments(raw: str) -> Any:
    """Final arguments of a closed tool call; malformed JSON is kept as the raw string."""
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class _Block:
    __slots__ = ("kind", "text", "signature", "id", "name", "args", "closed")

    def __init__(self, kind: str, id: str = "", name: str = "") -> None:
        self.kind = kind
        self.text = ""
        self.signature: str | None = None
        self.id = id
        self.name = name
        self.args = ""
        self.closed = False

    def to_content(self):
        if self.kind == "text":
            return TextContent(text=self.text, text_signature=self.signature)
        if self.kind == "thinking":
            return ThinkingContent(thinking=self.text, thinking_signature=self.signature)
        parse = parse_tool_arguments if self.closed else parse_partial_json
        return ToolCall(id=self.id, name=self.name, arguments=parse(self.args),
                        thought_signature=self.signature)


class AssistantMessageBuilder:
    """Accumulates one assistant reply and produces protocol events with snapshots.

    Methods that may close a previous content block return a list of events;
    adapters yield them in order.
    """

    def __init__(self, model: Model, api: str) -> None:
        self.model = model
        self.api = api
        self.usage = Usage()
        self._blocks: list[_Block] = []
        self._open: int | None = None
        self._tool_keys: dict[Any, int] = {}

    def snapshot(self, stop_reason: StopReason = StopReason.STOP, error_message: str | None = None) -> AssistantMessage:
        return AssistantMessage(
            content=[b.to_content() for b in self._blocks],
            api=self.api,
            provider=self.model.provider,
            model=self.model.id,
            usage=self.usage,
            stop_reason=stop_reason,
            error_message=error_message,
        )

    @property
    def has_content(self) -> bool:
        return bool(self._blocks)

    def start(self) -> StartEvent:
        return StartEvent(partial=self.snapshot())

    # -- text / thinking --

    def text(self, delta: str, signature: str | None = None) -> list[AssistantMessageEvent]:
        return self._stream_text("text", delta, signature)

    def thinking(self, delta: str, signature: str | None = None) -> list[AssistantMessageEvent]:
        return self._stream_text("thinking", delta, signature)

    def _stream_text(self, kind: str, delta: str, signature: str | None) -> list[AssistantMessageEvent]:
        events: list[AssistantMessageEvent] = []
        current = self._blocks[self._open] if self._open is not None else None
        if current is None or current.kind != kind:
            events.extend(self.close_open())
            self._blocks.append(_Block(kind))
            self._open = len(self._blocks) - 1
            start_cls = TextStartEvent if kind == "text" else ThinkingStartEvent
            events.append(start_cls(content_index=self._open, partial=self.snapshot()))
        block = self._blocks[self._open]
        if signature:
            block.signature = signature
        if delta:
            block.text += delta
            delta_cls = TextDeltaEvent if kind == "text" else ThinkingDeltaEvent
            events.append(delta_cls(content_index=self._open, delta=delta, partial=self.snapshot()))
        return events

    # -- tool calls --

    def tool_call_start(self, key: Any, id: str, name: str) -> list[AssistantMessageEvent]:
        events = self.close_open()
        self._blocks.append(_Block("toolCall", id=id, name=name))
        index = len(self._blocks) - 1
        self._tool_keys[key] = index
        self._open = index
        events.append(ToolCallStartEvent(content_index=index, partial=self.snapshot()))
        return events

    def has_tool_call(self, key: Any) -> bool:
        return key in self._tool_keys

    def tool_call_update(self, key: Any, id: str | None = None, name: str | None = None) -> None:
        block = self._blocks[self._tool_keys[key]]
        if id:
            block.id = id
        if name:
            block.name = name

    def tool_call_delta(self, key: Any, delta: str) -> list[AssistantMessageEvent]:
        index = self._tool_keys[key]
        block = self._blocks[index]
        if not delta:
            return []
        block.args += delta
        return [ToolCallDeltaEvent(content_index=index, delta=delta, partial=self.snapshot())]

    # -- closing --

    def close_open(self) -> list[AssistantMessageEvent]:
        if self._open is None:
            return []
        index, self._open = self._open, None
        return self._close(index)

    def close_all(self) -> list[AssistantMessageEvent]:
        events = self.close_open()
        for index, block in enumerate(self._blocks):
            if not block.closed:
                events.extend(self._close(index))
        return events

    def _close(self, index: int) -> list[AssistantMessageEvent]:
        block = self._blocks[index]
        if block.closed:
            return []
        block.closed = True
        if block.kind == "toolCall" and self._needs_id(index):
            block.id = f"call_{uuid.uuid4().hex[:24]}"
        snap = self.snapshot()
        if block.kind == "text":
            return [TextEndEvent(content_index=index, content=block.text, partial=snap)]
        if block.kind == "thinking":
            return [ThinkingEndEvent(content_index=index, content=block.text, partial=snap)]
        return [ToolCallEndEvent(content_index=index, tool_call=block.to_content(), partial=snap)]

    def _needs_id(self, index: int) -> bool:
        block = self._blocks[index]
        if not block.id:
            return True
        return any(
            b.kind == "toolCall" and b.id == block.id for i, b in enumerate(self._blocks) if i != index and b.closed
        )

    # -- usage and terminals --

    def set_usage(self, usage: Usage) -> UsageEvent:
        self.usage = calculate_cost(self.model, usage)
        return UsageEvent(usage=self.usage, partial=self.snapshot())

    def finish(self, reason: DoneReason) -> list[AssistantMessageEvent]:
        events = self.close_all()
        if reason == DoneReason.STOP and any(b.kind == "toolCall" for b in self._blocks):
            reason = DoneReason.TOOL_USE
        events.append(DoneEvent(reason=reason, message=self.snapshot(reason.as_stop_reason())))
        return events

    def error(self, err: WeftError) -> ErrorEvent:
        return ErrorEvent(
            reason=ErrorReason.ERROR,
            error=self.snapshot(StopReason.ERROR, err.to_json()),
        )

    def aborted(self) -> ErrorEvent:
        return ErrorEvent(
            reason=ErrorReason.ABORTED,
            error=self.snapshot(StopReason.ABORTED, ABORTED_MESSAGE),
        )


def classify_builtin_error(exc: BaseException) -> WeftError:
    if isinstance(exc, WeftError):
        return exc
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ProviderTransportError(str(exc) or type(exc).__name__, cause=exc)
    return ProviderProtocolError(str(exc) or type(exc).__name__, cause=exc)


class BaseApiProvider:
    """Implements the stream contract once. Subclass and implement ``_do_stream``."""

    api: str = ""

    def stream(
        self, model: Model, context: Context, options: StreamOptions | None = None
    ) -> AssistantMessageEventStream:
        out = AssistantMessageEventStream()
        task = asyncio.get_running_loop().create_task(
            self._pump(model, context, options or StreamOptions(), out)
        )
        out.attach(task)
        return out

    def stream_simple(
        self, model: Model, context: Context, options: StreamOptions | None = None
    ) -> AssistantMessageEventStream:
        return collect_terminal(self.stream(model, context, options))

    # -- Override these --

    async def _do_stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        builder: AssistantMessageBuilder,
    ) -> AsyncGenerator[AssistantMessageEvent, None]:
        raise NotImplementedError
        yield  # pragma: no cover

    def classify_error(self, exc: BaseException) -> WeftError:
        return classify_builtin_error(exc)

    # -- Internals --

    async def _pump(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        out: AssistantMessageEventStream,
    ) -> None:
        builder = AssistantMessageBuilder(model, self.api)
        signal = options.signal
        if signal is not None and signal.aborted:
            out.push(builder.aborted())
            return
        task = asyncio.current_task()
        detach = signal.add_listener(task.cancel) if signal is not None and task is not None else None
        gen = self._do_stream(model, context, options, builder)
        try:
            async for event in gen:
                out.push(event)
                if is_terminal(event):
                    return
            out.push(builder.error(ProviderProtocolError(
                "Provider stream ended without a terminal event", details={"api": self.api},
            )))
        except asyncio.CancelledError:
            if signal is not None and signal.aborted:
                out.push(builder.aborted())
                return
            out.end()
            raise
        except Exception as exc:
            err = self.classify_error(exc)
            logger.debug("Provider %s failed: %s", self.api, err.to_json())
            out.push(builder.error(err))
        finally:
            if detach is not None:
                detach()
            try:
                await gen.aclose()
            except Exception:
                logger.debug("Provider %s stream close failed", self.api, exc_info=True)


def collect_terminal(inner: AssistantMessageEventStream) -> AssistantMessageEventStream:
    """Collected mode: forward only the terminal event of ``inner``."""
    out = AssistantMessageEventStream()

    async def pump() -> None:
        try:
            async for event in inner:
                if is_terminal(event):
                    out.push(event)
        except asyncio.CancelledError:
            inner.close()
            out.end()
            raise
        out.end()

    out.attach(asyncio.get_running_loop().create_task(pump()))
    return out
