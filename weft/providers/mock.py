"""
Scripted provider for tests and demos.

Replays a queue of scripted replies through the regular event protocol, so
the agent loop and the retry wrapper see exactly what a real adapter would
produce. No API key, no network.

Usage:
    provider = ScriptedProvider([tool_call_reply(("call_1", "echo", {"text": "hi"})), text_reply("done")])
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any, Callable, Union

from ..errors import ProviderProtocolError, WeftError
from ..types import (
    AssistantMessage,
    AssistantMessageEvent,
    Context,
    DoneReason,
    Model,
    StopReason,
    StreamOptions,
    TextContent,
    ThinkingContent,
    ToolCall,
    Usage,
)
from .base import AssistantMessageBuilder, BaseApiProvider


@dataclass
class PartialThenError:
    """Stream ``partial``'s content, then fail with ``error``."""

    partial: AssistantMessage
    error: WeftError


@dataclass
class Hang:
    """Stream ``partial``'s content (if any), then wait until cancelled."""

    partial: AssistantMessage | None = None


ScriptItem = Union[AssistantMessage, WeftError, PartialThenError, Hang, Callable[[Context], Any]]


def text_reply(text: str, usage: dict[str, int] | None = None) -> AssistantMessage:
    return AssistantMessage(
        content=[TextContent(text=text)],
        usage=Usage.from_counts(**(usage or {})),
        stop_reason=StopReason.STOP,
    )


def tool_call_reply(*calls: tuple[str, str, Any], text: str = "", usage: dict[str, int] | None = None) -> AssistantMessage:
    content: list = [TextContent(text=text)] if text else []
    content.extend(ToolCall(id=cid, name=name, arguments=args) for cid, name, args in calls)
    return AssistantMessage(
        content=content,
        usage=Usage.from_counts(**(usage or {})),
        stop_reason=StopReason.TOOL_USE,
    )


_DONE_REASONS = {
    StopReason.STOP: DoneReason.STOP,
    StopReason.LENGTH: DoneReason.LENGTH,
    StopReason.TOOL_USE: DoneReason.TOOL_USE,
}


class ScriptedProvider(BaseApiProvider):
    """Deterministic provider replaying scripted replies in order."""

    def __init__(
        self,
        responses: list[ScriptItem] | None = None,
        api: str = "scripted",
        event_delay: float = 0.0,
    ) -> None:
        self.api = api
        self._responses = list(responses or [])
        self.event_delay = event_delay
        self.calls: list[tuple[Model, Context, StreamOptions]] = []

    def add(self, *items: ScriptItem) -> None:
        self._responses.extend(items)

    @property
    def remaining(self) -> int:
        return len(self._responses)

    async def _do_stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        builder: AssistantMessageBuilder,
    ) -> AsyncGenerator[AssistantMessageEvent, None]:
        self.calls.append((model, context, options))
        if not self._responses:
            raise ProviderProtocolError("Scripted provider has no responses left", details={"api": self.api})
        item = self._responses.pop(0)
        while callable(item) and not isinstance(item, (AssistantMessage, WeftError)):
            item = item(context)

        if isinstance(item, WeftError):
            raise item

        yield builder.start()
        if isinstance(item, PartialThenError):
            async for event in self._replay(item.partial, builder):
                yield event
            raise item.error
        if isinstance(item, Hang):
            if item.partial is not None:
                async for event in self._replay(item.partial, builder):
                    yield event
            await asyncio.Event().wait()
            return

        async for event in self._replay(item, builder):
            yield event
        reason = _DONE_REASONS.get(item.stop_reason, DoneReason.STOP)
        for event in builder.finish(reason):
            yield event

    async def _replay(
        self, message: AssistantMessage, builder: AssistantMessageBuilder
    ) -> AsyncGenerator[AssistantMessageEvent, None]:
        for index, block in enumerate(message.content):
            if isinstance(block, TextContent):
                events = builder.text(block.text, block.text_signature)
            elif isinstance(block, ThinkingContent):
                events = builder.thinking(block.thinking, block.thinking_signature)
            else:
                events = builder.tool_call_start(index, block.id, block.name)
                events += builder.tool_call_delta(index, json.dumps(block.arguments))
            for event in events:
                await self._pause()
                yield event
        if message.usage.total_tokens:
            await self._pause()
            yield builder.set_usage(message.usage)

    async def _pause(self) -> None:
        if self.event_delay:
            await asyncio.sleep(self.event_delay)
