"""Anthropic Claude messages provider."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any, Callable

import anthropic
from anthropic import AsyncAnthropic

from ..errors import ProviderHttpError, ProviderProtocolError, ProviderTransportError, WeftError
from ..types import (
    AssistantMessage,
    AssistantMessageEvent,
    Context,
    DoneReason,
    ImageContent,
    Model,
    SimpleStreamOptions,
    StreamOptions,
    TextContent,
    ThinkingContent,
    ThinkingLevel,
    Tool,
    ToolCall,
    ToolResultMessage,
    Usage,
    UserMessage,
)
from .base import AssistantMessageBuilder, BaseApiProvider, classify_builtin_error
from .openai import resolve_api_key

ANTHROPIC_MESSAGES_API = "anthropic-messages"

_STOP_REASONS = {
    "end_turn": DoneReason.STOP,
    "stop_sequence": DoneReason.STOP,
    "pause_turn": DoneReason.STOP,
    "max_tokens": DoneReason.LENGTH,
    "tool_use": DoneReason.TOOL_USE,
}

THINKING_BUDGETS = {
    ThinkingLevel.MINIMAL: 1024,
    ThinkingLevel.LOW: 2048,
    ThinkingLevel.MEDIUM: 8192,
    ThinkingLevel.HIGH: 16384,
    ThinkingLevel.XHIGH: 32000,
}


def _image_block(block: ImageContent) -> dict:
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": block.mime_type, "data": block.data},
    }


def _blocks(content: list) -> list[dict]:
    out: list[dict] = []
    for block in content:
        if isinstance(block, ImageContent):
            out.append(_image_block(block))
        elif isinstance(block, TextContent) and block.text:
            out.append({"type": "text", "text": block.text})
    return out


def _assistant_to_dict(m: AssistantMessage) -> dict | None:
    blocks: list[dict] = []
    for block in m.content:
        if isinstance(block, TextContent):
            if block.text:
                blocks.append({"type": "text", "text": block.text})
        elif isinstance(block, ThinkingContent):
            # unsigned thinking cannot be replayed
            if block.thinking_signature:
                blocks.append({
                    "type": "thinking",
                    "thinking": block.thinking,
                    "signature": block.thinking_signature,
                })
        elif isinstance(block, ToolCall):
            args = block.arguments if isinstance(block.arguments, dict) else {}
            blocks.append({"type": "tool_use", "id": block.id, "name": block.name, "input": args})
    if not blocks:
        return None
    return {"role": "assistant", "content": blocks}


def convert_messages(context: Context) -> list[dict]:
    """Context messages to Anthropic turns; consecutive tool results share one user turn."""
    messages: list[dict] = []
    for m in context.messages:
        if isinstance(m, UserMessage):
            content = m.content if isinstance(m.content, str) else _blocks(m.content)
            messages.append({"role": "user", "content": content})
        elif isinstance(m, ToolResultMessage):
            result = {
                "type": "tool_result",
                "tool_use_id": m.tool_call_id,
                "content": _blocks(m.content) or [{"type": "text", "text": "(empty)"}],
                "is_error": m.is_error,
            }
            last = messages[-1] if messages else None
            if last and last["role"] == "user" and isinstance(last["content"], list) and \
                    all(b.get("type") == "tool_result" for b in last["content"]):
                last["content"].append(result)
            else:
                messages.append({"role": "user", "content": [result]})
        else:
            d = _assistant_to_dict(m)
            if d is not None:
                messages.append(d)
    return messages


def _tools_to_dicts(tools: list[Tool]) -> list[dict]:
    return [
        {"name": t.name, "description": t.description, "input_schema": t.parameters}
        for t in tools
    ]


ClientFactory = Callable[..., Any]


class AnthropicMessagesProvider(BaseApiProvider):
    api = ANTHROPIC_MESSAGES_API

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or AsyncAnthropic

    def _client(self, model: Model, options: StreamOptions):
        api_key = resolve_api_key(model.provider, options.api_key, "ANTHROPIC_API_KEY")
        return self._client_factory(
            api_key=api_key,
            base_url=model.base_url or None,
            default_headers=options.headers or None,
            max_retries=0,
        )

    def _request(self, model: Model, context: Context, options: StreamOptions) -> dict:
        max_tokens = options.max_tokens or model.max_tokens
        kwargs: dict = {
            "model": model.id,
            "max_tokens": max_tokens,
            "messages": convert_messages(context),
        }
        if context.system_prompt:
            kwargs["system"] = context.system_prompt
        if context.tools:
            kwargs["tools"] = _tools_to_dicts(context.tools)
        level = options.reasoning if isinstance(options, SimpleStreamOptions) else None
        if level is not None and model.reasoning:
            budget = THINKING_BUDGETS[ThinkingLevel(level)]
            kwargs["thinking"] = {"type": "enabled", "budget_tokens": budget}
            kwargs["max_tokens"] = max(max_tokens, budget + 1024)
        elif options.temperature is not None:
            kwargs["temperature"] = options.temperature
        return kwargs

    async def _do_stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        builder: AssistantMessageBuilder,
    ) -> AsyncGenerator[AssistantMessageEvent, None]:
        client = self._client(model, options)
        kwargs = self._request(model, context, options)
        input_usage: dict[str, int] = {"input": 0, "cache_read": 0, "cache_write": 0}
        stop_reason: str | None = None
        async with client.messages.stream(**kwargs) as stream:
            yield builder.start()
            async for event in stream:
                etype = getattr(event, "type", "")
                if etype == "message_start":
                    usage = event.message.usage
                    input_usage = {
                        "input": getattr(usage, "input_tokens", 0) or 0,
                        "cache_read": getattr(usage, "cache_read_input_tokens", 0) or 0,
                        "cache_write": getattr(usage, "cache_creation_input_tokens", 0) or 0,
                    }
                    yield builder.set_usage(Usage.from_counts(**input_usage))
                elif etype == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        for ev in builder.tool_call_start(event.index, block.id, block.name):
                            yield ev
                    elif block.type == "thinking":
                        for ev in builder.thinking(""):
                            yield ev
                    elif block.type == "text":
                        for ev in builder.text(getattr(block, "text", "") or ""):
                            yield ev
                elif etype == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        for ev in builder.text(delta.text):
                            yield ev
                    elif delta.type == "thinking_delta":
                        for ev in builder.thinking(delta.thinking):
                            yield ev
                    elif delta.type == "signature_delta":
                        for ev in builder.thinking("", signature=delta.signature):
                            yield ev
                    elif delta.type == "input_json_delta" and builder.has_tool_call(event.index):
                        for ev in builder.tool_call_delta(event.index, delta.partial_json):
                            yield ev
                elif etype == "content_block_stop":
                    for ev in builder.close_open():
                        yield ev
                elif etype == "message_delta":
                    stop_reason = getattr(event.delta, "stop_reason", None) or stop_reason
                    output = getattr(getattr(event, "usage", None), "output_tokens", 0) or 0
                    yield builder.set_usage(Usage.from_counts(output=output, **input_usage))

        if stop_reason is None:
            raise ProviderProtocolError("Anthropic stream ended without stop_reason")
        reason = _STOP_REASONS.get(stop_reason)
        if reason is None:
            raise ProviderProtocolError(
                f"Anthropic stream stopped with {stop_reason}", details={"stopReason": stop_reason}
            )
        for ev in builder.finish(reason):
            yield ev

    def classify_error(self, exc: BaseException) -> WeftError:
        if isinstance(exc, WeftError):
            return exc
        if isinstance(exc, anthropic.APIConnectionError):
            return ProviderTransportError(f"Anthropic transport error: {exc}", cause=exc)
        if isinstance(exc, anthropic.APIStatusError):
            return ProviderHttpError(
                f"Anthropic HTTP {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                cause=exc,
            )
        if isinstance(exc, anthropic.APIResponseValidationError):
            return ProviderProtocolError(f"Anthropic response invalid: {exc}", cause=exc)
        return classify_builtin_error(exc)
