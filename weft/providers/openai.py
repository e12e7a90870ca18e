"""OpenAI-compatible chat-completions provider."""

from __future__ import annotations

import json
import os
from collections.abc import AsyncGenerator
from typing import Any, Callable

import openai
from openai import AsyncOpenAI

from ..errors import (
    ProviderAuthMissingError,
    ProviderHttpError,
    ProviderProtocolError,
    ProviderTransportError,
    WeftError,
)
from ..types import (
    AssistantMessage,
    AssistantMessageEvent,
    Context,
    DoneReason,
    ImageContent,
    Model,
    StreamOptions,
    Tool,
    ToolResultMessage,
    Usage,
    UserMessage,
)
from .base import AssistantMessageBuilder, BaseApiProvider, classify_builtin_error

OPENAI_COMPLETIONS_API = "openai-completions"

_FINISH_REASONS = {
    "stop": DoneReason.STOP,
    "length": DoneReason.LENGTH,
    "tool_calls": DoneReason.TOOL_USE,
    "function_call": DoneReason.TOOL_USE,
}


def resolve_api_key(provider: str, explicit: str | None, fallback_env: str) -> str:
    if explicit:
        return explicit
    candidates = [f"{provider.upper().replace('-', '_')}_API_KEY", fallback_env]
    for name in candidates:
        value = os.environ.get(name, "").strip()
        if value:
            return value
    raise ProviderAuthMissingError(
        f"No API key for provider {provider}",
        details={"provider": provider, "env": candidates},
    )


def _user_content(m: UserMessage) -> Any:
    if isinstance(m.content, str):
        return m.content
    parts: list[dict] = []
    for block in m.content:
        if isinstance(block, ImageContent):
            parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{block.mime_type};base64,{block.data}"},
            })
        else:
            parts.append({"type": "text", "text": block.text})
    return parts


def _arguments_json(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments)


def _msg_to_dict(m) -> dict | None:
    if isinstance(m, UserMessage):
        return {"role": "user", "content": _user_content(m)}
    if isinstance(m, ToolResultMessage):
        text = m.text
        if not text and any(isinstance(b, ImageContent) for b in m.content):
            text = "(image result omitted)"
        return {"role": "tool", "tool_call_id": m.tool_call_id, "content": text}
    if not isinstance(m, AssistantMessage):
        raise ProviderProtocolError(
            f"Unsupported message role for OpenAI: {getattr(m, 'role', type(m).__name__)}",
            details={"role": getattr(m, "role", None)},
        )
    d: dict = {"role": "assistant", "content": m.text or None}
    if m.tool_calls:
        d["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {"name": tc.name, "arguments": _arguments_json(tc.arguments)},
            }
            for tc in m.tool_calls
        ]
    if d["content"] is None and "tool_calls" not in d:
        return None
    return d


def convert_messages(context: Context) -> list[dict]:
    messages: list[dict] = []
    if context.system_prompt:
        messages.append({"role": "system", "content": context.system_prompt})
    for m in context.messages:
        d = _msg_to_dict(m)
        if d is not None:
            messages.append(d)
    return messages


def _tools_to_dicts(tools: list[Tool]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
            },
        }
        for t in tools
    ]


def _usage(raw: Any) -> Usage:
    prompt = getattr(raw, "prompt_tokens", 0) or 0
    completion = getattr(raw, "completion_tokens", 0) or 0
    details = getattr(raw, "prompt_tokens_details", None)
    cached = (getattr(details, "cached_tokens", 0) or 0) if details is not None else 0
    return Usage.from_counts(input=prompt - cached, output=completion, cache_read=cached)


ClientFactory = Callable[..., Any]


class OpenAICompletionsProvider(BaseApiProvider):
    api = OPENAI_COMPLETIONS_API

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or AsyncOpenAI

    def _client(self, model: Model, options: StreamOptions):
        api_key = resolve_api_key(model.provider, options.api_key, "OPENAI_API_KEY")
        return self._client_factory(
            api_key=api_key,
            base_url=model.base_url or None,
            default_headers=options.headers or None,
            max_retries=0,
        )

    async def _do_stream(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        builder: AssistantMessageBuilder,
    ) -> AsyncGenerator[AssistantMessageEvent, None]:
        client = self._client(model, options)
        kwargs: dict = {
            "model": model.id,
            "messages": convert_messages(context),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if context.tools:
            kwargs["tools"] = _tools_to_dicts(context.tools)
        resp = await client.chat.completions.create(**kwargs)
        yield builder.start()

        finish: str | None = None
        async for chunk in resp:
            raw_usage = getattr(chunk, "usage", None)
            if raw_usage:
                yield builder.set_usage(_usage(raw_usage))
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            if delta is not None:
                reasoning = getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None)
                if reasoning:
                    for event in builder.thinking(reasoning):
                        yield event
                if delta.content:
                    for event in builder.text(delta.content):
                        yield event
                for tc in delta.tool_calls or []:
                    idx = tc.index
                    name = tc.function.name if tc.function else None
                    if not builder.has_tool_call(idx):
                        for event in builder.tool_call_start(idx, tc.id or "", name or ""):
                            yield event
                    else:
                        builder.tool_call_update(idx, id=tc.id, name=name)
                    if tc.function and tc.function.arguments:
                        for event in builder.tool_call_delta(idx, tc.function.arguments):
                            yield event
            if choice.finish_reason:
                finish = choice.finish_reason

        if finish is None:
            raise ProviderProtocolError("OpenAI stream ended without finish_reason")
        reason = _FINISH_REASONS.get(finish)
        if reason is None:
            raise ProviderProtocolError(
                f"OpenAI stream finished with {finish}", details={"finishReason": finish}
            )
        for event in builder.finish(reason):
            yield event

    def classify_error(self, exc: BaseException) -> WeftError:
        if isinstance(exc, WeftError):
            return exc
        if isinstance(exc, openai.APIConnectionError):
            return ProviderTransportError(f"OpenAI transport error: {exc}", cause=exc)
        if isinstance(exc, openai.APIStatusError):
            return ProviderHttpError(
                f"OpenAI HTTP {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
                cause=exc,
            )
        if isinstance(exc, openai.APIResponseValidationError):
            return ProviderProtocolError(f"OpenAI response invalid: {exc}", cause=exc)
        return classify_builtin_error(exc)
