"""
Tests for the OpenAI chat-completions adapter

The SDK client is replaced through ``client_factory``; no network.
"""

from types import SimpleNamespace

import httpx
import openai
import pytest

from weft.errors import ErrorCode, ProviderAuthMissingError, ProviderProtocolError, WeftError
from weft.providers.openai import OpenAICompletionsProvider, convert_messages, resolve_api_key
from weft.types import (
    AssistantMessage,
    Context,
    Model,
    StopReason,
    StreamOptions,
    TextContent,
    Tool,
    ToolCall,
    ToolResultMessage,
    user_message,
)

MODEL = Model(id="gpt-test", api="openai-completions", provider="openai")
OPTIONS = StreamOptions(api_key="sk-test")


def _chunk(content=None, tool_calls=None, finish_reason=None, reasoning=None, usage=None, empty=False):
    choices = [] if empty else [SimpleNamespace(
        delta=SimpleNamespace(content=content, tool_calls=tool_calls, reasoning_content=reasoning),
        finish_reason=finish_reason,
    )]
    return SimpleNamespace(choices=choices, usage=usage)


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


async def _aiter(items):
    for item in items:
        yield item


class FakeClient:
    def __init__(self, chunks=None, error=None):
        self.chunks = chunks or []
        self.error = error
        self.init_kwargs = None
        self.create_kwargs = None
        self.chat = SimpleNamespace(completions=self)

    def __call__(self, **kwargs):
        self.init_kwargs = kwargs
        return self

    async def create(self, **kwargs):
        self.create_kwargs = kwargs
        if self.error is not None:
            raise self.error
        return _aiter(self.chunks)


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://api.openai.test/v1/chat/completions")


class TestStreaming:
    """Test chunk translation into protocol events."""

    @pytest.mark.asyncio
    async def test_text_and_usage(self):
        client = FakeClient([
            _chunk(reasoning="thinking..."),
            _chunk(content="Hel"),
            _chunk(content="lo", finish_reason="stop"),
            _chunk(empty=True, usage=SimpleNamespace(
                prompt_tokens=12, completion_tokens=4, prompt_tokens_details=SimpleNamespace(cached_tokens=2),
            )),
        ])
        provider = OpenAICompletionsProvider(client_factory=client)
        events = [e async for e in provider.stream(MODEL, Context(messages=[user_message("hi")]), OPTIONS)]

        final = events[-1].message
        assert events[-1].type == "done"
        assert final.text == "Hello"
        assert final.content[0].thinking == "thinking..."
        assert final.stop_reason == StopReason.STOP
        assert (final.usage.input, final.usage.output, final.usage.cache_read) == (10, 4, 2)
        assert client.init_kwargs["api_key"] == "sk-test"
        assert client.init_kwargs["max_retries"] == 0
        assert client.create_kwargs["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_streamed_tool_calls(self):
        client = FakeClient([
            _chunk(tool_calls=[_tool_delta(0, id="call_1", name="echo", arguments='{"te')]),
            _chunk(tool_calls=[_tool_delta(0, arguments='xt": "hi"}')]),
            _chunk(finish_reason="tool_calls"),
        ])
        provider = OpenAICompletionsProvider(client_factory=client)
        context = Context(
            messages=[user_message("echo hi")],
            tools=[Tool(name="echo", description="Echo", parameters={"type": "object"})],
        )
        result = await provider.stream(MODEL, context, OPTIONS).result()

        assert result.stop_reason == StopReason.TOOL_USE
        assert result.tool_calls == [ToolCall(id="call_1", name="echo", arguments={"text": "hi"})]
        assert client.create_kwargs["tools"][0]["function"]["name"] == "echo"

    @pytest.mark.asyncio
    async def test_missing_finish_reason_is_protocol_error(self):
        provider = OpenAICompletionsProvider(client_factory=FakeClient([_chunk(content="cut")]))
        result = await provider.stream(MODEL, Context(messages=[user_message("hi")]), OPTIONS).result()
        assert result.stop_reason == StopReason.ERROR
        assert result.text == "cut"
        assert WeftError.from_json(result.error_message).code == ErrorCode.PROVIDER_PROTOCOL

    @pytest.mark.asyncio
    async def test_http_error_is_classified(self):
        error = openai.APIStatusError(
            "rate limited", response=httpx.Response(429, request=_request()), body=None,
        )
        provider = OpenAICompletionsProvider(client_factory=FakeClient(error=error))
        result = await provider.stream(MODEL, Context(messages=[user_message("hi")]), OPTIONS).result()
        err = WeftError.from_json(result.error_message)
        assert err.code == ErrorCode.PROVIDER_HTTP
        assert err.status_code == 429
        assert err.retryable


class TestClassifyError:
    def test_connection_error_is_transport(self):
        err = OpenAICompletionsProvider().classify_error(openai.APIConnectionError(request=_request()))
        assert err.code == ErrorCode.PROVIDER_TRANSPORT

    def test_other_errors_are_protocol(self):
        assert OpenAICompletionsProvider().classify_error(ValueError("bad")).code == ErrorCode.PROVIDER_PROTOCOL


class TestApiKey:
    def test_explicit_key_wins(self):
        assert resolve_api_key("openai", "sk-x", "OPENAI_API_KEY") == "sk-x"

    def test_provider_env_var(self, monkeypatch):
        monkeypatch.setenv("GROQ_API_KEY", "gsk")
        assert resolve_api_key("groq", None, "OPENAI_API_KEY") == "gsk"

    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ProviderAuthMissingError):
            resolve_api_key("openai", None, "OPENAI_API_KEY")

    @pytest.mark.asyncio
    async def test_missing_key_surfaces_as_error_event(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        provider = OpenAICompletionsProvider(client_factory=FakeClient())
        result = await provider.stream(MODEL, Context(messages=[user_message("hi")])).result()
        assert WeftError.from_json(result.error_message).code == ErrorCode.PROVIDER_AUTH_MISSING


class TestConvertMessages:
    def test_roles(self):
        context = Context(
            system_prompt="sys",
            messages=[
                user_message("hi"),
                AssistantMessage(content=[ToolCall(id="c1", name="echo", arguments={"text": "hi"})]),
                ToolResultMessage(tool_call_id="c1", tool_name="echo", content=[TextContent(text="hi")]),
            ],
        )
        out = convert_messages(context)
        assert [m["role"] for m in out] == ["system", "user", "assistant", "tool"]
        assert out[2]["tool_calls"][0]["function"]["arguments"] == '{"text": "hi"}'
        assert out[3] == {"role": "tool", "tool_call_id": "c1", "content": "hi"}

    def test_empty_assistant_is_dropped(self):
        out = convert_messages(Context(messages=[AssistantMessage(content=[])]))
        assert out == []

    def test_malformed_arguments_are_sent_back_verbatim(self):
        call = ToolCall(id="c1", name="echo", arguments='{"text": "h')
        out = convert_messages(Context(messages=[AssistantMessage(content=[call])]))
        assert out[0]["tool_calls"][0]["function"]["arguments"] == '{"text": "h'

    def test_unknown_role_raises(self):
        context = Context.model_construct(system_prompt=None, messages=[SimpleNamespace(role="system")])
        with pytest.raises(ProviderProtocolError) as exc:
            convert_messages(context)
        assert exc.value.details == {"role": "system"}
