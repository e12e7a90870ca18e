"""One-shot entry points: resolve the provider for a model and stream through the retry wrapper."""

from __future__ import annotations

from ..errors import ProviderProtocolError
from ..events.stream import AssistantMessageEventStream
from ..types import AssistantMessage, Context, Model, SimpleStreamOptions, StreamOptions
from .base import ApiProvider
from .registry import ApiRegistry, get_default_registry
from .reliable import ReliableProvider


def resolve_provider(model: Model, registry: ApiRegistry | None = None) -> ApiProvider:
    registry = registry or get_default_registry()
    provider = registry.get(model.api)
    if provider is None:
        raise ProviderProtocolError(
            f"No provider registered for api {model.api}",
            details={"api": model.api, "registered": registry.apis()},
        )
    return provider


def stream(
    model: Model,
    context: Context,
    options: StreamOptions | None = None,
    registry: ApiRegistry | None = None,
) -> AssistantMessageEventStream:
    return ReliableProvider(resolve_provider(model, registry)).stream(model, context, options)


def stream_simple(
    model: Model,
    context: Context,
    options: SimpleStreamOptions | None = None,
    registry: ApiRegistry | None = None,
) -> AssistantMessageEventStream:
    return ReliableProvider(resolve_provider(model, registry)).stream_simple(model, context, options)


async def complete(
    model: Model,
    context: Context,
    options: StreamOptions | None = None,
    registry: ApiRegistry | None = None,
) -> AssistantMessage:
    return await stream(model, context, options, registry).result()


async def complete_simple(
    model: Model,
    context: Context,
    options: SimpleStreamOptions | None = None,
    registry: ApiRegistry | None = None,
) -> AssistantMessage:
    return await stream_simple(model, context, options, registry).result()
