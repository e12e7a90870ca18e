"""Provider adapters, the provider registry and the retry wrapper."""

from .base import (
    ApiProvider, AssistantMessageBuilder, BaseApiProvider, classify_builtin_error, collect_terminal,
)
from .registry import (
    BUILTIN_SOURCE_ID, ApiRegistry, RegisteredProvider, get_default_registry,
    register_builtin_api_providers, reset_api_providers,
)
from .reliable import ReliableProvider
from .mock import Hang, PartialThenError, ScriptedProvider, text_reply, tool_call_reply
from .stream import complete, complete_simple, resolve_provider, stream, stream_simple

__all__ = [
    "ApiProvider", "AssistantMessageBuilder", "BaseApiProvider", "classify_builtin_error",
    "collect_terminal",
    "BUILTIN_SOURCE_ID", "ApiRegistry", "RegisteredProvider", "get_default_registry",
    "register_builtin_api_providers", "reset_api_providers",
    "ReliableProvider",
    "Hang", "PartialThenError", "ScriptedProvider", "text_reply", "tool_call_reply",
    "complete", "complete_simple", "resolve_provider", "stream", "stream_simple",
]
