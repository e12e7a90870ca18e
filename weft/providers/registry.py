"""Provider registry keyed by api identifier, with bulk removal by source id."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from .base import ApiProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegisteredProvider:
    provider: ApiProvider
    source_id: str | None = None


@dataclass(frozen=True)
class _Snapshot:
    providers: Mapping[str, RegisteredProvider]
    sources: Mapping[str, frozenset[str]]


_EMPTY = _Snapshot(MappingProxyType({}), MappingProxyType({}))


class ApiRegistry:
    """Copy-on-write registry: writers serialize on a lock, readers never block.

    Each write publishes a fresh immutable snapshot, so a lookup sees either the
    state before or after a write, never a partial one.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = _EMPTY

    def register(self, provider: ApiProvider, source_id: str | None = None) -> None:
        api = provider.api
        with self._lock:
            providers = dict(self._state.providers)
            sources = {k: set(v) for k, v in self._state.sources.items()}
            previous = providers.get(api)
            if previous is not None and previous.source_id is not None:
                _discard(sources, previous.source_id, api)
            providers[api] = RegisteredProvider(provider, source_id)
            if source_id is not None:
                sources.setdefault(source_id, set()).add(api)
            self._publish(providers, sources)
        logger.debug("Registered provider %s (source=%s)", api, source_id)

    def replace_all(self, providers: list[ApiProvider], source_id: str | None = None) -> None:
        """Swap the whole mapping for ``providers`` in a single write."""
        entries = {p.api: RegisteredProvider(p, source_id) for p in providers}
        sources = {source_id: set(entries)} if source_id is not None else {}
        with self._lock:
            self._publish(entries, sources)
        logger.debug("Replaced registry with %d provider(s) (source=%s)", len(entries), source_id)

    def unregister(self, api: str) -> bool:
        with self._lock:
            providers = dict(self._state.providers)
            entry = providers.pop(api, None)
            if entry is None:
                return False
            sources = {k: set(v) for k, v in self._state.sources.items()}
            if entry.source_id is not None:
                _discard(sources, entry.source_id, api)
            self._publish(providers, sources)
        return True

    def unregister_all(self, source_id: str) -> list[str]:
        """Remove every provider registered under ``source_id``; returns the removed apis."""
        with self._lock:
            apis = self._state.sources.get(source_id)
            if not apis:
                return []
            providers = {k: v for k, v in self._state.providers.items() if k not in apis}
            sources = {k: set(v) for k, v in self._state.sources.items() if k != source_id}
            self._publish(providers, sources)
        logger.debug("Unregistered %d provider(s) from source %s", len(apis), source_id)
        return sorted(apis)

    def get(self, api: str) -> ApiProvider | None:
        entry = self._state.providers.get(api)
        return entry.provider if entry is not None else None

    def get_entry(self, api: str) -> RegisteredProvider | None:
        return self._state.providers.get(api)

    def get_all(self) -> list[ApiProvider]:
        return [entry.provider for entry in self._state.providers.values()]

    def apis(self) -> list[str]:
        return list(self._state.providers)

    def sources(self) -> dict[str, list[str]]:
        return {k: sorted(v) for k, v in self._state.sources.items()}

    def clear(self) -> None:
        with self._lock:
            self._state = _EMPTY

    def __contains__(self, api: str) -> bool:
        return api in self._state.providers

    def __len__(self) -> int:
        return len(self._state.providers)

    def _publish(self, providers: dict[str, RegisteredProvider], sources: dict[str, set[str]]) -> None:
        self._state = _Snapshot(
            MappingProxyType(providers),
            MappingProxyType({k: frozenset(v) for k, v in sources.items() if v}),
        )


def _discard(sources: dict[str, set[str]], source_id: str, api: str) -> None:
    apis = sources.get(source_id)
    if apis is None:
        return
    apis.discard(api)
    if not apis:
        del sources[source_id]


BUILTIN_SOURCE_ID = "weft-builtins"

_default_registry = ApiRegistry()
_builtins_lock = threading.Lock()
_builtins_registered = False


def _builtin_providers() -> list[ApiProvider]:
    from .anthropic import AnthropicMessagesProvider
    from .openai import OpenAICompletionsProvider

    return [OpenAICompletionsProvider(), AnthropicMessagesProvider()]


def register_builtin_api_providers(registry: ApiRegistry | None = None) -> None:
    registry = registry or _default_registry
    for provider in _builtin_providers():
        registry.register(provider, BUILTIN_SOURCE_ID)


def reset_api_providers(registry: ApiRegistry | None = None) -> None:
    """Clear the registry and re-register the builtins; repeatable."""
    registry = registry or _default_registry
    registry.replace_all(_builtin_providers(), BUILTIN_SOURCE_ID)


def get_default_registry() -> ApiRegistry:
    global _builtins_registered
    if not _builtins_registered:
        with _builtins_lock:
            if not _builtins_registered:
                register_builtin_api_providers(_default_registry)
                _builtins_registered = True
    return _default_registry
