"""
Tests for the provider registry
"""

import pytest

from weft.errors import ProviderProtocolError
from weft.providers import (
    BUILTIN_SOURCE_ID,
    ApiRegistry,
    ScriptedProvider,
    register_builtin_api_providers,
    reset_api_providers,
    resolve_provider,
)
from weft.providers.anthropic import ANTHROPIC_MESSAGES_API
from weft.providers.openai import OPENAI_COMPLETIONS_API
from weft.types import Model


class _RecordingRegistry(ApiRegistry):
    """Registry that keeps every published snapshot."""

    def __init__(self):
        object.__setattr__(self, "history", [])
        super().__init__()

    def __setattr__(self, name, value):
        if name == "_state":
            self.history.append(value)
        super().__setattr__(name, value)


class TestApiRegistry:
    """Test registration, lookup and bulk removal."""

    def test_register_and_get(self):
        registry = ApiRegistry()
        provider = ScriptedProvider(api="a")
        registry.register(provider)
        assert registry.get("a") is provider
        assert "a" in registry
        assert len(registry) == 1
        assert registry.get("missing") is None

    def test_re_register_replaces(self):
        registry = ApiRegistry()
        first, second = ScriptedProvider(api="a"), ScriptedProvider(api="a")
        registry.register(first, source_id="one")
        registry.register(second, source_id="two")
        assert registry.get("a") is second
        assert registry.sources() == {"two": ["a"]}

    def test_unregister_all_by_source(self):
        registry = ApiRegistry()
        registry.register(ScriptedProvider(api="b"), source_id="plugin")
        registry.register(ScriptedProvider(api="a"), source_id="plugin")
        registry.register(ScriptedProvider(api="c"), source_id="other")

        assert registry.unregister_all("plugin") == ["a", "b"]
        assert registry.apis() == ["c"]
        assert registry.unregister_all("plugin") == []

    def test_unregister(self):
        registry = ApiRegistry()
        registry.register(ScriptedProvider(api="a"), source_id="s")
        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        assert registry.sources() == {}

    def test_replace_all(self):
        registry = ApiRegistry()
        registry.register(ScriptedProvider(api="old"), source_id="plugin")
        new = ScriptedProvider(api="new")

        registry.replace_all([new], source_id="fresh")

        assert registry.apis() == ["new"]
        assert registry.get("new") is new
        assert registry.sources() == {"fresh": ["new"]}

    def test_readers_keep_their_snapshot(self):
        registry = ApiRegistry()
        registry.register(ScriptedProvider(api="a"))
        snapshot = registry._state
        registry.register(ScriptedProvider(api="b"))
        assert list(snapshot.providers) == ["a"]
        assert sorted(registry.apis()) == ["a", "b"]


class TestBuiltins:
    """Test builtin provider registration."""

    def test_register_builtins(self):
        registry = ApiRegistry()
        register_builtin_api_providers(registry)
        assert sorted(registry.apis()) == sorted([OPENAI_COMPLETIONS_API, ANTHROPIC_MESSAGES_API])
        assert registry.get_entry(OPENAI_COMPLETIONS_API).source_id == BUILTIN_SOURCE_ID

    def test_reset_publishes_once(self):
        registry = _RecordingRegistry()
        registry.register(ScriptedProvider(api="custom"))
        before = registry._state
        start = len(registry.history)

        reset_api_providers(registry)

        writes = registry.history[start:]
        assert len(writes) == 1
        for state in writes:
            assert state is before or {OPENAI_COMPLETIONS_API, ANTHROPIC_MESSAGES_API} <= set(state.providers)
        assert registry.sources() == {BUILTIN_SOURCE_ID: sorted([ANTHROPIC_MESSAGES_API, OPENAI_COMPLETIONS_API])}

    def test_reset_is_repeatable(self):
        registry = ApiRegistry()
        registry.register(ScriptedProvider(api="custom"))
        reset_api_providers(registry)
        reset_api_providers(registry)
        assert "custom" not in registry
        assert len(registry) == 2


class TestResolveProvider:
    def test_unknown_api(self):
        registry = ApiRegistry()
        registry.register(ScriptedProvider(api="scripted"))
        model = Model(id="m", api="nope", provider="p")
        with pytest.raises(ProviderProtocolError) as exc:
            resolve_provider(model, registry)
        assert exc.value.details == {"api": "nope", "registered": ["scripted"]}
