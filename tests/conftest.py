"""
Pytest Configuration and Fixtures
"""

import pytest
from pydantic import BaseModel

from weft.agent import AgentContext, AgentLoopConfig, AgentRetryConfig
from weft.config import RuntimeSettings, set_settings
from weft.providers import ApiRegistry, ScriptedProvider
from weft.tools import define_tool
from weft.types import Model


class EchoParams(BaseModel):
    text: str


@pytest.fixture(autouse=True)
def fast_settings():
    """Short backoffs and poll intervals so retry and queue tests stay fast."""
    set_settings(RuntimeSettings(base_backoff_ms=1, max_backoff_ms=5, queue_poll_interval=0.01))
    yield
    set_settings(None)


@pytest.fixture
def model() -> Model:
    return Model(id="test-model", name="Test Model", api="scripted", provider="test")


@pytest.fixture
def fallback_model() -> Model:
    return Model(id="backup-model", name="Backup Model", api="scripted-backup", provider="backup")


@pytest.fixture
def echo_tool():
    async def execute(tool_call_id, params, signal):
        return params.text

    return define_tool("echo", "Echo the given text", EchoParams, execute)


def _make_registry(*providers) -> ApiRegistry:
    registry = ApiRegistry()
    for provider in providers:
        registry.register(provider, source_id="tests")
    return registry


def _make_config(model: Model, provider: ScriptedProvider, **overrides) -> AgentLoopConfig:
    """Loop config wired to a private registry holding ``provider``."""
    registry = overrides.pop("registry", None) or _make_registry(provider)
    overrides.setdefault("retry", AgentRetryConfig(max_attempts=3, initial_backoff_ms=1, max_backoff_ms=5))
    overrides.setdefault("queue_poll_interval", 0.01)
    return AgentLoopConfig(model=model, registry=registry, **overrides)


def _make_context(*tools, system_prompt: str = "You are a test assistant.") -> AgentContext:
    return AgentContext(system_prompt=system_prompt, tools=list(tools))


@pytest.fixture
def make_registry():
    return _make_registry


@pytest.fixture
def make_config():
    return _make_config


@pytest.fixture
def make_context():
    return _make_context
