"""LLM provider types: models, usage accounting and per-call options."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from ..abort import AbortSignal


class WireModel(BaseModel):
    """Base for serializable value types: camelCase on the wire, immutable."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: str | bytes):
        return cls.model_validate_json(raw)


class StopReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_USE = "toolUse"
    ERROR = "error"
    ABORTED = "aborted"


class DoneReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_USE = "toolUse"

    def as_stop_reason(self) -> StopReason:
        return StopReason(self.value)


class ErrorReason(str, Enum):
    ERROR = "error"
    ABORTED = "aborted"

    def as_stop_reason(self) -> StopReason:
        return StopReason(self.value)


class ThinkingLevel(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"


class Cost(WireModel):
    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0
    total: float = 0.0

    def __add__(self, other: Cost) -> Cost:
        return Cost(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
            total=self.total + other.total,
        )


class Usage(WireModel):
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total_tokens: int = 0
    cost: Cost = Field(default_factory=Cost)

    def __add__(self, other: Usage) -> Usage:
        return Usage(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_read=self.cache_read + other.cache_read,
            cache_write=self.cache_write + other.cache_write,
            total_tokens=self.total_tokens + other.total_tokens,
            cost=self.cost + other.cost,
        )

    @classmethod
    def from_counts(cls, input: int = 0, output: int = 0, cache_read: int = 0, cache_write: int = 0) -> Usage:
        return cls(
            input=input,
            output=output,
            cache_read=cache_read,
            cache_write=cache_write,
            total_tokens=input + output + cache_read + cache_write,
        )


class ModelCost(WireModel):
    """Prices in dollars per million tokens."""

    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0


class Model(WireModel):
    id: str
    name: str = ""
    api: str
    provider: str
    base_url: str = ""
    reasoning: bool = False
    input: list[str] = Field(default_factory=lambda: ["text"])
    cost: ModelCost = Field(default_factory=ModelCost)
    context_window: int = 128_000
    max_tokens: int = 4096

    @property
    def key(self) -> tuple[str, str]:
        return (self.provider, self.id)


def calculate_cost(model: Model, usage: Usage) -> Usage:
    """Return ``usage`` with its monetary breakdown filled from the model's rates."""
    rates = model.cost
    cost = Cost(
        input=rates.input * usage.input / 1_000_000,
        output=rates.output * usage.output / 1_000_000,
        cache_read=rates.cache_read * usage.cache_read / 1_000_000,
        cache_write=rates.cache_write * usage.cache_write / 1_000_000,
    )
    cost = cost.model_copy(update={"total": cost.input + cost.output + cost.cache_read + cost.cache_write})
    return usage.model_copy(update={"cost": cost})


@dataclass
class StreamOptions:
    temperature: float | None = None
    max_tokens: int | None = None
    api_key: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    transport_retry_count: int | None = None
    signal: AbortSignal | None = None


@dataclass
class SimpleStreamOptions(StreamOptions):
    reasoning: ThinkingLevel | None = None
