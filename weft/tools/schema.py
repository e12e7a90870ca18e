"""Tool schema from pydantic models or raw JSON Schema dicts."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class PydanticSchema:
    """Schema backed by a pydantic model; arguments are parsed into the model."""

    def __init__(self, model: type[BaseModel]) -> None:
        self._model = model

    def parse(self, raw: Any) -> Any:
        if isinstance(raw, str):
            return self._model.model_validate_json(raw)
        return self._model.model_validate(raw)

    def to_json_schema(self) -> dict:
        return self._model.model_json_schema()


class DictSchema:
    """Schema backed by a raw JSON Schema dict; arguments pass through unchanged."""

    def __init__(self, schema: dict[str, Any]) -> None:
        self._schema = schema

    def parse(self, raw: Any) -> Any:
        return raw

    def to_json_schema(self) -> dict:
        return self._schema


def as_schema(parameters: type[BaseModel] | dict[str, Any] | PydanticSchema | DictSchema):
    if isinstance(parameters, (PydanticSchema, DictSchema)):
        return parameters
    if isinstance(parameters, dict):
        return DictSchema(parameters)
    if isinstance(parameters, type) and issubclass(parameters, BaseModel):
        return PydanticSchema(parameters)
    raise TypeError(f"Unsupported tool parameters: {parameters!r}")
