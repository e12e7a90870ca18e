"""Structured error hierarchy with a closed set of machine-readable codes."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    TOOL_NOT_FOUND = "tool_not_found"
    TOOL_ARGUMENTS_INVALID = "tool_arguments_invalid"
    TOOL_EXECUTION_FAILED = "tool_execution_failed"
    SCHEMA_INVALID = "schema_invalid"
    PROVIDER_AUTH_MISSING = "provider_auth_missing"
    PROVIDER_HTTP = "provider_http"
    PROVIDER_TRANSPORT = "provider_transport"
    PROVIDER_PROTOCOL = "provider_protocol"


_RETRYABLE_STATUS = frozenset({408, 409, 425, 429})


class WeftError(Exception):
    """Root of every runtime error; carries a code, a message and JSON details."""

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message
        self.details = details or {}
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WeftError:
        code = ErrorCode(data["code"])
        message = data.get("message", "")
        details = data.get("details") or {}
        err_cls = _BY_CODE.get(code, WeftError)
        if err_cls is ProviderHttpError:
            return ProviderHttpError(message, status_code=details.get("status"), details=details)
        if err_cls is WeftError:
            return WeftError(code, message, details)
        return err_cls(message, details=details)

    @classmethod
    def from_json(cls, raw: str) -> WeftError | None:
        """Parse a serialized error; returns None for free-form text."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict) or "code" not in data:
            return None
        try:
            return cls.from_dict(data)
        except ValueError:
            return None

    @classmethod
    def wrap(cls, err: BaseException) -> WeftError:
        if isinstance(err, WeftError):
            return err
        return ProviderProtocolError(str(err) or type(err).__name__, cause=err)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class ToolNotFoundError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.TOOL_NOT_FOUND, message, details, cause)


class ToolArgumentsInvalidError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.TOOL_ARGUMENTS_INVALID, message, details, cause)


class ToolExecutionError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.TOOL_EXECUTION_FAILED, message, details, cause)


class SchemaInvalidError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.SCHEMA_INVALID, message, details, cause)


class ProviderAuthMissingError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.PROVIDER_AUTH_MISSING, message, details, cause)


class ProviderHttpError(WeftError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status", status_code)
        super().__init__(ErrorCode.PROVIDER_HTTP, message, details, cause)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        status = self.status_code
        if status is None:
            return True
        return status in _RETRYABLE_STATUS or status >= 500


class ProviderTransportError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.PROVIDER_TRANSPORT, message, details, cause)

    @property
    def retryable(self) -> bool:
        return True


class ProviderProtocolError(WeftError):
    def __init__(self, message: str, details: dict[str, Any] | None = None, cause: BaseException | None = None) -> None:
        super().__init__(ErrorCode.PROVIDER_PROTOCOL, message, details, cause)


_BY_CODE: dict[ErrorCode, type[WeftError]] = {
    ErrorCode.TOOL_NOT_FOUND: ToolNotFoundError,
    ErrorCode.TOOL_ARGUMENTS_INVALID: ToolArgumentsInvalidError,
    ErrorCode.TOOL_EXECUTION_FAILED: ToolExecutionError,
    ErrorCode.SCHEMA_INVALID: SchemaInvalidError,
    ErrorCode.PROVIDER_AUTH_MISSING: ProviderAuthMissingError,
    ErrorCode.PROVIDER_HTTP: ProviderHttpError,
    ErrorCode.PROVIDER_TRANSPORT: ProviderTransportError,
    ErrorCode.PROVIDER_PROTOCOL: ProviderProtocolError,
}


class AgentLoopError(ValueError):
    """Caller misuse of the agent loop (bad continuation, concurrent prompt)."""
