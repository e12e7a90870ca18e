"""
Runtime configuration

Process-wide defaults read from ``WEFT_*`` environment variables.
"""

from __future__ import annotations

import os
import threading

from pydantic import BaseModel, Field

DEFAULT_TRANSPORT_RETRY_COUNT = 5


class RuntimeSettings(BaseModel):
    """Runtime defaults shared by providers and the agent loop."""

    transport_retry_count: int = Field(DEFAULT_TRANSPORT_RETRY_COUNT, ge=0, description="Retries per provider call")
    base_backoff_ms: int = Field(1000, ge=0, description="Base delay of the exponential backoff")
    max_backoff_ms: int = Field(30_000, ge=0, description="Upper bound of a single backoff")
    queue_poll_interval: float = Field(0.05, gt=0, description="Seconds between queue polls")
    log_level: str = Field("INFO", description="Logging level")
    json_logs: bool = Field(False, description="Render logs as JSON")

    @classmethod
    def from_env(cls, prefix: str = "WEFT_", environ: dict[str, str] | None = None) -> RuntimeSettings:
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(f"{prefix}{name.upper()}")
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        return cls.model_validate(values)


_lock = threading.Lock()
_settings: RuntimeSettings | None = None


def get_settings() -> RuntimeSettings:
    global _settings
    if _settings is None:
        with _lock:
            if _settings is None:
                _settings = RuntimeSettings.from_env()
    return _settings


def set_settings(settings: RuntimeSettings | None) -> None:
    """Replace the process settings; ``None`` re-reads the environment on next use."""
    global _settings
    with _lock:
        _settings = settings


def transport_retry_count() -> int:
    return get_settings().transport_retry_count


def set_transport_retry_count(count: int) -> None:
    current = get_settings()
    set_settings(current.model_copy(update={"transport_retry_count": max(0, count)}))


def transport_retry_count_with_override(override: int | None) -> int:
    if override is not None:
        return max(0, override)
    return transport_retry_count()
