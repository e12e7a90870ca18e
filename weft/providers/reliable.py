"""Retry wrapper for providers with at-most-once delivery of forwarded events."""

from __future__ import annotations

import asyncio
from typing import Callable

from ..abort import sleep_or_abort
from ..config import get_settings, transport_retry_count_with_override
from ..errors import ProviderProtocolError, WeftError
from ..events.stream import AssistantMessageEventStream
from ..infra.logging import get_logger
from ..types import (
    AssistantMessage,
    Context,
    ErrorEvent,
    ErrorReason,
    Model,
    StopReason,
    StreamOptions,
    event_message,
    is_terminal,
)
from .base import ApiProvider, AssistantMessageBuilder, classify_builtin_error, collect_terminal

logger = get_logger(__name__)

RetryCallback = Callable[[int, int, int, WeftError], None]


class ReliableProvider:
    """Wraps an :class:`ApiProvider` and retries attempts that failed before producing output.

    Events are forwarded as they arrive. An attempt is retried only when its
    first event is a retryable ``error`` (or opening the stream raised a
    retryable error); after anything has been forwarded a failure is final.
    """

    def __init__(
        self,
        inner: ApiProvider,
        max_retries: int | None = None,
        base_backoff_ms: int | None = None,
        max_backoff_ms: int | None = None,
        on_retry: RetryCallback | None = None,
        backoff: Callable[[int], int] | None = None,
    ) -> None:
        settings = get_settings()
        self._inner = inner
        self._max_retries = max_retries
        self._base_backoff_ms = settings.base_backoff_ms if base_backoff_ms is None else base_backoff_ms
        self._max_backoff_ms = settings.max_backoff_ms if max_backoff_ms is None else max_backoff_ms
        self._on_retry = on_retry
        self._backoff = backoff

    @property
    def api(self) -> str:
        return self._inner.api

    @property
    def inner(self) -> ApiProvider:
        return self._inner

    def retries_for(self, options: StreamOptions | None) -> int:
        override = options.transport_retry_count if options is not None else None
        if override is None:
            override = self._max_retries
        return transport_retry_count_with_override(override)

    def backoff_ms(self, retry_index: int) -> int:
        if self._backoff is not None:
            return self._backoff(retry_index + 1)
        return min(self._base_backoff_ms * (2 ** retry_index), self._max_backoff_ms)

    def stream(
        self, model: Model, context: Context, options: StreamOptions | None = None
    ) -> AssistantMessageEventStream:
        out = AssistantMessageEventStream()
        task = asyncio.get_running_loop().create_task(
            self._run(model, context, options or StreamOptions(), out)
        )
        out.attach(task)
        return out

    def stream_simple(
        self, model: Model, context: Context, options: StreamOptions | None = None
    ) -> AssistantMessageEventStream:
        return collect_terminal(self.stream(model, context, options))

    async def _run(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        out: AssistantMessageEventStream,
    ) -> None:
        max_retries = self.retries_for(options)
        retry_index = 0
        while True:
            err = await self._attempt(model, context, options, out, retry_index < max_retries)
            if err is None:
                return
            delay_ms = self.backoff_ms(retry_index)
            retry_index += 1
            logger.warning(
                "provider_retry_scheduled",
                api=self.api,
                model=model.id,
                attempt=retry_index,
                max_retries=max_retries,
                delay_ms=delay_ms,
                code=err.code.value,
                error=err.message,
            )
            if self._on_retry is not None:
                self._on_retry(retry_index, max_retries, delay_ms, err)
            if await sleep_or_abort(delay_ms / 1000, options.signal):
                out.push(AssistantMessageBuilder(model, self.api).aborted())
                return

    async def _attempt(
        self,
        model: Model,
        context: Context,
        options: StreamOptions,
        out: AssistantMessageEventStream,
        can_retry: bool,
    ) -> WeftError | None:
        """Run one attempt; returns the error to retry on, or None when finished."""
        try:
            inner = self._inner.stream(model, context, options)
        except Exception as exc:
            err = classify_builtin_error(exc)
            if can_retry and err.retryable:
                return err
            out.push(AssistantMessageBuilder(model, self.api).error(err))
            return None

        forwarded = 0
        last: AssistantMessage | None = None
        try:
            async for event in inner:
                if forwarded == 0 and isinstance(event, ErrorEvent) and event.reason == ErrorReason.ERROR:
                    err = WeftError.from_json(event.error.error_message or "")
                    if can_retry and err is not None and err.retryable:
                        inner.close()
                        return err
                out.push(event)
                forwarded += 1
                last = event_message(event) or last
                if is_terminal(event):
                    return None
        except asyncio.CancelledError:
            inner.close()
            out.end()
            raise

        protocol = ProviderProtocolError(
            "Provider stream ended without a terminal event", details={"api": self.api}
        )
        if last is None:
            out.push(AssistantMessageBuilder(model, self.api).error(protocol))
        else:
            out.push(ErrorEvent(
                reason=ErrorReason.ERROR,
                error=last.model_copy(update={
                    "stop_reason": StopReason.ERROR,
                    "error_message": protocol.to_json(),
                }),
            ))
        return None
