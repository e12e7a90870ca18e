"""Cooperative cancellation: one-way, idempotent abort signals."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class AbortSignal:
    """Read side of an :class:`AbortController`. Observed, never forced."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._listeners: list[Callable[[], None]] = []
        self.reason: Any = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def add_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once on abort; returns a function that detaches it."""
        if self.aborted:
            callback()
            return lambda: None
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _trigger(self, reason: Any) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        listeners, self._listeners = self._listeners, []
        for cb in listeners:
            try:
                cb()
            except Exception:
                logger.exception("Abort listener failed")


class AbortController:
    def __init__(self, parent: AbortSignal | None = None) -> None:
        self.signal = AbortSignal()
        if parent is not None:
            parent.add_listener(lambda: self.abort(parent.reason))

    def abort(self, reason: Any = None) -> None:
        self.signal._trigger(reason if reason is not None else "aborted")

    @property
    def aborted(self) -> bool:
        return self.signal.aborted


async def sleep_or_abort(seconds: float, signal: AbortSignal | None) -> bool:
    """Sleep for ``seconds``; returns True if the signal fired first."""
    if signal is None:
        await asyncio.sleep(seconds)
        return False
    if signal.aborted:
        return True
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({waiter}, timeout=seconds)
    finally:
        if not waiter.done():
            waiter.cancel()
    return signal.aborted
