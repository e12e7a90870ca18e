"""Typed event bus: publish/subscribe with parent-child propagation and pattern matching."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from ..agent.types import ParentChildRunEvent

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


class EventBus:
    """Event bus with parent-child propagation and pattern matching (e.g. 'tool_*')."""

    def __init__(self, node_id: str | None = None, parent: EventBus | None = None) -> None:
        self.node_id = node_id
        self._parent = parent
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._patterns: dict[str, list[Handler]] = defaultdict(list)
        self._wildcard: list[Handler] = []

    def create_child(self, node_id: str) -> EventBus:
        return EventBus(node_id=node_id, parent=self)

    def on(self, event_type: str, handler: Handler) -> None:
        if event_type.endswith("*"):
            self.on_pattern(event_type, handler)
            return
        self._handlers[event_type].append(handler)

    def on_pattern(self, pattern: str, handler: Handler) -> None:
        self._patterns[pattern].append(handler)

    def on_all(self, handler: Handler) -> None:
        self._wildcard.append(handler)

    def off(self, event_type: str, handler: Handler) -> None:
        for table in (self._handlers, self._patterns):
            handlers = table.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
        if handler in self._wildcard:
            self._wildcard.remove(handler)

    async def emit(self, event: Any) -> None:
        event_type = getattr(event, "type", "")
        for h in list(self._handlers.get(event_type, [])) + list(self._wildcard):
            try:
                await h(event)
            except Exception:
                logger.exception("Event handler error for %s", event_type)
        # 'tool_*' matches 'tool_execution_start', etc.
        for pat, handlers in list(self._patterns.items()):
            if not event_type.startswith(pat[:-1]):
                continue
            for h in list(handlers):
                try:
                    await h(event)
                except Exception:
                    logger.exception("Pattern handler error for %s", pat)
        if self._parent:
            await self._parent.emit(event)

    async def forward_child_run(self, event: ParentChildRunEvent) -> None:
        """Publish a child-run lifecycle event reported by a dispatcher."""
        logger.debug(
            "child run %s task=%s subagent=%s", event.kind, event.task_id, event.subagent
        )
        await self.emit(event)
