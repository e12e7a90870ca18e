"""Event channels: ordered streams and the publish/subscribe bus."""

from .bus import EventBus
from .stream import AgentEventStream, AssistantMessageEventStream, EventStream

__all__ = ["AgentEventStream", "AssistantMessageEventStream", "EventBus", "EventStream"]
