"""
Realtime Module

Server-side push: SSE framing and the event broadcaster.
"""

from .broadcaster import EventBroadcaster, SSEConnection, StoredEvent, STATE_CHANNEL, STATE_UPDATED
from .sse import SSEMessage, parse_sse

__all__ = [
    "EventBroadcaster",
    "SSEConnection",
    "StoredEvent",
    "STATE_CHANNEL",
    "STATE_UPDATED",
    "SSEMessage",
    "parse_sse",
]
