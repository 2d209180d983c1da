"""
LiveState Event Broadcaster

Keeps a short in-process log of published events and fans them out to
connected SSE clients. Events published for a session only reach that
session's connections unless they are broadcast.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from itertools import count
from typing import Any, AsyncIterator, Deque, Dict, Iterable, List, Optional, Set
from uuid import uuid4

from ..core.events import StateUpdated
from .sse import SSEMessage

logger = logging.getLogger(__name__)

STATE_CHANNEL = "state"
STATE_UPDATED = "state.updated"


@dataclass
class StoredEvent:
    """A published event as kept in the replay log."""
    id: int
    channel: str
    event: str
    data: Dict[str, Any]
    session_id: Optional[str] = None
    broadcast: bool = False
    created_at: float = field(default_factory=time.time)

    def to_message(self) -> SSEMessage:
        return SSEMessage(event=self.event, data=self.data, id=str(self.id))


@dataclass
class SSEConnection:
    """An open event stream."""
    connection_id: str = field(default_factory=lambda: str(uuid4()))
    session_id: Optional[str] = None
    channels: Set[str] = field(default_factory=set)
    queue: Optional[asyncio.Queue] = None
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    is_active: bool = True

    def wants(self, stored: StoredEvent) -> bool:
        if stored.channel not in self.channels:
            return False
        if stored.broadcast or stored.session_id is None:
            return True
        return stored.session_id == self.session_id


class EventBroadcaster:
    """
    Publishes events to SSE connections.

    Args:
        heartbeat_interval: Seconds of silence before a heartbeat is sent
        retention: Seconds events stay in the replay log
        max_log_size: Maximum number of events in the replay log
        queue_size: Per-connection queue bound; a connection whose queue
            overflows is dropped and must reconnect
    """

    def __init__(
        self,
        heartbeat_interval: float = 30.0,
        retention: int = 3600,
        max_log_size: int = 1000,
        queue_size: int = 1000,
        default_channels: Iterable[str] = (STATE_CHANNEL,),
        clock=time.time,
    ):
        self.heartbeat_interval = heartbeat_interval
        self.retention = retention
        self.queue_size = queue_size
        self.default_channels = list(default_channels)
        self._clock = clock
        self._ids = count(1)
        self._log: Deque[StoredEvent] = deque(maxlen=max_log_size)

        self.connections: Dict[str, SSEConnection] = {}
        self.connections_by_session: Dict[str, Set[str]] = defaultdict(set)
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config) -> 'EventBroadcaster':
        return cls(
            heartbeat_interval=config.heartbeat_interval,
            retention=config.event_retention,
            max_log_size=config.max_log_size,
            queue_size=config.queue_size,
            default_channels=config.default_channels,
        )

    # Publishing

    def publish(
        self,
        channel: str,
        event: str,
        data: Dict[str, Any],
        session_id: Optional[str] = None,
        broadcast: bool = False,
    ) -> StoredEvent:
        """
        Record an event and queue it for every interested connection.

        Args:
            channel: Channel clients subscribe to, e.g. ``state`` or ``products``
            event: Event name sent to the client, e.g. ``products.created``
            data: JSON-compatible payload
            session_id: Restrict delivery to this session (unless ``broadcast``)
            broadcast: Deliver to every session
        """
        stored = StoredEvent(
            id=next(self._ids),
            channel=channel,
            event=event,
            data=data,
            session_id=session_id,
            broadcast=broadcast,
            created_at=self._clock(),
        )
        self._log.append(stored)

        message = stored.to_message().serialize()
        for connection in list(self.connections.values()):
            if not connection.wants(stored):
                continue
            try:
                connection.queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("Queue full for connection %s, dropping it", connection.connection_id)
                self.remove_connection(connection.connection_id)
        return stored

    def broadcast(self, channel: str, event: str, data: Dict[str, Any]) -> StoredEvent:
        """Publish to all sessions."""
        return self.publish(channel, event, data, broadcast=True)

    def on_state_updated(self, event: StateUpdated) -> None:
        self.publish(
            STATE_CHANNEL,
            STATE_UPDATED,
            {"state": event.state, "data": event.data},
            session_id=event.session_id,
            broadcast=event.broadcast,
        )

    def attach(self, bus) -> None:
        """Forward ``StateUpdated`` events from the bus to clients."""
        bus.subscribe(self.on_state_updated, StateUpdated)

    # Connections

    def create_connection(
        self,
        session_id: Optional[str] = None,
        channels: Optional[Iterable[str]] = None,
        last_event_id: Optional[int] = None,
    ) -> SSEConnection:
        """
        Open a connection, replaying logged events newer than ``last_event_id``.
        """
        connection = SSEConnection(
            session_id=session_id,
            channels=set(channels or self.default_channels),
            queue=asyncio.Queue(maxsize=self.queue_size),
        )
        self.connections[connection.connection_id] = connection
        if session_id:
            self.connections_by_session[session_id].add(connection.connection_id)

        if last_event_id is not None:
            replayed = 0
            for stored in self._log:
                if stored.id <= last_event_id or not connection.wants(stored):
                    continue
                try:
                    connection.queue.put_nowait(stored.to_message().serialize())
                except asyncio.QueueFull:
                    logger.warning("Replay for %s truncated at event %d", connection.connection_id, stored.id)
                    break
                replayed += 1
            logger.debug("Replayed %d events to %s", replayed, connection.connection_id)

        return connection

    def remove_connection(self, connection_id: str) -> None:
        """Remove a connection and clean up the session index."""
        connection = self.connections.pop(connection_id, None)
        if not connection:
            return
        connection.is_active = False
        if connection.session_id:
            session_connections = self.connections_by_session.get(connection.session_id)
            if session_connections is not None:
                session_connections.discard(connection_id)
                if not session_connections:
                    del self.connections_by_session[connection.session_id]

    async def stream(self, connection: SSEConnection) -> AsyncIterator[str]:
        """
        SSE stream for one connection: ``connected``, then queued events,
        with a ``heartbeat`` whenever nothing was sent for
        ``heartbeat_interval`` seconds. The connection is removed when the
        stream ends.
        """
        try:
            yield SSEMessage(event="connected", data={
                "session": connection.session_id,
                "channels": sorted(connection.channels),
                "timestamp": int(self._clock()),
            }).serialize()

            while connection.is_active:
                try:
                    message = await asyncio.wait_for(connection.queue.get(), timeout=self.heartbeat_interval)
                except asyncio.TimeoutError:
                    message = SSEMessage(event="heartbeat", data={"timestamp": int(self._clock())}).serialize()
                connection.last_activity = self._clock()
                yield message
        finally:
            self.remove_connection(connection.connection_id)

    # Maintenance

    def cleanup(self, max_age: Optional[int] = None) -> int:
        """Drop logged events older than ``max_age`` (default: retention)."""
        cutoff = self._clock() - (max_age if max_age is not None else self.retention)
        removed = 0
        while self._log and self._log[0].created_at < cutoff:
            self._log.popleft()
            removed += 1
        return removed

    def start_cleanup(self, interval: int = 300) -> None:
        if self._cleanup_task:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, event cleanup not started")
            return
        self._cleanup_task = loop.create_task(self._cleanup_loop(interval))

    def stop_cleanup(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_loop(self, interval: int) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                removed = self.cleanup()
                if removed:
                    logger.debug("Dropped %d expired events", removed)
            except asyncio.CancelledError:
                break

    def events_since(self, last_event_id: int = 0) -> List[StoredEvent]:
        return [stored for stored in self._log if stored.id > last_event_id]

    def get_connection_stats(self) -> Dict[str, Any]:
        """Get statistics about current connections."""
        by_channel: Dict[str, int] = defaultdict(int)
        for connection in self.connections.values():
            for channel in connection.channels:
                by_channel[channel] += 1
        return {
            "total_connections": len(self.connections),
            "connections_by_session": len(self.connections_by_session),
            "connections_by_channel": dict(by_channel),
            "logged_events": len(self._log),
        }
