"""
Realtime Channel

Keeps an event stream open to the server and applies ``state.updated``
events to a ``ClientStateStore``. Dropped connections are retried with
exponential backoff, resuming from the last event id seen.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import httpx

from ..config import ClientConfig, RealtimeConfig, SecurityConfig
from ..errors import ParseError, TransportError
from ..realtime.broadcaster import STATE_CHANNEL, STATE_UPDATED
from ..realtime.sse import SSEMessage, parse_sse
from .store import ClientStateStore

logger = logging.getLogger(__name__)


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Backoff:
    """Doubling delay from ``floor`` up to ``ceiling`` seconds."""

    def __init__(self, floor: float = 1.0, ceiling: float = 30.0):
        self.floor = floor
        self.ceiling = ceiling
        self.attempt = 0

    def next(self) -> float:
        self.attempt += 1
        return min(self.floor * 2 ** (self.attempt - 1), self.ceiling)

    def reset(self) -> None:
        self.attempt = 0


EventHandler = Callable[[Any], Any]
StatusCallback = Callable[[ConnectionStatus], None]


class RealtimeChannel:
    """
    Client end of the event stream.

    Args:
        store: Store that receives ``state.updated`` replacements
        url: Events endpoint URL
        channels: Channels to subscribe to
        client: ``httpx.AsyncClient`` used for the stream; when omitted the
            channel opens its own and closes it on ``disconnect``
        headers: Extra request headers, e.g. the session header
        floor: First reconnect delay in seconds
        ceiling: Largest reconnect delay in seconds
        heartbeat_timeout: Reconnect when nothing arrives for this long
        sleep: Coroutine used to wait between attempts
    """

    def __init__(
        self,
        store: ClientStateStore,
        url: str,
        channels: Iterable[str] = (STATE_CHANNEL,),
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        floor: float = 1.0,
        ceiling: float = 30.0,
        heartbeat_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.url = url
        self.channels = list(channels)
        self.client = client
        self._owns_client = client is None
        self.headers = dict(headers or {})
        self.backoff = Backoff(floor, ceiling)
        self.heartbeat_timeout = heartbeat_timeout
        self.last_event_id: Optional[str] = None

        self._sleep = sleep
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._status_callbacks: List[StatusCallback] = []
        self._status = ConnectionStatus.CLOSED
        self._task: Optional[asyncio.Task] = None
        self._closed = True

    @classmethod
    def from_config(
        cls,
        store: ClientStateStore,
        client_config: ClientConfig,
        realtime_config: Optional[RealtimeConfig] = None,
        base_url: Optional[str] = None,
        **kwargs,
    ) -> 'RealtimeChannel':
        """Channel for the events URL and session a page embedded, with the configured backoff and watchdog."""
        realtime_config = realtime_config or RealtimeConfig()
        url = client_config.events_url if base_url is None else base_url.rstrip("/") + client_config.events_url
        headers = kwargs.pop("headers", None) or {}
        if client_config.session:
            headers.setdefault(SecurityConfig.session_header, client_config.session)
        kwargs.setdefault("channels", realtime_config.default_channels)
        kwargs.setdefault("floor", realtime_config.reconnect_floor)
        kwargs.setdefault("ceiling", realtime_config.reconnect_ceiling)
        kwargs.setdefault("heartbeat_timeout", realtime_config.heartbeat_timeout)
        return cls(store, url, headers=headers, **kwargs)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def on(self, event: str, handler: EventHandler) -> None:
        """Call ``handler(data)`` for every ``event`` message."""
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def on_status(self, callback: StatusCallback) -> None:
        self._status_callbacks.append(callback)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        logger.debug("Realtime channel %s", status.value)
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error("Status callback failed: %s", e)

    # Lifecycle

    def connect(self) -> asyncio.Task:
        """Start the connection loop; returns its task."""
        if self._task is not None and not self._task.done():
            return self._task
        self._closed = False
        if self.client is None:
            self.client = httpx.AsyncClient(timeout=None)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    async def disconnect(self) -> None:
        """Close the stream and cancel any pending reconnect."""
        self._closed = True
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._owns_client and self.client is not None:
            await self.client.aclose()
            self.client = None
        self._set_status(ConnectionStatus.CLOSED)

    async def wait_closed(self) -> None:
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while not self._closed:
            self._set_status(ConnectionStatus.CONNECTING)
            try:
                await self._stream_once()
                logger.info("Event stream ended")
            except asyncio.TimeoutError:
                logger.warning("No events for %ss, reconnecting", self.heartbeat_timeout)
            except (httpx.HTTPError, TransportError) as e:
                logger.warning("Event stream error: %s", e)
            except Exception:
                logger.exception("Event stream failed")

            if self._closed:
                break
            self._set_status(ConnectionStatus.RECONNECTING)
            delay = self.backoff.next()
            logger.info("Reconnecting in %ss (attempt %d)", delay, self.backoff.attempt)
            await self._sleep(delay)
        self._set_status(ConnectionStatus.CLOSED)

    async def _stream_once(self) -> None:
        headers = {"Accept": "text/event-stream", **self.headers}
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id
        params = {"channels": ",".join(self.channels)}

        async with self.client.stream("GET", self.url, params=params, headers=headers) as response:
            if response.status_code != 200:
                raise TransportError(f"Event stream returned HTTP {response.status_code}")
            self._set_status(ConnectionStatus.OPEN)
            self.backoff.reset()

            messages = parse_sse(response.aiter_lines())
            while not self._closed:
                try:
                    if self.heartbeat_timeout:
                        message = await asyncio.wait_for(messages.__anext__(), self.heartbeat_timeout)
                    else:
                        message = await messages.__anext__()
                except StopAsyncIteration:
                    return
                await self._dispatch(message)

    # Events

    async def _dispatch(self, message: SSEMessage) -> None:
        if message.id:
            self.last_event_id = message.id

        if message.event == "heartbeat":
            logger.debug("heartbeat")
            return
        if message.event == "connected":
            logger.debug("Event stream connected")

        try:
            data = message.json()
        except ParseError as e:
            logger.error("Dropping event: %s", e)
            return

        if message.event == STATE_UPDATED:
            self._apply_update(data)

        for handler in list(self._handlers.get(message.event, [])):
            try:
                result = handler(data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Handler for %s failed: %s", message.event, e)

    def _apply_update(self, data: Any) -> None:
        if not isinstance(data, dict) or not isinstance(data.get("state"), str) or not isinstance(data.get("data"), dict):
            logger.error("Malformed %s event: %r", STATE_UPDATED, data)
            return
        try:
            self.store.replace(data["state"], data["data"])
        except Exception as e:
            logger.error("Applying %s for '%s' failed: %s", STATE_UPDATED, data["state"], e)
