"""
Tests for the client realtime channel: backoff, reconnects and applying
pushed state updates.
"""

import asyncio

import httpx
import pytest

from livestate import EventBroadcaster
from livestate.client import Backoff, Bindings, ClientStateStore, ConnectionStatus, RealtimeChannel
from livestate.config import ClientConfig, RealtimeConfig
from livestate.realtime import SSEMessage


def sse(*messages):
    return "".join(message.serialize() for message in messages)


CART_UPDATE = SSEMessage(
    event="state.updated",
    data={"state": "cart", "data": {"items": ["apple"], "total": 1}},
    id="1",
)


class StreamServer:
    """Serves a fixed event stream and records the requests it receives."""

    def __init__(self, body="", status=200):
        self.body = body
        self.status = status
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(
            self.status,
            content=self.body.encode(),
            headers={"content-type": "text/event-stream"},
        )


@pytest.fixture
def store():
    store = ClientStateStore()
    store.hydrate({"states": {"cart": {"items": [], "total": 0}}, "actions": {}})
    return store


def make_channel(store, server, stop_after, **kwargs):
    delays = []
    channel = None

    async def fake_sleep(delay):
        delays.append(delay)
        if len(delays) >= stop_after:
            await channel.disconnect()

    channel = RealtimeChannel(
        store,
        "http://testserver/livestate/events",
        client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
        sleep=fake_sleep,
        **kwargs,
    )
    return channel, delays


class TestBackoff:
    def test_doubles_to_ceiling(self):
        backoff = Backoff(floor=1, ceiling=30)
        assert [backoff.next() for _ in range(7)] == [1, 2, 4, 8, 16, 30, 30]

    def test_reset(self):
        backoff = Backoff()
        backoff.next()
        backoff.next()
        backoff.reset()
        assert backoff.next() == 1


class TestReconnect:
    @pytest.mark.asyncio
    async def test_failed_connects_back_off(self, store):
        server = StreamServer(status=500)
        channel, delays = make_channel(store, server, stop_after=5)

        channel.connect()
        await channel.wait_closed()

        assert delays == [1, 2, 4, 8, 16]
        assert len(server.requests) == 5
        assert channel.status == ConnectionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_delay_is_capped(self, store):
        channel, delays = make_channel(store, StreamServer(status=503), stop_after=5, floor=1, ceiling=4)
        channel.connect()
        await channel.wait_closed()
        assert delays == [1, 2, 4, 4, 4]

    @pytest.mark.asyncio
    async def test_successful_open_resets_backoff(self, store):
        server = StreamServer(body=sse(SSEMessage(event="connected", data={"session": "s1"})))
        channel, delays = make_channel(store, server, stop_after=3)
        channel.connect()
        await channel.wait_closed()
        assert delays == [1, 1, 1]

    @pytest.mark.asyncio
    async def test_resumes_from_last_event_id(self, store):
        server = StreamServer(body=sse(CART_UPDATE))
        channel, _ = make_channel(store, server, stop_after=2, channels=["state", "products"])
        channel.connect()
        await channel.wait_closed()

        first, second = server.requests
        assert "Last-Event-ID" not in first.headers
        assert second.headers["Last-Event-ID"] == "1"
        assert first.url.params["channels"] == "state,products"
        assert channel.last_event_id == "1"

    @pytest.mark.asyncio
    async def test_status_callbacks(self, store):
        statuses = []
        server = StreamServer(body=sse(CART_UPDATE))
        channel, _ = make_channel(store, server, stop_after=1)
        channel.on_status(statuses.append)
        channel.connect()
        await channel.wait_closed()

        assert statuses == [
            ConnectionStatus.CONNECTING,
            ConnectionStatus.OPEN,
            ConnectionStatus.RECONNECTING,
            ConnectionStatus.CLOSED,
        ]

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, store):
        server = StreamServer(status=500)
        sleeping = asyncio.Event()

        async def slow_sleep(delay):
            sleeping.set()
            await asyncio.sleep(3600)

        channel = RealtimeChannel(
            store,
            "http://testserver/livestate/events",
            client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
            sleep=slow_sleep,
        )
        task = channel.connect()
        await sleeping.wait()
        await channel.disconnect()

        assert task.done()
        assert channel.status == ConnectionStatus.CLOSED
        assert len(server.requests) == 1
        assert not channel.client.is_closed

    @pytest.mark.asyncio
    async def test_unexpected_error_goes_through_backoff(self, store):
        def server(request):
            raise RuntimeError("proxy exploded")

        channel, delays = make_channel(store, server, stop_after=2)
        task = channel.connect()
        await channel.wait_closed()

        assert delays == [1, 2]
        assert task.exception() is None
        assert channel.status == ConnectionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_owned_client_is_closed_on_disconnect(self, store):
        channel = RealtimeChannel(store, "http://testserver/livestate/events")
        assert channel.client is None

        channel.connect()
        client = channel.client
        await channel.disconnect()

        assert client.is_closed
        assert channel.client is None
        assert channel.status == ConnectionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_heartbeat_watchdog(self, store):
        class SilentStream(httpx.AsyncByteStream):
            async def __aiter__(self):
                yield b"event: connected\ndata: {}\n\n"
                await asyncio.sleep(3600)
                yield b""

        def server(request):
            return httpx.Response(200, stream=SilentStream(), headers={"content-type": "text/event-stream"})

        channel, delays = make_channel(store, server, stop_after=1, heartbeat_timeout=0.02)
        channel.connect()
        await asyncio.wait_for(channel.wait_closed(), timeout=2)
        assert delays == [1]


class TestEvents:
    @pytest.mark.asyncio
    async def test_state_updated_replaces_state(self, store):
        calls = []
        store.subscribe("cart", lambda key, value, old, data: calls.append((key, value, old)))

        channel, _ = make_channel(store, StreamServer(body=sse(CART_UPDATE)), stop_after=1)
        channel.connect()
        await channel.wait_closed()

        assert store.get("cart") == {"items": ["apple"], "total": 1}
        assert calls == [(None, {"items": ["apple"], "total": 1}, {"items": [], "total": 0})]

    @pytest.mark.asyncio
    async def test_failing_binding_keeps_the_stream_open(self, store):
        class GoneWidget(Bindings):
            def apply_all(self, state, data):
                raise ValueError("widget gone")

        store.bindings = GoneWidget()
        received = []
        body = sse(CART_UPDATE, SSEMessage(event="products.created", data={"id": 7}, id="2"))
        server = StreamServer(body=body)
        channel, delays = make_channel(store, server, stop_after=2, channels=["state", "products"])
        channel.on("products.created", received.append)
        task = channel.connect()
        await channel.wait_closed()

        assert task.exception() is None
        assert received == [{"id": 7}, {"id": 7}]
        assert delays == [1, 1]
        assert len(server.requests) == 2

    @pytest.mark.asyncio
    async def test_custom_event_handlers(self, store):
        received = []

        async def on_created(data):
            received.append(data)

        body = sse(
            SSEMessage(event="heartbeat", data={"timestamp": 1}),
            SSEMessage(event="products.created", data={"id": 7}, id="2"),
        )
        channel, _ = make_channel(store, StreamServer(body=body), stop_after=1, channels=["products"])
        channel.on("products.created", on_created)
        channel.connect()
        await channel.wait_closed()

        assert received == [{"id": 7}]

    @pytest.mark.asyncio
    async def test_malformed_event_is_dropped(self, store):
        body = (
            "event: state.updated\ndata: {broken\n\n"
            + sse(SSEMessage(event="state.updated", data={"state": "cart"}))
            + sse(CART_UPDATE)
        )
        channel, _ = make_channel(store, StreamServer(body=body), stop_after=1)
        channel.connect()
        await channel.wait_closed()

        assert store.get("cart", "total") == 1

    @pytest.mark.asyncio
    async def test_off(self, store):
        received = []
        channel, _ = make_channel(store, StreamServer(body=sse(CART_UPDATE)), stop_after=1)
        channel.on("state.updated", received.append)
        channel.off("state.updated", received.append)
        channel.connect()
        await channel.wait_closed()
        assert received == []


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_broadcaster_output_is_applied(self, store):
        broadcaster = EventBroadcaster()
        connection = broadcaster.create_connection(session_id="s1")
        broadcaster.publish("state", "state.updated", {"state": "cart", "data": {"items": ["pear"], "total": 1}}, session_id="s1")

        stream = broadcaster.stream(connection)
        body = await stream.__anext__() + await stream.__anext__()
        await stream.aclose()

        channel, _ = make_channel(store, StreamServer(body=body), stop_after=1)
        channel.connect()
        await channel.wait_closed()
        assert store.get("cart") == {"items": ["pear"], "total": 1}


class TestFromConfig:
    def test_uses_realtime_settings(self, store):
        channel = RealtimeChannel.from_config(
            store,
            ClientConfig(session="tok"),
            RealtimeConfig(reconnect_floor=2, reconnect_ceiling=8, heartbeat_timeout=10),
            base_url="http://testserver/",
        )
        assert channel.url == "http://testserver/livestate/events"
        assert channel.headers == {"X-LiveState-Session": "tok"}
        assert channel.channels == ["state"]
        assert channel.heartbeat_timeout == 10
        assert [channel.backoff.next() for _ in range(4)] == [2, 4, 8, 8]

    def test_watchdog_is_on_by_default(self, store):
        channel = RealtimeChannel.from_config(store, ClientConfig())
        assert channel.heartbeat_timeout == RealtimeConfig().heartbeat_timeout
        assert channel.heartbeat_timeout
        assert "X-LiveState-Session" not in channel.headers

    @pytest.mark.asyncio
    async def test_sends_session_header(self, store):
        server = StreamServer(body=sse(CART_UPDATE))
        delays = []
        channel = None

        async def fake_sleep(delay):
            delays.append(delay)
            await channel.disconnect()

        channel = RealtimeChannel.from_config(
            store,
            ClientConfig(session="tok"),
            base_url="http://testserver",
            client=httpx.AsyncClient(transport=httpx.MockTransport(server)),
            sleep=fake_sleep,
        )
        channel.connect()
        await channel.wait_closed()

        assert server.requests[0].headers["X-LiveState-Session"] == "tok"
        assert store.get("cart", "total") == 1
