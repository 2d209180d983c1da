"""
FastHTML Web Adapter

Mounts the action endpoint and the event stream on a FastHTML app and gives
page handlers access to the per-request state context, the hydration payload
and the client configuration.
"""

import asyncio
import json
import logging
from typing import Callable, Optional

from datastar_py import ServerSentEventGenerator as SSE
from datastar_py.starlette import DatastarResponse
from fasthtml.common import Script
from starlette.requests import Request
from starlette.background import BackgroundTask
from starlette.responses import JSONResponse, StreamingResponse

from ..app.bus import InProcessBus
from ..app.datastar import is_datastar_request, read_action_payload
from ..app.dispatcher import ActionDispatcher, ActionOutcome, error_body
from ..app.hydration import HydrationPayloadBuilder, dumps_for_script
from ..app.session import SessionInfo, SessionManager
from ..config import ClientConfig, LiveStateConfig
from ..core.registry import StateContext, StateRegistry
from ..errors import BadRequestError
from ..realtime.broadcaster import EventBroadcaster

logger = logging.getLogger(__name__)

CONFIG_ELEMENT_ID = "livestate-config"
ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]
NO_CACHE = {"Cache-Control": "no-cache, no-store, must-revalidate"}

datastar_script = Script(src="https://cdn.jsdelivr.net/gh/starfederation/datastar@1.0.0-RC.1/bundles/datastar.js", type="module")


class FastHTMLDispatcher(ActionDispatcher):
    """FastHTML-specific dispatcher: routes, request parsing and responses."""

    def __init__(
        self,
        registry: StateRegistry,
        sessions: SessionManager,
        broadcaster: EventBroadcaster,
        config: Optional[LiveStateConfig] = None,
    ):
        self.config = config or LiveStateConfig()
        super().__init__(
            registry,
            state_path=self.config.client.state_url,
            events_path=self.config.client.events_url,
        )
        self.sessions = sessions
        self.broadcaster = broadcaster
        self._cleanup_started = False

    def _register_route(self, router, path: str, handler: Callable, methods: list):
        """Register route using FastHTML's decorator pattern."""
        router(path, methods=methods)(handler)

    def include_routes(self, router) -> None:
        async def livestate_state(request: Request):
            return await self.state_endpoint(request)

        async def livestate_events(request: Request):
            return await self.events_endpoint(request)

        self._register_route(router, self.state_path, livestate_state, ALL_METHODS)
        self._register_route(router, self.events_path, livestate_events, ["GET"])

    # Per-request helpers

    def session(self, request: Request) -> SessionInfo:
        session = request.scope.get("livestate.session")
        if session is None:
            session = request.scope["livestate.session"] = self.sessions.resume(request)
        return session

    def context(self, request: Request) -> StateContext:
        """State context for the request's session, created once per request."""
        context = request.scope.get("livestate.context")
        if context is None:
            self._start_cleanup()
            session = self.session(request)
            context = self.registry.context(session.session_id, user_id=session.user_id)
            request.scope["livestate.context"] = context
        return context

    def hydration(self, request: Request) -> HydrationPayloadBuilder:
        """Hydration builder for the request; render it once near the end of the page."""
        builder = request.scope.get("livestate.hydration")
        if builder is None:
            builder = request.scope["livestate.hydration"] = HydrationPayloadBuilder(self.context(request))
        return builder

    def client_config(self, request: Request):
        """``<script id="livestate-config">`` with the URLs, nonce and session token."""
        session = self.session(request)
        client = ClientConfig(
            state_url=self.state_path,
            events_url=self.events_path,
            nonce=self.sessions.generate_nonce(session.session_id),
            session=session.token,
            debug=self.config.client.debug,
        )
        return Script(dumps_for_script(client.to_wire()), type="application/json", id=CONFIG_ELEMENT_ID)

    def signals(self, request: Request) -> str:
        """``data-signals`` value with the snapshot of every synced state loaded so far."""
        return dumps_for_script(self.context(request).get_hydration_data())

    def _start_cleanup(self) -> None:
        # Sync page handlers run without a loop; the first async request starts the tasks.
        if self._cleanup_started:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cleanup_started = True
        self.registry.start_cleanup()
        self.broadcaster.start_cleanup(self.config.storage.cleanup_interval)

    # Endpoints

    async def state_endpoint(self, request: Request):
        """POST /livestate/state"""
        if request.method != "POST":
            return JSONResponse(error_body("Method not allowed"), status_code=405, headers=NO_CACHE)

        session = self.session(request)
        if self.config.security.verify_nonce:
            nonce = request.headers.get(self.config.security.nonce_header, "")
            if not self.sessions.verify_nonce(session.session_id, nonce):
                return JSONResponse(error_body("Invalid or expired nonce"), status_code=403, headers=NO_CACHE)

        datastar = is_datastar_request(request)
        try:
            if datastar:
                state_name, action_name = self._query_call(request)
                payload = await read_action_payload(request, state_name)
            else:
                state_name, action_name, payload = self.parse_call(await request.body())
        except BadRequestError as e:
            return JSONResponse(error_body(str(e)), status_code=400, headers=NO_CACHE)

        outcome = await self.dispatch(self.context(request), state_name, action_name, payload)
        return self.to_response(outcome, state_name, datastar)

    def _query_call(self, request: Request):
        state_name = request.query_params.get("state")
        action_name = request.query_params.get("action")
        if not state_name or not action_name:
            raise BadRequestError("Missing state or action parameter")
        return state_name, action_name

    def to_response(self, outcome: ActionOutcome, state_name: str, datastar: bool = False):
        """Convert a dispatch outcome to a JSON or Datastar response."""
        if datastar and outcome.success:
            response = DatastarResponse(SSE.patch_signals({state_name: outcome.body["state"]}))
        else:
            response = JSONResponse(outcome.body, status_code=outcome.status, headers=NO_CACHE)
        if outcome.background is not None:
            response.background = BackgroundTask(outcome.background)
        return response

    async def events_endpoint(self, request: Request):
        """GET /livestate/events?channels=a,b"""
        session = self.session(request)
        channels = [c.strip() for c in request.query_params.get("channels", "").split(",") if c.strip()]
        last_event_id = _parse_event_id(
            request.headers.get("Last-Event-ID") or request.query_params.get("lastEventId")
        )
        connection = self.broadcaster.create_connection(
            session_id=session.session_id,
            channels=channels or None,
            last_event_id=last_event_id,
        )
        logger.debug("SSE connection %s for session %s on %s", connection.connection_id, session.session_id, sorted(connection.channels))
        return StreamingResponse(
            self.broadcaster.stream(connection),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        )

    def action_url(self, state_name: str, action_name: str, *, nonce: Optional[str] = None, **payload) -> str:
        """Datastar ``@post`` expression; pass ``nonce`` to send the nonce header."""
        expression = super().action_url(state_name, action_name, **payload)
        if nonce is None:
            return expression
        headers = json.dumps({"headers": {self.config.security.nonce_header: nonce}}).replace('"', "'")
        return f"{expression[:-1]}, {headers})"


def _parse_event_id(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def configure_app(
    app,
    registry: StateRegistry,
    *,
    sessions: Optional[SessionManager] = None,
    broadcaster: Optional[EventBroadcaster] = None,
    config: Optional[LiveStateConfig] = None,
) -> FastHTMLDispatcher:
    """
    Configure a FastHTML app with LiveState.

    ```python
    from fasthtml.common import fast_app
    from livestate import StateRegistry, configure_app

    app, rt = fast_app()
    registry = StateRegistry()
    registry.register(CounterState)
    live = configure_app(app, registry)

    @rt("/")
    def index(req):
        counter = live.context(req).get_state("counter")
        return Titled("Counter", P(counter.count), live.hydration(req), live.client_config(req))
    ```

    Args:
        app: FastHTML app instance
        registry: Registry with the app's state types
        sessions: Session manager (default: in-memory store)
        broadcaster: Event broadcaster (default: built from ``config.realtime``)
        config: LiveState configuration

    Returns:
        The dispatcher, which exposes ``context``, ``hydration``,
        ``client_config`` and ``action_url`` for page handlers
    """
    config = config or LiveStateConfig()
    if registry.bus is None:
        registry.bus = InProcessBus()
    sessions = sessions or SessionManager(config=config.security)
    broadcaster = broadcaster or EventBroadcaster.from_config(config.realtime)
    broadcaster.attach(registry.bus)

    dispatcher = FastHTMLDispatcher(registry, sessions, broadcaster, config=config)
    dispatcher.include_routes(app.route)
    return dispatcher
