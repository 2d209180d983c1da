"""
Client State Store

Mirrors the server's synced states on the client side. The store is
hydrated once from the page payload, notifies subscribers when values
change, and routes action calls: client-mode actions run a locally
registered handler, server-mode actions go through the transport and
replace the mirrored state with the server's snapshot.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from ..app.hydration import HYDRATION_ELEMENT_ID
from ..config import script_body
from ..errors import ActionError, NotFoundError, ParseError
from .bindings import Bindings
from .debounce import Debouncer
from .transport import ActionTransport

logger = logging.getLogger(__name__)

# callback(key, value, old, state); key is None for whole-state replacement
Subscriber = Callable[[Optional[str], Any, Any, Dict[str, Any]], None]
ClientHandler = Callable[[Dict[str, Any], Dict[str, Any]], Any]
ConfirmHandler = Callable[[str], Union[bool, Awaitable[bool]]]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class ClientStateStore:
    """
    Client-side mirror of synced states.

    Args:
        transport: Sends server-mode action calls
        bindings: Receives value and pending-flag updates
        confirm: Asked before confirm-gated actions; a missing handler declines
        debug: Log store activity at INFO instead of DEBUG
    """

    def __init__(
        self,
        transport: Optional[ActionTransport] = None,
        bindings: Optional[Bindings] = None,
        confirm: Optional[ConfirmHandler] = None,
        debug: bool = False,
    ):
        self.transport = transport
        self.bindings = bindings or Bindings()
        self.confirm = confirm
        self.debug = debug
        self.debouncer = Debouncer()

        self._states: Dict[str, Dict[str, Any]] = {}
        self._actions: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._client_handlers: Dict[str, ClientHandler] = {}
        self._pending: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._hydrated = False

    def _trace(self, msg: str, *args) -> None:
        logger.log(logging.INFO if self.debug else logging.DEBUG, msg, *args)

    # Hydration

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    def hydrate(self, source: Union[str, bytes, Mapping[str, Any]]) -> bool:
        """
        Load the page's hydration payload.

        Only the first successful call has an effect. A malformed payload is
        logged and leaves the store empty.
        """
        if self._hydrated:
            self._trace("Store already hydrated, ignoring payload")
            return False

        try:
            states, actions = self._decode(source)
        except ParseError as e:
            logger.error("Failed to hydrate state: %s", e)
            return False

        self._states.update(states)
        self._actions.update(actions)
        self._hydrated = True
        self._trace("Hydrated states: %s", list(self._states))

        for name, data in self._states.items():
            self.bindings.apply_all(name, data)
        return True

    def hydrate_from_html(self, html: str, element_id: str = HYDRATION_ELEMENT_ID) -> bool:
        body = script_body(html, element_id)
        if body is None:
            logger.warning("No hydration element #%s in page", element_id)
            return False
        return self.hydrate(body)

    @staticmethod
    def _decode(source):
        if isinstance(source, Mapping):
            payload = source
        else:
            try:
                payload = json.loads(source)
            except (TypeError, ValueError) as e:
                raise ParseError(f"Invalid hydration payload: {e}") from e
        if not isinstance(payload, Mapping):
            raise ParseError("Hydration payload must be an object")
        states = payload.get("states", {})
        actions = payload.get("actions", {})
        if not isinstance(states, Mapping) or not isinstance(actions, Mapping):
            raise ParseError("Hydration payload needs 'states' and 'actions' objects")
        if not all(isinstance(v, Mapping) for v in states.values()):
            raise ParseError("Every hydrated state must be an object")
        for name, table in actions.items():
            if not isinstance(table, Mapping) or not all(isinstance(m, Mapping) for m in table.values()):
                raise ParseError(f"Action metadata for '{name}' must map action names to objects")
        return (
            {name: dict(data) for name, data in states.items()},
            {name: {action: dict(meta) for action, meta in table.items()} for name, table in actions.items()},
        )

    # Values

    @property
    def states(self) -> List[str]:
        return list(self._states)

    def get(self, state: str, key: Optional[str] = None, default: Any = None) -> Any:
        """A field of ``state``, or a copy of the whole state when ``key`` is omitted."""
        data = self._states.get(state)
        if data is None:
            return default if key is not None else None
        if key is None:
            return dict(data)
        return data.get(key, default)

    def set(self, state: str, key: str, value: Any) -> None:
        """Change one mirrored field locally and notify subscribers."""
        data = self._states.setdefault(state, {})
        old = data.get(key)
        data[key] = value
        self.bindings.apply(state, key, value)
        self._notify(state, key, value, old, data)

    def replace(self, state: str, data: Mapping[str, Any]) -> None:
        """
        Replace the whole mirror of ``state``.

        Subscribers are called once with ``key=None`` and the old and new
        dicts.
        """
        old = self._states.get(state, {})
        new = dict(data)
        self._states[state] = new
        self.bindings.apply_all(state, new)
        self._notify(state, None, new, old, new)

    def subscribe(self, state: str, callback: Subscriber) -> Callable[[], None]:
        """Watch ``state``; returns a function that removes the subscription."""
        self._subscribers.setdefault(state, []).append(callback)

        def unsubscribe():
            callbacks = self._subscribers.get(state, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _notify(self, state: str, key: Optional[str], value: Any, old: Any, data: Dict[str, Any]) -> None:
        for callback in list(self._subscribers.get(state, [])):
            try:
                callback(key, value, old, data)
            except Exception as e:
                logger.error("Subscriber for %s failed: %s", state, e)

    # Actions

    def register_client_action(self, state: str, action: str, handler: ClientHandler) -> None:
        """Handler for a client-mode action; called with ``(state_data, payload)``."""
        self._client_handlers[f"{state}_{action}"] = handler

    def action_metadata(self, state: str, action: str) -> Optional[Dict[str, Any]]:
        return self._actions.get(state, {}).get(action)

    def is_pending(self, action_key: str) -> bool:
        """Whether ``state.action`` has a server round trip in flight."""
        return self._pending.get(action_key, 0) > 0

    async def action(self, state: str, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Invoke an action.

        Raises:
            NotFoundError: the action is not in the hydrated metadata
            ActionError: the server reported a failure
            TransportError: the request could not be completed
        """
        payload = payload or {}
        config = self.action_metadata(state, action)
        if config is None:
            logger.error("Unknown action %s.%s", state, action)
            raise NotFoundError(f"Action {state}.{action} not found")

        if config.get("mode", "server") == "client":
            return await self._run_client_action(state, action, payload)

        message = config.get("confirm")
        if message:
            accepted = False
            if self.confirm is not None:
                accepted = bool(await _maybe_await(self.confirm(message)))
            if not accepted:
                self._trace("Action %s.%s declined", state, action)
                return None

        delay = config.get("debounce")
        if delay:
            return await self.debouncer.call(
                f"{state}.{action}",
                delay,
                lambda: self._run_server_action(state, action, payload),
            )
        return await self._run_server_action(state, action, payload)

    async def _run_client_action(self, state: str, action: str, payload: Dict[str, Any]) -> Any:
        handler = self._client_handlers.get(f"{state}_{action}")
        if handler is None:
            self._trace("No client handler for %s.%s", state, action)
            return None
        return await _maybe_await(handler(self._states.setdefault(state, {}), payload))

    def _lock_for(self, state: str) -> asyncio.Lock:
        lock = self._locks.get(state)
        if lock is None:
            lock = self._locks[state] = asyncio.Lock()
        return lock

    async def _run_server_action(self, state: str, action: str, payload: Dict[str, Any]) -> Any:
        if self.transport is None:
            raise ActionError("No transport configured", state=state, action=action)

        key = f"{state}.{action}"
        self._mark_pending(key, 1)
        try:
            # One call per state at a time; asyncio.Lock wakes waiters in FIFO order
            async with self._lock_for(state):
                self._trace("Calling %s with %s", key, payload)
                body = await self.transport.send(state, action, payload)
                if not body.get("success"):
                    message = body.get("error") or "Action failed"
                    logger.error("Action %s failed: %s", key, message)
                    raise ActionError(message, state=state, action=action)
                if isinstance(body.get("state"), Mapping):
                    self.replace(state, body["state"])
                return body.get("result")
        finally:
            self._mark_pending(key, -1)

    def _mark_pending(self, key: str, delta: int) -> None:
        previous = self._pending.get(key, 0)
        count = previous + delta
        if count > 0:
            self._pending[key] = count
        else:
            self._pending.pop(key, None)
        if (previous > 0) != (count > 0):
            self.bindings.set_pending(key, count > 0)
