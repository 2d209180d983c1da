"""
Action Dispatcher

Executes action calls coming from clients. Framework adapters turn HTTP
requests into calls to ``dispatch`` and turn the returned outcome into a
response; everything between (validation, argument mapping, execution,
persistence, change notification) happens here.
"""

import json
import logging
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from pydantic_core import to_jsonable_python

from ..core.descriptors import ActionMode, StateScope
from ..core.events import StateUpdated
from ..core.registry import StateContext, StateRegistry
from ..errors import BadRequestError, NotFoundError, PersistError
from .utils import resolve_arguments

logger = logging.getLogger(__name__)

STATE_PATH = "/livestate/state"
EVENTS_PATH = "/livestate/events"


@dataclass
class ActionOutcome:
    """Result of a dispatch: HTTP status, wire body and optional deferred work."""
    status: int
    body: Dict[str, Any]
    background: Optional[Callable[[], Awaitable[None]]] = None

    @property
    def success(self) -> bool:
        return bool(self.body.get("success"))


def success_body(state: Dict[str, Any], result: Any = None) -> Dict[str, Any]:
    return {
        "success": True,
        "state": state,
        "result": to_jsonable_python(result, fallback=str),
        "timestamp": int(time.time()),
    }


def error_body(message: str) -> Dict[str, Any]:
    return {
        "success": False,
        "error": message,
        "timestamp": int(time.time()),
    }


class ActionDispatcher:
    """
    Base dispatcher for action calls.

    Framework-specific dispatchers override ``_register_route`` to mount the
    state and events endpoints on their router.
    """

    def __init__(self, registry: StateRegistry, state_path: str = STATE_PATH, events_path: str = EVENTS_PATH):
        self.registry = registry
        self.state_path = state_path
        self.events_path = events_path

    @property
    def bus(self):
        return self.registry.bus

    def _register_route(self, router, path: str, handler: Callable, methods: list):
        """
        Register a route with the framework router.

        Base implementation - MUST be overridden by framework-specific dispatchers.
        """
        raise NotImplementedError("Subclasses must implement _register_route")

    @staticmethod
    def parse_call(body: Union[bytes, str, Dict[str, Any]]) -> Tuple[str, str, Dict[str, Any]]:
        """
        Split a request body into ``(state, action, payload)``.

        Raises:
            BadRequestError: for invalid JSON or missing state/action
        """
        if isinstance(body, (bytes, str)):
            try:
                body = json.loads(body or b"null")
            except ValueError:
                raise BadRequestError("Invalid JSON body") from None
        if not isinstance(body, dict) or not body:
            raise BadRequestError("Invalid JSON body")

        state_name = body.get("state")
        action_name = body.get("action")
        if not state_name or not action_name:
            raise BadRequestError("Missing state or action parameter")

        payload = body.get("payload") or {}
        if not isinstance(payload, dict):
            raise BadRequestError("Payload must be an object")
        return state_name, action_name, payload

    async def dispatch(self, context: StateContext, state_name: str, action_name: str, payload: Dict[str, Any]) -> ActionOutcome:
        """
        Run one action call and describe the response.

        Never raises for request-level problems; they become error outcomes:
        400 bad call, 404 unknown state or action, 500 action or persist
        failure.
        """
        try:
            return await self._dispatch(context, state_name, action_name, payload)
        except BadRequestError as e:
            return ActionOutcome(400, error_body(str(e)))
        except NotFoundError as e:
            return ActionOutcome(404, error_body(str(e)))
        except PersistError as e:
            logger.error("Persist failed after %s.%s: %s", state_name, action_name, e)
            return ActionOutcome(500, error_body(str(e)))
        except Exception as e:
            logger.exception("Action %s.%s failed", state_name, action_name)
            return ActionOutcome(500, error_body(str(e)))

    async def _dispatch(self, context: StateContext, state_name: str, action_name: str, payload: Dict[str, Any]) -> ActionOutcome:
        entry = self.registry.entry(state_name)
        spec = entry.schema.actions.get(action_name)
        if spec is None:
            raise NotFoundError(f"Action '{action_name}' not found on state '{state_name}'")
        if spec.descriptor.mode == ActionMode.CLIENT:
            raise BadRequestError(f"Action '{action_name}' is client-side only")

        kwargs = resolve_arguments(spec.signature, payload)
        proxy = context.get_state(state_name)

        if spec.descriptor.mode == ActionMode.BACKGROUND:
            async def run_later():
                await self._run_background(context, state_name, action_name, kwargs)
            return ActionOutcome(200, success_body(proxy.to_dict()), background=run_later)

        result = await proxy.call_action(action_name, **kwargs)
        data = proxy.to_dict()
        await self.publish_update(context, state_name, data)
        return ActionOutcome(200, success_body(data, result))

    async def _run_background(self, context: StateContext, state_name: str, action_name: str, kwargs: Dict[str, Any]) -> None:
        proxy = context.get_state(state_name)
        try:
            await proxy.call_action(action_name, **kwargs)
        except Exception:
            logger.exception("Background action %s.%s failed", state_name, action_name)
            return
        await self.publish_update(context, state_name, proxy.to_dict())

    async def publish_update(self, context: StateContext, state_name: str, data: Dict[str, Any]) -> None:
        """Publish ``StateUpdated``; global states are broadcast to every session."""
        if self.bus is None:
            return
        scope = self.registry.entry(state_name).schema.descriptor.scope
        await self.bus.publish(StateUpdated(
            state=state_name,
            data=data,
            session_id=context.session_id,
            broadcast=scope == StateScope.GLOBAL,
        ))

    def action_url(self, state_name: str, action_name: str, **payload) -> str:
        """
        Datastar expression that posts an action call.

        >>> dispatcher.action_url("counter", "increment", by=5)
        "@post('/livestate/state?state=counter&action=increment&by=5')"
        """
        self.registry.entry(state_name)
        params = {"state": state_name, "action": action_name, **payload}
        query_string = urllib.parse.urlencode(params, doseq=True)
        return f"@post('{self.state_path}?{query_string}')"


async def run_background(outcome: ActionOutcome) -> None:
    """Await an outcome's deferred work, if any, outside a web framework."""
    if outcome.background is not None:
        await outcome.background()

