"""
State Proxy

Wraps a live state instance for the duration of a request. Reads resolve
computed values through a cache, writes to observable fields mark the state
dirty, and action calls persist the result.
"""

import logging
from typing import Any, Callable, Dict, Optional

from pydantic_core import to_jsonable_python

from ..errors import NotFoundError, PersistError
from .descriptors import ActionSpec, StateSchema
from .events import StateChanged

logger = logging.getLogger(__name__)

Saver = Callable[[str, Dict[str, Any]], None]


class StateProxy:
    """
    Proxy around one state instance.

    Args:
        name: Registered state name
        target: The state instance
        schema: Declared tables for the state type
        saver: Called as ``saver(name, data)`` by ``persist()``
        bus: Optional event bus; receives ``StateChanged`` on observable writes
        session_id: Session the state belongs to
    """

    def __init__(
        self,
        name: str,
        target: Any,
        schema: StateSchema,
        saver: Optional[Saver] = None,
        bus=None,
        session_id: Optional[str] = None,
    ):
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_target", target)
        object.__setattr__(self, "_schema", schema)
        object.__setattr__(self, "_saver", saver)
        object.__setattr__(self, "_bus", bus)
        object.__setattr__(self, "_session_id", session_id)
        object.__setattr__(self, "_cache", {})
        object.__setattr__(self, "_dirty", False)

    @property
    def state_name(self) -> str:
        return self._name

    @property
    def target(self) -> Any:
        return self._target

    @property
    def schema(self) -> StateSchema:
        return self._schema

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __getattr__(self, name: str) -> Any:
        # Only reached for names not defined on the proxy itself.
        if name.startswith("__"):
            raise AttributeError(name)

        computed = self._schema.computed.get(name)
        if computed is not None:
            return self._compute(name)

        spec = self._schema.actions.get(name)
        if spec is not None:
            return self._bind_action(spec)

        return getattr(self._target, name, None)

    def __setattr__(self, name: str, value: Any) -> None:
        old_value = getattr(self._target, name, None)
        setattr(self._target, name, value)

        if name in self._schema.observable:
            self._mark_dirty()
            if self._bus is not None:
                self._bus.emit(StateChanged(
                    state=self._name,
                    field=name,
                    old_value=old_value,
                    new_value=value,
                    session_id=self._session_id,
                ))

    def _compute(self, name: str) -> Any:
        computed = self._schema.computed[name]
        if computed.descriptor.cached and name in self._cache:
            return self._cache[name]
        value = computed.func(self._target)
        if computed.descriptor.cached:
            self._cache[name] = value
        return value

    def _mark_dirty(self) -> None:
        object.__setattr__(self, "_dirty", True)
        self._cache.clear()

    def _after_action(self) -> None:
        self._mark_dirty()
        self.persist()

    def _bind_action(self, spec: ActionSpec) -> Callable:
        if spec.is_async:
            async def run_async(*args, **kwargs):
                result = await spec.func(self._target, *args, **kwargs)
                self._after_action()
                return result
            run_async.__name__ = spec.name
            return run_async

        def run(*args, **kwargs):
            result = spec.func(self._target, *args, **kwargs)
            self._after_action()
            return result
        run.__name__ = spec.name
        return run

    async def call_action(self, name: str, *args, **kwargs) -> Any:
        """
        Invoke an action by name, awaiting it if it is a coroutine.

        Raises:
            NotFoundError: if ``name`` is not a declared action
        """
        spec = self._schema.actions.get(name)
        if spec is None:
            raise NotFoundError(f"Action '{name}' not found on state '{self._name}'")
        bound = self._bind_action(spec)
        if spec.is_async:
            return await bound(*args, **kwargs)
        return bound(*args, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Observable fields by serialized key plus every computed value."""
        data = {
            key: to_jsonable_python(getattr(self._target, attr, None))
            for attr, key in self._schema.observable_keys().items()
        }
        for name in self._schema.computed:
            data[name] = to_jsonable_python(self._compute(name))
        return data

    def persist(self) -> bool:
        """
        Save the snapshot if the state is dirty.

        Returns:
            True if data was written, False if there was nothing to write

        Raises:
            PersistError: if the save failed; the state stays dirty
        """
        if not self._dirty:
            return False
        if self._saver is None:
            logger.debug("State '%s' has no saver, nothing persisted", self._name)
            return False
        try:
            self._saver(self._name, self.to_dict())
        except PersistError:
            raise
        except Exception as e:
            raise PersistError(f"Failed to persist state '{self._name}': {e}") from e
        object.__setattr__(self, "_dirty", False)
        return True

    def __repr__(self) -> str:
        return f"StateProxy({self._name!r}, dirty={self._dirty})"
