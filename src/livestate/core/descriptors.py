"""
State Descriptors

Declarative metadata for state types. The ``@state``, ``@action`` and
``@computed`` decorators only store metadata; ``StateSchema`` turns that
metadata (or an equivalent plain mapping) into the lookup tables the proxy and
registry consult at runtime.
"""

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional, Type

from pydantic import BaseModel, ConfigDict, ValidationError

from ..errors import ConfigError


class PersistMode(str, Enum):
    """Where a state's data lives between requests."""
    NONE = "none"
    SESSION = "session"
    LOCAL = "local"
    DATABASE = "database"


class StateScope(str, Enum):
    """Visibility of a state."""
    PAGE = "page"
    USER = "user"
    GLOBAL = "global"


class ActionMode(str, Enum):
    """Where an action executes."""
    CLIENT = "client"
    SERVER = "server"
    BACKGROUND = "background"


@dataclass(frozen=True)
class StateDescriptor:
    """Metadata attached to a state class by ``@state``."""
    persist: PersistMode = PersistMode.SESSION
    sync: bool = True
    scope: StateScope = StateScope.USER
    display_name: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class ActionDescriptor:
    """Metadata attached to a method by ``@action``."""
    mode: ActionMode = ActionMode.SERVER
    debounce: Optional[int] = None  # milliseconds
    confirm: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return {"mode": self.mode.value, "debounce": self.debounce, "confirm": self.confirm}


@dataclass(frozen=True)
class ComputedDescriptor:
    """Metadata attached to a method by ``@computed``."""
    cached: bool = True


@dataclass(frozen=True)
class Observable:
    """
    Field marker for data that is part of the state snapshot.

    Use it inside ``Annotated``::

        count: Annotated[int, Observable()] = 0

    Fields without the marker are instance scratch data and never leave the
    server.
    """
    deep: bool = False


@dataclass(frozen=True)
class ActionSpec:
    """A resolved action: descriptor plus the callable and its signature."""
    name: str
    descriptor: ActionDescriptor
    func: Callable
    signature: inspect.Signature
    is_async: bool


@dataclass(frozen=True)
class ComputedSpec:
    """A resolved computed value."""
    name: str
    descriptor: ComputedDescriptor
    func: Callable


def state(
    cls=None,
    *,
    name: Optional[str] = None,
    persist: PersistMode = PersistMode.SESSION,
    sync: bool = True,
    scope: StateScope = StateScope.USER,
    display_name: Optional[str] = None,
):
    """
    Mark a class as a state type.

    Works with or without parentheses::

        @state
        class CounterState(State): ...

        @state(persist=PersistMode.DATABASE, scope=StateScope.GLOBAL)
        class InventoryState(State): ...

    Args:
        name: Explicit state name (default derived from the class name)
        persist: Persistence mode
        sync: Whether the state is included in hydration payloads
        scope: Visibility scope
        display_name: Human readable label

    Returns:
        The class with ``__state_descriptor__`` set
    """
    def decorator(klass):
        klass.__state_descriptor__ = StateDescriptor(
            persist=PersistMode(persist),
            sync=sync,
            scope=StateScope(scope),
            display_name=display_name,
            name=name,
        )
        return klass

    if cls is not None:
        return decorator(cls)
    return decorator


def action(
    fn=None,
    *,
    mode: ActionMode = ActionMode.SERVER,
    debounce: Optional[int] = None,
    confirm: Optional[str] = None,
):
    """
    Mark a method as an action. Only actions may be invoked from the client.

    Args:
        mode: ``server`` (default), ``client`` or ``background``
        debounce: Coalescing window in milliseconds
        confirm: Prompt the client must confirm before dispatching
    """
    def decorator(func):
        func._action_descriptor = ActionDescriptor(
            mode=ActionMode(mode),
            debounce=debounce,
            confirm=confirm,
        )
        return func

    if fn is not None:
        return decorator(fn)
    return decorator


def computed(fn=None, *, cached: bool = True):
    """Mark a zero-argument method as a derived value included in snapshots."""
    def decorator(func):
        func._computed_descriptor = ComputedDescriptor(cached=cached)
        return func

    if fn is not None:
        return decorator(fn)
    return decorator


def derive_state_name(class_name: str) -> str:
    """``CounterState`` -> ``counter``, ``ShoppingCart`` -> ``shoppingCart``."""
    base = class_name[:-len("State")] if class_name.endswith("State") else class_name
    if not base:
        raise ConfigError(f"Cannot derive a state name from class '{class_name}'")
    return base[0].lower() + base[1:]


# Data-file form of the descriptors, validated before a schema is built.

class _ActionMapping(BaseModel):
    model_config = ConfigDict(extra="forbid")
    mode: ActionMode = ActionMode.SERVER
    debounce: Optional[int] = None
    confirm: Optional[str] = None


class _ComputedMapping(BaseModel):
    model_config = ConfigDict(extra="forbid")
    cached: bool = True


class _StateMapping(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: Optional[str] = None
    persist: PersistMode = PersistMode.SESSION
    sync: bool = True
    scope: StateScope = StateScope.USER
    display_name: Optional[str] = None
    observable: list[str] = []
    computed: Dict[str, _ComputedMapping] = {}
    actions: Dict[str, _ActionMapping] = {}


@dataclass(frozen=True)
class StateSchema:
    """
    The declared mapping for one state type.

    Built once at registration. The proxy and registry only read these tables,
    they never introspect the state class per call.
    """
    descriptor: StateDescriptor
    fields: Dict[str, str]  # attribute name -> serialized key
    observable: FrozenSet[str]
    computed: Dict[str, ComputedSpec] = field(default_factory=dict)
    actions: Dict[str, ActionSpec] = field(default_factory=dict)

    def observable_keys(self) -> Dict[str, str]:
        """Attribute -> serialized key, restricted to observable fields."""
        return {attr: key for attr, key in self.fields.items() if attr in self.observable}

    def actions_metadata(self) -> Dict[str, Dict[str, Any]]:
        return {name: spec.descriptor.to_wire() for name, spec in self.actions.items()}

    @classmethod
    def from_class(cls, state_type: Type) -> 'StateSchema':
        """Build the schema from the decorators on ``state_type``."""
        descriptor = state_type.__dict__.get("__state_descriptor__")
        if not isinstance(descriptor, StateDescriptor):
            raise ConfigError(f"{state_type.__name__} has no state descriptor; decorate it with @state")

        fields, observable = _model_fields(state_type)
        for attr in list(fields):
            metadata = state_type.model_fields[attr].metadata
            if any(isinstance(m, Observable) for m in metadata):
                observable.add(attr)

        computed: Dict[str, ComputedSpec] = {}
        actions: Dict[str, ActionSpec] = {}
        for klass in reversed(state_type.__mro__):
            for attr, member in vars(klass).items():
                func = getattr(member, "__func__", member)
                if hasattr(func, "_computed_descriptor"):
                    computed[attr] = ComputedSpec(attr, func._computed_descriptor, func)
                if hasattr(func, "_action_descriptor"):
                    actions[attr] = _action_spec(attr, func._action_descriptor, func)

        return cls(
            descriptor=descriptor,
            fields=fields,
            observable=frozenset(observable),
            computed=computed,
            actions=actions,
        )

    @classmethod
    def from_mapping(cls, state_type: Type, mapping: Mapping[str, Any]) -> 'StateSchema':
        """
        Build the schema from a plain mapping, e.g. loaded from a JSON file.

        Expected shape::

            {"name": "counter", "persist": "session", "observable": ["count"],
             "computed": {"doubled": {"cached": true}},
             "actions": {"increment": {"mode": "server", "debounce": null}}}

        Raises:
            ConfigError: if the mapping is malformed or names members that
                ``state_type`` does not have
        """
        try:
            spec = _StateMapping.model_validate(dict(mapping))
        except ValidationError as e:
            raise ConfigError(f"Invalid state mapping for {state_type.__name__}: {e}") from e

        descriptor = StateDescriptor(
            persist=spec.persist,
            sync=spec.sync,
            scope=spec.scope,
            display_name=spec.display_name,
            name=spec.name,
        )

        fields, observable = _model_fields(state_type)
        for attr in spec.observable:
            if attr not in fields:
                raise ConfigError(f"{state_type.__name__} has no field '{attr}'")
            observable.add(attr)

        computed = {}
        for attr, options in spec.computed.items():
            func = _member(state_type, attr)
            computed[attr] = ComputedSpec(attr, ComputedDescriptor(cached=options.cached), func)

        actions = {}
        for attr, options in spec.actions.items():
            func = _member(state_type, attr)
            action_descriptor = ActionDescriptor(mode=options.mode, debounce=options.debounce, confirm=options.confirm)
            actions[attr] = _action_spec(attr, action_descriptor, func)

        return cls(
            descriptor=descriptor,
            fields=fields,
            observable=frozenset(observable),
            computed=computed,
            actions=actions,
        )


def _model_fields(state_type: Type):
    if not (isinstance(state_type, type) and issubclass(state_type, BaseModel)):
        raise ConfigError(f"{state_type!r} is not a pydantic model")
    fields = {
        attr: (info.alias or attr)
        for attr, info in state_type.model_fields.items()
    }
    return fields, set()


def _member(state_type: Type, attr: str) -> Callable:
    member = inspect.getattr_static(state_type, attr, None)
    func = getattr(member, "__func__", member)
    if not callable(func):
        raise ConfigError(f"{state_type.__name__} has no method '{attr}'")
    return func


def _action_spec(name: str, descriptor: ActionDescriptor, func: Callable) -> ActionSpec:
    return ActionSpec(
        name=name,
        descriptor=descriptor,
        func=func,
        signature=inspect.signature(func),
        is_async=inspect.iscoroutinefunction(func),
    )
