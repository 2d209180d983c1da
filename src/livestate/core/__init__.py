"""
LiveState Core Module

Domain layer: state declarations, the proxy that guards them and the
registry that loads and saves them. Framework-agnostic.
"""

from .descriptors import (
    ActionDescriptor,
    ActionMode,
    ComputedDescriptor,
    Observable,
    PersistMode,
    StateDescriptor,
    StateSchema,
    StateScope,
    action,
    computed,
    derive_state_name,
    state,
)
from .events import StateChanged, StateUpdated
from .proxy import StateProxy
from .registry import RegistryEntry, StateContext, StateRegistry
from .base import State

__all__ = [
    "State",
    "state",
    "action",
    "computed",
    "Observable",
    "PersistMode",
    "StateScope",
    "ActionMode",
    "StateDescriptor",
    "ActionDescriptor",
    "ComputedDescriptor",
    "StateSchema",
    "derive_state_name",
    "StateChanged",
    "StateUpdated",
    "StateProxy",
    "RegistryEntry",
    "StateRegistry",
    "StateContext",
]
