"""
LiveState Client Module

The client half of the sync protocol: a store that mirrors hydrated states,
the HTTP transport for action calls and the realtime channel that applies
server pushes.
"""

from .bindings import Bindings
from .debounce import Debouncer
from .realtime import Backoff, ConnectionStatus, RealtimeChannel
from .store import ClientStateStore
from .transport import ActionTransport, HttpActionTransport

__all__ = [
    "ClientStateStore",
    "Bindings",
    "Debouncer",
    "ActionTransport",
    "HttpActionTransport",
    "RealtimeChannel",
    "ConnectionStatus",
    "Backoff",
]
