"""
Application Service Layer

Bridges the web framework and the state domain.

Key components:
- dispatcher: action call validation, execution and wire responses
- hydration: the page-load snapshot embedded in rendered HTML
- session: session resolution and nonces
- bus: change notifications for the realtime broadcaster
"""

from .bus import EventBus, InProcessBus
from .dispatcher import ActionDispatcher, ActionOutcome, run_background
from .hydration import HydrationPayloadBuilder, HYDRATION_ELEMENT_ID
from .session import (
    DatabaseSessionStore,
    MemorySessionStore,
    SessionInfo,
    SessionManager,
    SessionStore,
)

__all__ = [
    'EventBus',
    'InProcessBus',
    'ActionDispatcher',
    'ActionOutcome',
    'run_background',
    'HydrationPayloadBuilder',
    'HYDRATION_ELEMENT_ID',
    'SessionManager',
    'SessionStore',
    'SessionInfo',
    'MemorySessionStore',
    'DatabaseSessionStore',
]
