"""
LiveState - Reactive State Sync for FastHTML

Declare state classes once on the server; LiveState persists them, embeds
their snapshot in rendered pages, runs actions called from the browser and
pushes changes to connected clients.
"""

from .config import (
    ClientConfig,
    Environment,
    LiveStateConfig,
    LoggingConfig,
    RealtimeConfig,
    SecurityConfig,
    StorageConfig,
    configure_logging,
)
from .errors import (
    ActionError,
    BadRequestError,
    ConfigError,
    LiveStateError,
    NotFoundError,
    ParseError,
    PersistError,
    TransportError,
)
from .core import (
    ActionMode,
    Observable,
    PersistMode,
    State,
    StateContext,
    StateProxy,
    StateRegistry,
    StateScope,
    action,
    computed,
    state,
)
from .persistence import (
    ClientLocalStorage,
    DatabaseStorage,
    EphemeralStorage,
    MemoryCache,
    RedisCache,
    start_all_cleanup,
    stop_all_cleanup,
)
from .app import InProcessBus, HydrationPayloadBuilder, SessionManager
from .realtime import EventBroadcaster
from .adapters.fasthtml import FastHTMLDispatcher, configure_app, datastar_script

__all__ = [
    # Declarations
    'State',
    'state',
    'action',
    'computed',
    'Observable',
    'PersistMode',
    'StateScope',
    'ActionMode',

    # Registry
    'StateRegistry',
    'StateContext',
    'StateProxy',

    # Storage
    'EphemeralStorage',
    'DatabaseStorage',
    'ClientLocalStorage',
    'MemoryCache',
    'RedisCache',
    'start_all_cleanup',
    'stop_all_cleanup',

    # Application service layer
    'InProcessBus',
    'HydrationPayloadBuilder',
    'SessionManager',
    'EventBroadcaster',

    # Adapters
    'FastHTMLDispatcher',
    'configure_app',
    'datastar_script',

    # Configuration
    'LiveStateConfig',
    'StorageConfig',
    'RealtimeConfig',
    'SecurityConfig',
    'LoggingConfig',
    'ClientConfig',
    'Environment',
    'configure_logging',

    # Errors
    'LiveStateError',
    'ConfigError',
    'NotFoundError',
    'PersistError',
    'TransportError',
    'ParseError',
    'ActionError',
    'BadRequestError',
]
