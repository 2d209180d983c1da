"""
LiveState error taxonomy.

Every error raised by the package derives from ``LiveStateError`` so hosts can
catch the whole family at a boundary.
"""


class LiveStateError(Exception):
    """Base class for all LiveState errors."""
    pass


class ConfigError(LiveStateError):
    """A state descriptor is missing or malformed. Fatal at registration."""
    pass


class NotFoundError(LiveStateError):
    """Unknown state name or unknown action."""
    pass


class PersistError(LiveStateError):
    """A storage backend failed to read or write state."""
    pass


class TransportError(LiveStateError):
    """Client-side network failure while talking to the server."""
    pass


class ParseError(LiveStateError):
    """Malformed hydration payload or event payload."""
    pass


class ActionError(LiveStateError):
    """The server executed the action call and reported a failure."""

    def __init__(self, message: str, state: str = None, action: str = None):
        super().__init__(message)
        self.state = state
        self.action = action


class BadRequestError(LiveStateError):
    """An action call was malformed or cannot be executed on the server."""
    pass
