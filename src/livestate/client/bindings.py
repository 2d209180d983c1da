"""
Binding hooks.

The store calls these whenever mirrored data or pending flags change. The
default implementation only logs; UI integrations subclass it.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class Bindings:
    """Receives mirror updates for whatever presents the state."""

    def apply(self, state: str, key: str, value: Any) -> None:
        """One field of ``state`` changed."""
        logger.debug("bind %s.%s = %r", state, key, value)

    def apply_all(self, state: str, data: Dict[str, Any]) -> None:
        """The whole of ``state`` was replaced."""
        for key, value in data.items():
            self.apply(state, key, value)

    def set_pending(self, action_key: str, pending: bool) -> None:
        """A server round trip for ``state.action`` started or finished."""
        logger.debug("pending %s = %s", action_key, pending)
