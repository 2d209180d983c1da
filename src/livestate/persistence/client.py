"""
LiveState Persistence Layer - Client Local Storage

States with ``persist=local`` live in the browser. The server never loads or
stores them.
"""

from typing import Any, Dict

from .base import StateStorage


class ClientLocalStorage(StateStorage):
    """
    Client-side storage placeholder.

    All state data is kept by the client; every operation here is a no-op.
    """

    def get(self, session_id: str, name: str) -> Dict[str, Any]:
        return {}

    def save(self, session_id: str, name: str, data: Dict[str, Any]) -> None:
        pass

    def delete(self, session_id: str, name: str) -> None:
        pass

    def delete_expired(self) -> int:
        return 0
