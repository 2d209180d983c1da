"""
State Events

Notifications published on the event bus when state changes.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class StateChanged:
    """An observable field was written through a proxy."""
    state: str
    field: str
    old_value: Any
    new_value: Any
    session_id: Optional[str] = None


@dataclass
class StateUpdated:
    """An action completed and the state's snapshot changed."""
    state: str
    data: Dict[str, Any]
    session_id: Optional[str] = None
    broadcast: bool = False
