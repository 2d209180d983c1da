"""
Hydration Payload

Embeds the snapshot of every synced state loaded during a request, plus the
action metadata for all registered states, into the rendered page.
"""

import json
from typing import Any, Dict, Optional

from fasthtml.common import Script
from pydantic_core import to_jsonable_python

from ..core.registry import StateContext

HYDRATION_ELEMENT_ID = "livestate-hydration"


def dumps_for_script(data: Any) -> str:
    """JSON for a ``<script>`` body; ``<`` is escaped so the element cannot be closed early."""
    return json.dumps(to_jsonable_python(data)).replace("<", "\\u003c")


class HydrationPayloadBuilder:
    """
    Builds the hydration payload for one request.

    ``render()`` emits the script element once; later calls return ``None``
    so layouts can call it unconditionally.
    """

    def __init__(self, context: StateContext, element_id: str = HYDRATION_ELEMENT_ID):
        self.context = context
        self.element_id = element_id
        self._rendered = False

    def build(self) -> Dict[str, Any]:
        return {
            "states": self.context.get_hydration_data(),
            "actions": self.context.get_actions_metadata(),
        }

    def render(self) -> Optional[Any]:
        if self._rendered:
            return None
        self._rendered = True
        return Script(dumps_for_script(self.build()), type="application/json", id=self.element_id)

    @property
    def rendered(self) -> bool:
        return self._rendered

    def __ft__(self):
        return self.render() or ""
