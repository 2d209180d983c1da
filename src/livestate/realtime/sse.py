"""
Server-Sent Events framing.

``SSEMessage`` serializes one event for the wire; ``parse_sse`` turns a
stream of text lines back into messages on the client side.
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional

from pydantic_core import to_jsonable_python

from ..errors import ParseError


@dataclass
class SSEMessage:
    """Server-Sent Event message."""

    event: str  # Event type (maps to SSE 'event' field)
    data: Any  # JSON payload; a str is sent verbatim
    id: Optional[str] = None  # Event ID for reconnection
    retry: Optional[int] = None  # Retry interval in ms

    def serialize(self) -> str:
        """Serialize to SSE format."""
        lines = []
        if self.id:
            lines.append(f"id: {self.id}")
        if self.event:
            lines.append(f"event: {self.event}")
        if self.retry is not None:
            lines.append(f"retry: {self.retry}")

        data_str = self.data if isinstance(self.data, str) else json.dumps(to_jsonable_python(self.data))
        # Data can be multiline - each line needs 'data:' prefix
        for line in data_str.split("\n"):
            lines.append(f"data: {line}")

        lines.append("")  # Empty line terminates the event
        return "\n".join(lines) + "\n"

    def json(self) -> Dict[str, Any]:
        """
        Decode the data field as JSON.

        Raises:
            ParseError: if the data is not valid JSON
        """
        if not isinstance(self.data, str):
            return self.data
        try:
            return json.loads(self.data)
        except ValueError as e:
            raise ParseError(f"Malformed payload for event '{self.event}': {e}") from e


async def parse_sse(lines: AsyncIterable[str]) -> AsyncIterator[SSEMessage]:
    """
    Parse an event stream, one line at a time, into messages.

    Comment lines are skipped and events without data are dropped, as the
    EventSource algorithm does. The event type defaults to ``message``.
    """
    event: Optional[str] = None
    data: List[str] = []
    event_id: Optional[str] = None
    retry: Optional[int] = None

    async for raw in lines:
        line = raw.rstrip("\r\n")
        if not line:
            if data:
                yield SSEMessage(event=event or "message", data="\n".join(data), id=event_id, retry=retry)
            event, data, retry = None, [], None
            continue
        if line.startswith(":"):
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            event_id = value
        elif name == "retry" and value.isdigit():
            retry = int(value)

    if data:
        yield SSEMessage(event=event or "message", data="\n".join(data), id=event_id, retry=retry)
