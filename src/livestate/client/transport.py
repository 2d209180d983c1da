"""
Action transport.

Sends action calls to the server's state endpoint over HTTP.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from ..config import ClientConfig, SecurityConfig
from ..errors import TransportError

logger = logging.getLogger(__name__)


class ActionTransport(ABC):
    """Delivers ``{state, action, payload}`` and returns the decoded response body."""

    @abstractmethod
    async def send(self, state: str, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass


class HttpActionTransport(ActionTransport):
    """
    POSTs action calls with ``httpx``.

    Error responses that carry a JSON body are returned as-is so the store
    can report the server's message; anything else is a ``TransportError``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        state_url: str,
        nonce: str = "",
        session: str = "",
        nonce_header: str = SecurityConfig.nonce_header,
        session_header: str = SecurityConfig.session_header,
    ):
        self.client = client
        self.state_url = state_url
        self.nonce = nonce
        self.session = session
        self.nonce_header = nonce_header
        self.session_header = session_header

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: ClientConfig, base_url: Optional[str] = None) -> 'HttpActionTransport':
        state_url = config.state_url if base_url is None else base_url.rstrip("/") + config.state_url
        return cls(client, state_url, nonce=config.nonce, session=config.session)

    async def send(self, state: str, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            self.nonce_header: self.nonce,
            self.session_header: self.session,
        }
        body = {"state": state, "action": action, "payload": payload}
        try:
            response = await self.client.post(self.state_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Request for {state}.{action} failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            raise TransportError(
                f"Invalid response for {state}.{action} (HTTP {response.status_code})"
            ) from None
        if not isinstance(data, dict):
            raise TransportError(f"Invalid response for {state}.{action} (HTTP {response.status_code})")
        return data
