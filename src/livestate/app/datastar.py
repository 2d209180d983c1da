from typing import Any, Dict, List, Optional

from datastar_py.starlette import read_signals
from starlette.requests import Request

RESERVED_QUERY_KEYS = ("state", "action", "datastar")


def is_datastar_request(request: Request) -> bool:
    """Check if the request was sent by Datastar."""
    return "Datastar-Request" in request.headers


def _dig(d: Dict[str, Any], path: List[str]) -> Optional[Dict[str, Any]]:
    """Walk `d` following path segments; return the subtree or None."""
    cur: Any = d
    for seg in path:
        if not isinstance(cur, dict) or seg not in cur:
            return None
        cur = cur[seg]
    return cur if isinstance(cur, dict) else None


async def read_action_payload(request: Request, namespace: str) -> Dict[str, Any]:
    """
    Action payload of a Datastar request.

    The signals under ``namespace`` (dots allowed) form the payload; extra
    query parameters, as produced by ``action_url``, override them.
    """
    signals = await read_signals(request) or {}
    payload = dict(_dig(signals, namespace.split(".")) or {})
    for key, value in request.query_params.items():
        if key not in RESERVED_QUERY_KEYS:
            payload[key] = value
    return payload
