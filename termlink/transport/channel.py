"""JSON request/response channel over a transport bridge.

Two call categories are exposed:

- ``call``: control-path operations whose failures propagate to the caller.
- ``call_best_effort``: data-path operations (input, resize) whose failures
  are logged and absorbed. Best-effort calls are never retried.
"""

import json
from typing import Any, Optional

from loguru import logger

from .base import Transport
from .errors import RpcError, TransportError


def _compact(request: dict[str, Any]) -> dict[str, Any]:
    """Drop unset fields so the wire payload mirrors ``omitempty`` semantics."""
    return {k: v for k, v in request.items() if v is not None and v != ""}


class RpcChannel:
    """Encodes logical operations as JSON and decodes bridge responses."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport

    async def call(self, request_type: str, **fields: Any) -> dict[str, Any]:
        """Issue a request and return the decoded response.

        Args:
            request_type: Operation name (e.g. "select", "sftp_ls")
            **fields: Request fields, already in wire (camelCase) form

        Returns:
            The decoded response object

        Raises:
            TransportError: The round-trip failed or the response was not JSON
            RpcError: The bridge reported ``ok: false``
        """
        request = _compact({"type": request_type, **fields})
        try:
            raw = await self.transport.request(json.dumps(request))
        except TransportError:
            raise
        except (OSError, ConnectionError) as e:
            raise TransportError(f"{request_type} failed: {e}") from e

        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise TransportError(f"{request_type}: malformed response") from e
        if not isinstance(data, dict):
            raise TransportError(f"{request_type}: malformed response")

        if not data.get("ok"):
            raise RpcError(
                code=str(data.get("error") or "unknown_error"),
                detail=data.get("detail"),
                payload=data,
            )
        return data

    async def call_best_effort(self, request_type: str, **fields: Any) -> Optional[dict[str, Any]]:
        """Issue a request whose failure must not interrupt the caller.

        Returns:
            The decoded response, or None if the request failed
        """
        try:
            return await self.call(request_type, **fields)
        except (TransportError, RpcError) as e:
            logger.debug(f"Best-effort {request_type} failed: {e}")
            return None
