"""Abstract transport bridge and payload encoding helpers."""

import base64
from abc import ABC, abstractmethod
from typing import Callable, Optional

# (host_id, tab_id, data_b64)
PushHandler = Callable[[int, int, str], None]


def b64encode(data: bytes | str) -> str:
    """Encode bytes (or UTF-8 text) as standard base64."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("ascii")


def b64decode(data: str) -> bytes:
    """Decode standard base64, rejecting malformed input."""
    return base64.b64decode(data, validate=True)


class Transport(ABC):
    """Request/response channel to the process that speaks the remote protocol.

    Accepts one encoded request at a time and returns one encoded response.
    Output frames may additionally be pushed at any time through the handler
    installed with :meth:`set_push_handler`.
    """

    def __init__(self) -> None:
        self._push_handler: Optional[PushHandler] = None

    def set_push_handler(self, handler: Optional[PushHandler]) -> None:
        self._push_handler = handler

    def dispatch_push(self, host_id: int, tab_id: int, data_b64: str) -> None:
        """Deliver a pushed output frame to the installed handler."""
        if self._push_handler is not None:
            self._push_handler(host_id, tab_id, data_b64)

    @abstractmethod
    async def request(self, payload: str) -> str:
        """Send one encoded request and return its encoded response.

        Raises:
            TransportError: If the round-trip failed.
        """

    async def close(self) -> None:
        """Release transport resources."""
