"""Transport bridge and JSON RPC channel."""

from .base import PushHandler, Transport, b64decode, b64encode
from .channel import RpcChannel
from .errors import RpcError, TransportError
from .stdio import SubprocessBridge

__all__ = [
    "PushHandler",
    "RpcChannel",
    "RpcError",
    "SubprocessBridge",
    "Transport",
    "TransportError",
    "b64decode",
    "b64encode",
]
