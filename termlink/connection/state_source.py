"""Sources of host-reported connection state.

The state machine only depends on :class:`StateSource`; polling over the RPC
channel is the bundled implementation.
"""

from abc import ABC, abstractmethod

from termlink.session.types import ConnectionState
from termlink.transport import RpcChannel


class StateSource(ABC):
    """Fetches the host-reported state of one tab."""

    @abstractmethod
    async def fetch(self, host_id: int, tab_id: int) -> ConnectionState:
        """Return the current state.

        Raises:
            TransportError, RpcError: If the state could not be obtained
        """


class PollingStateSource(StateSource):
    """Issues a ``state`` request per fetch."""

    def __init__(self, channel: RpcChannel) -> None:
        self.channel = channel

    async def fetch(self, host_id: int, tab_id: int) -> ConnectionState:
        data = await self.channel.call("state", hostId=host_id, tabId=tab_id)
        return ConnectionState.from_response(data)
