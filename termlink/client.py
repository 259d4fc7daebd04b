"""Terminal client facade.

Wires the session registry, input and output paths, connection state machine
and file transfer together on top of a single transport, and exposes the
operations a front end needs.
"""

from typing import Optional

from loguru import logger

from termlink.connection import ConnectionStateMachine, CredentialBroker, StateSource
from termlink.hosts import HostStore
from termlink.session import (
    InputCoalescer,
    OutputDrainPipeline,
    SessionRegistry,
    SinkFactory,
    TerminalTabSession,
)
from termlink.transfer import FileBrowser, TransferClient
from termlink.transport import RpcChannel, Transport
from termlink.ui import ClientUI


class TerminalClient:
    """User-level operations over hosts, tabs and remote files."""

    def __init__(
        self,
        transport: Transport,
        hosts: HostStore,
        ui: ClientUI,
        sink_factory: SinkFactory,
        source: Optional[StateSource] = None,
        remember_passwords: Optional[bool] = None,
    ) -> None:
        self.transport = transport
        self.hosts = hosts
        self.ui = ui
        self.channel = RpcChannel(transport)
        self.registry = SessionRegistry(sink_factory)
        self.input = InputCoalescer(self.registry, self.channel)
        self.output = OutputDrainPipeline(self.registry)
        self.broker = CredentialBroker(self.channel, hosts, ui, remember_passwords=remember_passwords)
        self.machine = ConnectionStateMachine(
            self.registry, self.channel, self.broker, hosts, ui, source=source
        )
        self.transfer = TransferClient(self.channel, self.broker, hosts)
        self.files = FileBrowser(self.registry, self.transfer)

        transport.set_push_handler(self.output.push)

    async def start(self) -> None:
        self.machine.start()

    async def stop(self) -> None:
        """Stop polling, flush pending input and close the transport."""
        await self.machine.stop()
        await self.input.drain()
        self.transport.set_push_handler(None)
        await self.transport.close()
        logger.info("Terminal client stopped")

    # ------------------------------------------------------------------
    # Hosts and tabs
    # ------------------------------------------------------------------

    async def open_host(self, host_id: int) -> TerminalTabSession:
        """Show a host's active tab and connect it."""
        tab = self.registry.activate(host_id)
        await self.machine.connect(tab.host_id, tab.tab_id)
        return tab

    async def add_tab(self, host_id: int) -> int:
        tab_id = self.registry.add_tab(host_id)
        await self.machine.connect(host_id, tab_id)
        return tab_id

    async def close_tab(self, host_id: int, tab_id: int) -> bool:
        """Close a tab; the host's last tab cannot be closed.

        The closed tab is disconnected on the host side and, when it was the
        visible one, the newly activated tab is connected.
        """
        tab = self.registry.get_tab(host_id, tab_id)
        result = self.registry.close_tab(host_id, tab_id)
        if not result.closed:
            return False
        if tab is not None:
            self.input.discard(tab)
        await self.machine.disconnect(host_id, tab_id)
        if result.activated is not None:
            await self.machine.connect(*result.activated)
        return True

    async def switch_tab(self, host_id: int, tab_id: int) -> None:
        tab = self.registry.activate(host_id, tab_id)
        if tab is not None and tab.state.is_disconnected:
            await self.machine.connect(host_id, tab_id)

    def rename_tab(self, host_id: int, tab_id: int, title: str) -> bool:
        return self.registry.rename_tab(host_id, tab_id, title)

    def submit(self, host_id: int, tab_id: int, data: bytes | str) -> None:
        self.input.submit(host_id, tab_id, data)

    async def resize(self, host_id: int, tab_id: int) -> None:
        await self.machine.resize(host_id, tab_id)

    async def connect(self, host_id: int, tab_id: Optional[int] = None) -> bool:
        return await self.machine.connect(host_id, tab_id)

    async def disconnect(self, host_id: int, tab_id: int) -> bool:
        return await self.machine.disconnect(host_id, tab_id)

    def reset(self) -> None:
        """Drop every session and cached password, e.g. after a config import."""
        for tab in list(self.registry.tabs.values()):
            self.input.discard(tab)
        for host_id in list(self.registry.hosts):
            self.broker.forget(host_id)
        self.registry.reset()
