"""Terminal session types and dataclasses."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from termlink.ui import RenderSink

TabKey = tuple[int, int]


class ConnectionStatus(Enum):
    """Host-reported state of a tab's remote process."""

    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionState:
    """A polled connection state value."""

    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    attempts: int = 0
    error_code: Optional[str] = None
    host_port: Optional[str] = None
    fingerprint: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def disconnected(cls) -> "ConnectionState":
        return cls()

    @classmethod
    def connecting(cls) -> "ConnectionState":
        """Optimistic placeholder set right after a connect request is issued."""
        return cls(status=ConnectionStatus.RECONNECTING, attempts=0)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "ConnectionState":
        """Build from a ``state`` response."""
        try:
            status = ConnectionStatus(data.get("state") or "disconnected")
        except ValueError:
            status = ConnectionStatus.DISCONNECTED
        try:
            attempts = int(data.get("attempts") or 0)
        except (TypeError, ValueError):
            attempts = 0
        return cls(
            status=status,
            attempts=attempts,
            error_code=data.get("errCode") or None,
            host_port=data.get("hostPort") or None,
            fingerprint=data.get("fingerprint") or None,
            detail=data.get("detail") or None,
        )

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    @property
    def is_disconnected(self) -> bool:
        return self.status == ConnectionStatus.DISCONNECTED


@dataclass
class HostSession:
    """Tabs opened for one host."""

    host_id: int
    tab_order: list[int] = field(default_factory=list)
    titles: dict[int, str] = field(default_factory=dict)
    active_tab: int = 1
    next_tab_id: int = 1

    def allocate_tab_id(self) -> int:
        tab_id = self.next_tab_id
        self.next_tab_id += 1
        return tab_id

    def register_tab(self, tab_id: int) -> None:
        if tab_id not in self.tab_order:
            self.tab_order.append(tab_id)
            self.titles.setdefault(tab_id, f"Tab {tab_id}")
        # Tab ids are never reused, even after a close
        self.next_tab_id = max(self.next_tab_id, tab_id + 1)


@dataclass
class TerminalTabSession:
    """Per-(host, tab) I/O and connection state."""

    host_id: int
    tab_id: int
    sink: RenderSink

    # Output: undecoded chunks not yet applied to the sink
    output_queue: list[bytes | str] = field(default_factory=list)
    output_cursor: int = 0
    sink_writing: bool = False
    drain_task: Optional[asyncio.Task] = field(default=None, repr=False)

    # Input: bytes waiting for the next input request
    pending_input: bytearray = field(default_factory=bytearray)
    input_in_flight: bool = False
    flush_requested: bool = False
    input_timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    # Connection
    state: ConnectionState = field(default_factory=ConnectionState.disconnected)
    confirmed_connected: bool = False
    connect_in_flight: bool = False
    declined_codes: set[str] = field(default_factory=set)
    retried_codes: set[str] = field(default_factory=set)

    released: bool = False

    @property
    def key(self) -> TabKey:
        return (self.host_id, self.tab_id)

    @property
    def has_pending_output(self) -> bool:
        return self.output_cursor < len(self.output_queue)
