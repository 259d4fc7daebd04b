"""Interfaces to the visual layer: rendering sinks and the interactive UI."""

from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from termlink.hosts import HostRecord
    from termlink.session.types import ConnectionState


class RenderSink(Protocol):
    """Opaque terminal widget for one tab.

    ``write`` resolves once the widget finished applying the bytes; the
    output pipeline never issues a second write before that.
    """

    async def write(self, data: bytes) -> None: ...

    def measure(self) -> Optional[tuple[int, int]]:
        """Return the current (cols, rows), or None if not measurable."""
        ...

    def set_visible(self, visible: bool) -> None: ...

    def dispose(self) -> None: ...


class ClientUI(Protocol):
    """Recipient of notifications and host of the interactive prompts."""

    async def confirm_trust(
        self,
        host: "HostRecord",
        host_port: Optional[str],
        fingerprint: Optional[str],
        changed: bool,
    ) -> bool:
        """Ask whether an unknown or changed host key should be trusted."""
        ...

    async def prompt_password(self, host: "HostRecord") -> Optional[str]:
        """Ask for a password; None means the user cancelled."""
        ...

    def notify_error(self, message: str) -> None: ...

    def state_changed(self, host_id: int, tab_id: int, state: "ConnectionState") -> None: ...
