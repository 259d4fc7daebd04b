"""Registry of hosts, their terminal tabs, and the active tab.

An explicit object owning keyed collections; components that need it get it
passed by reference. All mutation happens on the event loop thread, so no
locking is required, but callers that suspend must re-check
:meth:`SessionRegistry.is_active` (or compare tab identity) afterwards.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from loguru import logger

from termlink.ui import RenderSink

from .types import HostSession, TabKey, TerminalTabSession

if TYPE_CHECKING:
    from termlink.transfer.types import DirectoryListing

SinkFactory = Callable[[int, int], RenderSink]


@dataclass
class CloseResult:
    """Outcome of :meth:`SessionRegistry.close_tab`."""

    closed: bool
    activated: Optional[TabKey] = None


class SessionRegistry:
    """Single source of truth for which (host, tab) pairs exist."""

    def __init__(self, sink_factory: SinkFactory) -> None:
        self._sink_factory = sink_factory
        self.hosts: dict[int, HostSession] = {}
        self.tabs: dict[TabKey, TerminalTabSession] = {}
        self.browsers: dict[int, "DirectoryListing"] = {}
        self.active: Optional[TabKey] = None

    def ensure_host(self, host_id: int) -> HostSession:
        """Get the host's session, creating it with a first tab id if needed."""
        host = self.hosts.get(host_id)
        if host is None:
            host = HostSession(host_id=host_id)
            host.active_tab = host.allocate_tab_id()
            host.register_tab(host.active_tab)
            self.hosts[host_id] = host
            logger.debug(f"Created host session {host_id}")
        return host

    def ensure_tab(self, host_id: int, tab_id: Optional[int] = None) -> TerminalTabSession:
        """Get an existing tab session or lazily create one.

        Args:
            host_id: Host identifier
            tab_id: Tab identifier; None selects the host's active tab

        Returns:
            The tab session (never a second one for the same pair)
        """
        host = self.ensure_host(host_id)
        if tab_id is None:
            tab_id = host.active_tab

        key = (host_id, tab_id)
        tab = self.tabs.get(key)
        if tab is not None:
            return tab

        host.register_tab(tab_id)
        tab = TerminalTabSession(
            host_id=host_id,
            tab_id=tab_id,
            sink=self._sink_factory(host_id, tab_id),
        )
        tab.sink.set_visible(self.active == key)
        self.tabs[key] = tab
        logger.debug(f"Created tab session {host_id}:{tab_id} (total: {len(self.tabs)})")
        return tab

    def get_tab(self, host_id: int, tab_id: int) -> Optional[TerminalTabSession]:
        return self.tabs.get((host_id, tab_id))

    def is_active(self, host_id: int, tab_id: int) -> bool:
        return self.active == (host_id, tab_id)

    def active_tab(self) -> Optional[TerminalTabSession]:
        if self.active is None:
            return None
        return self.tabs.get(self.active)

    def activate(self, host_id: Optional[int], tab_id: Optional[int] = None) -> Optional[TerminalTabSession]:
        """Make exactly one tab visible.

        Passing ``host_id=None`` hides the current tab and clears the active pair.
        """
        previous = self.active_tab()

        if host_id is None:
            if previous is not None:
                previous.sink.set_visible(False)
            self.active = None
            return None

        tab = self.ensure_tab(host_id, tab_id)
        if previous is not None and previous is not tab:
            previous.sink.set_visible(False)
        self.hosts[host_id].active_tab = tab.tab_id
        self.active = tab.key
        tab.sink.set_visible(True)
        return tab

    def add_tab(self, host_id: int) -> int:
        """Allocate the next unused tab id for a host and activate it.

        Connecting the new tab is the caller's responsibility.
        """
        host = self.ensure_host(host_id)
        tab_id = host.allocate_tab_id()
        host.register_tab(tab_id)
        self.activate(host_id, tab_id)
        logger.info(f"Added tab {host_id}:{tab_id}")
        return tab_id

    def close_tab(self, host_id: int, tab_id: int) -> CloseResult:
        """Remove a tab, refusing to remove the host's last one.

        If the closed tab was active, the first remaining tab is activated
        and returned in :attr:`CloseResult.activated`.
        """
        host = self.hosts.get(host_id)
        if host is None or tab_id not in host.tab_order:
            return CloseResult(closed=False)
        if len(host.tab_order) <= 1:
            logger.debug(f"Refusing to close last tab {host_id}:{tab_id}")
            return CloseResult(closed=False)

        was_active = self.is_active(host_id, tab_id)
        host.tab_order.remove(tab_id)
        host.titles.pop(tab_id, None)
        self._release((host_id, tab_id))

        activated = None
        if host.active_tab == tab_id:
            host.active_tab = host.tab_order[0]
        if was_active:
            self.active = None
            tab = self.activate(host_id, host.tab_order[0])
            activated = tab.key if tab else None

        logger.info(f"Closed tab {host_id}:{tab_id} (remaining: {len(host.tab_order)})")
        return CloseResult(closed=True, activated=activated)

    def rename_tab(self, host_id: int, tab_id: int, title: str) -> bool:
        host = self.hosts.get(host_id)
        title = title.strip()
        if host is None or tab_id not in host.tab_order or not title:
            return False
        host.titles[tab_id] = title
        return True

    def browser(self, host_id: int) -> "DirectoryListing":
        """Get the host's file browser state, creating it if needed."""
        from termlink.transfer.types import DirectoryListing

        listing = self.browsers.get(host_id)
        if listing is None:
            listing = DirectoryListing(host_id=host_id)
            self.browsers[host_id] = listing
        return listing

    def reset(self) -> None:
        """Drop every host, tab and browser (e.g. after a config import)."""
        for key in list(self.tabs):
            self._release(key)
        self.hosts.clear()
        self.browsers.clear()
        self.active = None
        logger.info("Session registry reset")

    def _release(self, key: TabKey) -> None:
        tab = self.tabs.pop(key, None)
        if tab is None:
            return
        tab.released = True
        tab.output_queue.clear()
        tab.output_cursor = 0
        try:
            tab.sink.dispose()
        except Exception as e:
            logger.warning(f"Failed to dispose sink for {key[0]}:{key[1]}: {e}")
