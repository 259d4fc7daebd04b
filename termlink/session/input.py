"""Keystroke coalescing.

Small, frequent keystroke events are batched per tab into few ``input``
requests. Bytes are never dropped or reordered and at most one input request
per tab is outstanding at any time.
"""

import asyncio
from typing import Optional

from loguru import logger

from termlink.config import config
from termlink.transport import RpcChannel, b64encode

from .registry import SessionRegistry
from .types import TerminalTabSession


class InputCoalescer:
    """Batches raw keystroke/paste bytes into single-writer input requests."""

    def __init__(
        self,
        registry: SessionRegistry,
        channel: RpcChannel,
        batch_window_ms: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.channel = channel
        if batch_window_ms is None:
            batch_window_ms = config.timings.input.batch_window_ms
        self.batch_window = batch_window_ms / 1000.0
        self._tasks: set[asyncio.Task] = set()

    def submit(self, host_id: int, tab_id: int, data: bytes | str) -> None:
        """Queue bytes typed or pasted into a tab.

        Dropped when the tab is unknown or was last seen disconnected; the
        state poll may lag the actual connect, so this is not an error.
        """
        tab = self.registry.get_tab(host_id, tab_id)
        if tab is None or tab.state.is_disconnected:
            logger.debug(f"Dropping input for {host_id}:{tab_id} (not connected)")
            return
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            return

        tab.pending_input.extend(data)

        # Interactive commands must not wait out the batching window
        if b"\r" in data:
            self._flush(tab)
            return

        if tab.input_timer is not None:
            tab.input_timer.cancel()
        loop = asyncio.get_running_loop()
        tab.input_timer = loop.call_later(self.batch_window, self._flush, tab)

    def _flush(self, tab: TerminalTabSession) -> None:
        if tab.input_timer is not None:
            tab.input_timer.cancel()
            tab.input_timer = None
        if tab.released or not tab.pending_input:
            return
        if tab.input_in_flight:
            tab.flush_requested = True
            return

        data = bytes(tab.pending_input)
        tab.pending_input.clear()
        tab.flush_requested = False
        tab.input_in_flight = True

        task = asyncio.create_task(self._send(tab, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, tab: TerminalTabSession, data: bytes) -> None:
        try:
            # Keystrokes are not idempotent; never retry a failed send
            await self.channel.call_best_effort(
                "input",
                hostId=tab.host_id,
                tabId=tab.tab_id,
                dataB64=b64encode(data),
            )
        finally:
            tab.input_in_flight = False
            if tab.flush_requested:
                self._flush(tab)

    def discard(self, tab: TerminalTabSession) -> None:
        """Drop a released tab's pending bytes and batching timer."""
        if tab.input_timer is not None:
            tab.input_timer.cancel()
            tab.input_timer = None
        tab.pending_input.clear()
        tab.flush_requested = False

    async def drain(self) -> None:
        """Wait until every in-flight input request has resolved."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
