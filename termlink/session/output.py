"""Output drain pipeline.

Pushed output chunks are queued per tab and applied to the tab's rendering
sink in bounded slices, one write at a time, in push order.
"""

import asyncio
import binascii
from typing import Optional

from loguru import logger

from termlink.config import config
from termlink.transport import b64decode

from .registry import SessionRegistry
from .types import TerminalTabSession


class OutputDrainPipeline:
    """Buffers pushed output and flushes it to sinks in time/size slices."""

    def __init__(
        self,
        registry: SessionRegistry,
        max_bytes: Optional[int] = None,
        max_ms: Optional[float] = None,
    ) -> None:
        self.registry = registry
        drain = config.timings.drain
        self.max_bytes = max_bytes if max_bytes is not None else drain.max_bytes
        self.max_seconds = (max_ms if max_ms is not None else drain.max_ms) / 1000.0

    def push(self, host_id: int, tab_id: int, chunk: bytes | str) -> None:
        """Queue an output chunk; base64 text is decoded lazily at drain time."""
        tab = self.registry.get_tab(host_id, tab_id)
        if tab is None:
            logger.debug(f"Dropping output for unknown tab {host_id}:{tab_id}")
            return
        if not chunk:
            return
        tab.output_queue.append(chunk)
        self._schedule(tab)

    def _schedule(self, tab: TerminalTabSession) -> None:
        if tab.drain_task is not None:
            return
        tab.drain_task = asyncio.create_task(self._drain(tab))

    async def _drain(self, tab: TerminalTabSession) -> None:
        try:
            while tab.has_pending_output and not tab.released:
                data = self._take_slice(tab)
                if not data:
                    continue
                tab.sink_writing = True
                try:
                    await tab.sink.write(data)
                except Exception as e:
                    logger.warning(f"Sink write failed for {tab.host_id}:{tab.tab_id}: {e}")
                finally:
                    tab.sink_writing = False
                # Yield between passes so a flood cannot starve the loop
                await asyncio.sleep(0)
        finally:
            tab.drain_task = None

    def _take_slice(self, tab: TerminalTabSession) -> bytes:
        """Decode and concatenate queued chunks up to the byte and time caps."""
        loop = asyncio.get_running_loop()
        started = loop.time()
        queue = tab.output_queue
        buf = bytearray()

        while tab.output_cursor < len(queue):
            chunk = queue[tab.output_cursor]
            if isinstance(chunk, str):
                try:
                    chunk = b64decode(chunk)
                except (binascii.Error, ValueError):
                    logger.warning(f"Skipping undecodable output chunk for {tab.host_id}:{tab.tab_id}")
                    tab.output_cursor += 1
                    continue

            room = self.max_bytes - len(buf)
            if len(chunk) > room:
                buf.extend(chunk[:room])
                # Keep the decoded remainder at the head of the queue
                queue[tab.output_cursor] = chunk[room:]
                break

            buf.extend(chunk)
            tab.output_cursor += 1
            if len(buf) >= self.max_bytes or loop.time() - started >= self.max_seconds:
                break

        # Compact: drop fully consumed entries
        del queue[: tab.output_cursor]
        tab.output_cursor = 0
        return bytes(buf)
