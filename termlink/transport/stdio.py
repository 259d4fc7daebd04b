"""Transport bridge speaking newline-delimited JSON over a subprocess' stdio.

Each request line carries an ``id`` that the bridge echoes back on its
response line. Lines of ``"type": "pty"`` are output pushes and may arrive
at any time, interleaved with responses.
"""

import asyncio
import json
import shlex
from typing import Optional

from loguru import logger

from .base import Transport
from .errors import TransportError


class SubprocessBridge(Transport):
    """Run a bridge process and exchange one request at a time with it."""

    def __init__(self, command: str, request_timeout: float = 60.0) -> None:
        super().__init__()
        self.command = command
        self.request_timeout = request_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._next_id = 1
        self._waiting: Optional[tuple[int, asyncio.Future]] = None

    async def start(self) -> None:
        """Spawn the bridge process and start reading its output."""
        args = shlex.split(self.command)
        logger.info(f"Spawning bridge: {' '.join(args)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                limit=64 * 1024 * 1024,
            )
        except OSError as e:
            raise TransportError(f"Failed to start bridge: {e}") from e
        self._reader_task = asyncio.create_task(self._read_loop())

    def is_alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def request(self, payload: str) -> str:
        if not self.is_alive():
            raise TransportError("bridge is not running")

        async with self._lock:
            request_id = self._next_id
            self._next_id += 1
            future: asyncio.Future = asyncio.get_running_loop().create_future()
            self._waiting = (request_id, future)

            try:
                message = json.loads(payload)
                message["id"] = request_id
                await self._write_line(json.dumps(message))
                return await asyncio.wait_for(future, timeout=self.request_timeout)
            except asyncio.TimeoutError as e:
                raise TransportError(f"request {request_id} timed out") from e
            except (OSError, ConnectionError) as e:
                raise TransportError(f"bridge write failed: {e}") from e
            finally:
                self._waiting = None

    async def _write_line(self, line: str) -> None:
        if self._process is None or self._process.stdin is None:
            raise TransportError("bridge stdin is unavailable")
        self._process.stdin.write((line + "\n").encode("utf-8"))
        await self._process.stdin.drain()

    async def _read_loop(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                self._handle_line(line.decode("utf-8", errors="replace").strip())
        finally:
            logger.warning("Bridge closed its output stream")
            self._fail_waiting(TransportError("bridge closed the stream unexpectedly"))

    def _handle_line(self, line: str) -> None:
        if not line:
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse bridge JSON line: {e}")
            return
        if not isinstance(message, dict):
            return

        if message.get("type") == "pty":
            try:
                host_id = int(message["hostId"])
                tab_id = int(message.get("tabId") or 1)
            except (KeyError, TypeError, ValueError):
                logger.warning("Dropping pty frame without a valid hostId")
                return
            self.dispatch_push(host_id, tab_id, str(message.get("dataB64", "")))
            return

        waiting = self._waiting
        if waiting is None or message.get("id") != waiting[0]:
            logger.debug(f"Dropping unmatched bridge response id={message.get('id')}")
            return
        message.pop("id", None)
        if not waiting[1].done():
            waiting[1].set_result(json.dumps(message))

    def _fail_waiting(self, error: Exception) -> None:
        waiting = self._waiting
        if waiting is not None and not waiting[1].done():
            waiting[1].set_exception(error)

    async def close(self) -> None:
        """Terminate the bridge process."""
        process = self._process
        if process is not None and process.returncode is None:
            if process.stdin is not None:
                process.stdin.close()
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=2)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        logger.info("Bridge stopped")
