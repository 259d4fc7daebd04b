#!/usr/bin/env python3
"""
termlink - console entry point

Runs a terminal client against a subprocess bridge: remote output goes to
stdout, stdin lines are typed into the active tab, and trust/password
decisions are asked on the terminal. Lines starting with ``~`` are client
commands (``~help`` lists them).
"""

import argparse
import asyncio
import shutil
import signal
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from termlink.client import TerminalClient
from termlink.config import config
from termlink.hosts import HostRecord, InMemoryHostStore
from termlink.session.types import ConnectionState
from termlink.transfer import TransferError
from termlink.transport import SubprocessBridge, TransportError

COMMANDS_HELP = """\
~tab            open a new tab on the current host
~close          close the current tab
~next           switch to the next tab
~rename TITLE   rename the current tab
~ls [PATH]      list a remote directory
~get PATH       download a remote file
~put FILE       upload a local file into the listed directory
~disconnect     disconnect the current tab
~connect        reconnect the current tab
~quit           exit"""


class ConsoleSink:
    """Writes a tab's output to stdout while the tab is visible."""

    def __init__(self, host_id: int, tab_id: int) -> None:
        self.host_id = host_id
        self.tab_id = tab_id
        self.visible = False

    async def write(self, data: bytes) -> None:
        if not self.visible:
            return
        sys.stdout.buffer.write(data)
        sys.stdout.flush()

    def measure(self) -> Optional[tuple[int, int]]:
        size = shutil.get_terminal_size(fallback=(0, 0))
        if size.columns <= 0 or size.lines <= 0:
            return None
        return size.columns, size.lines

    def set_visible(self, visible: bool) -> None:
        self.visible = visible

    def dispose(self) -> None:
        self.visible = False


class ConsoleUI:
    """Prompts on stderr; answers are taken from the next stdin line."""

    def __init__(self) -> None:
        self._answer: Optional[asyncio.Future] = None

    @property
    def awaiting_answer(self) -> bool:
        return self._answer is not None and not self._answer.done()

    def answer(self, line: str) -> None:
        if self.awaiting_answer:
            self._answer.set_result(line)

    async def _ask(self, question: str) -> str:
        # One question on screen at a time
        while self.awaiting_answer:
            await asyncio.shield(self._answer)
        self._answer = asyncio.get_running_loop().create_future()
        sys.stderr.write(question)
        sys.stderr.flush()
        return await self._answer

    async def confirm_trust(
        self,
        host: HostRecord,
        host_port: Optional[str],
        fingerprint: Optional[str],
        changed: bool,
    ) -> bool:
        if changed:
            headline = f"WARNING: the host key of {host_port or host.label} has CHANGED."
        else:
            headline = f"The authenticity of {host_port or host.label} can't be established."
        reply = await self._ask(
            f"\n{headline}\nFingerprint: {fingerprint or 'unknown'}\nTrust this host key? [y/N] "
        )
        return reply.strip().lower() in ("y", "yes")

    async def prompt_password(self, host: HostRecord) -> Optional[str]:
        reply = await self._ask(f"\nPassword for {host.label} (empty to cancel): ")
        return reply or None

    def notify_error(self, message: str) -> None:
        sys.stderr.write(f"\n[termlink] {message}\n")
        sys.stderr.flush()

    def state_changed(self, host_id: int, tab_id: int, state: ConnectionState) -> None:
        suffix = f" ({state.error_code})" if state.error_code else ""
        sys.stderr.write(f"\n[termlink] {host_id}:{tab_id} {state.status.value}{suffix}\n")
        sys.stderr.flush()


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Terminal client for remote PTY sessions")
    parser.add_argument("host_id", type=int, help="Host id from the hosts file")
    parser.add_argument("--hosts-file", help="Hosts file (overrides HOSTS_FILE env)")
    parser.add_argument("--bridge", help="Bridge command (overrides BRIDGE_COMMAND env)")
    parser.add_argument("--log-level", help="Log level (overrides LOG_LEVEL env)")
    return parser.parse_args(argv)


async def handle_command(client: TerminalClient, line: str, shutdown_event: asyncio.Event) -> None:
    """Run one ``~`` command against the active tab."""
    name, _, arg = line[1:].partition(" ")
    arg = arg.strip()
    active = client.registry.active
    if active is None:
        client.ui.notify_error("No active tab")
        return
    host_id, tab_id = active

    if name == "quit":
        shutdown_event.set()
    elif name == "help":
        sys.stderr.write(COMMANDS_HELP + "\n")
    elif name == "tab":
        await client.add_tab(host_id)
    elif name == "close":
        if not await client.close_tab(host_id, tab_id):
            client.ui.notify_error("The last tab of a host cannot be closed")
    elif name == "next":
        order = client.registry.hosts[host_id].tab_order
        next_tab = order[(order.index(tab_id) + 1) % len(order)]
        await client.switch_tab(host_id, next_tab)
    elif name == "rename":
        if not client.rename_tab(host_id, tab_id, arg):
            client.ui.notify_error("Tab title cannot be empty")
    elif name == "disconnect":
        await client.disconnect(host_id, tab_id)
    elif name == "connect":
        await client.connect(host_id, tab_id)
    elif name in ("ls", "get", "put"):
        try:
            if name == "ls":
                listing = await client.files.refresh(host_id, arg or None)
                sys.stderr.write(f"{listing.cwd}\n")
                for entry in listing.entries:
                    marker = "/" if entry.is_dir else ""
                    sys.stderr.write(f"  {entry.name}{marker}\t{entry.size}\n")
            elif name == "get":
                local_path = await client.transfer.download(host_id, arg)
                sys.stderr.write(f"Saved to {local_path}\n")
            else:
                session = await client.files.upload(host_id, arg)
                sys.stderr.write(f"Uploaded {session.name} ({session.bytes_sent} bytes)\n")
        except TransferError as e:
            client.ui.notify_error(f"{name} failed: {e}")
    else:
        client.ui.notify_error(f"Unknown command ~{name} (try ~help)")


async def read_stdin(client: TerminalClient, ui: ConsoleUI, shutdown_event: asyncio.Event) -> None:
    """Forward stdin lines to the active tab until EOF."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    commands: set[asyncio.Task] = set()

    while not shutdown_event.is_set():
        raw = await reader.readline()
        if not raw:
            logger.info("stdin closed")
            shutdown_event.set()
            return
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")

        if ui.awaiting_answer:
            ui.answer(line)
        elif line.startswith("~") and not line.startswith("~~"):
            # Commands may wait on a prompt answered by a later line
            task = asyncio.create_task(handle_command(client, line, shutdown_event))
            commands.add(task)
            task.add_done_callback(commands.discard)
        elif client.registry.active is not None:
            data = line[1:] if line.startswith("~~") else line
            client.submit(*client.registry.active, data + "\r")


async def main(argv: Optional[list[str]] = None):
    """Main application entry point."""
    args = parse_args(argv)
    configure_logging(args.log_level or config.LOG_LEVEL)

    errors = config.validate_required()
    if errors:
        logger.error("Configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        sys.exit(1)

    hosts_path = Path(args.hosts_file).expanduser() if args.hosts_file else config.hosts_path()
    if hosts_path is None or not hosts_path.is_file():
        logger.error(f"Hosts file not found: {args.hosts_file or config.HOSTS_FILE}")
        sys.exit(1)
    hosts = InMemoryHostStore.from_file(hosts_path)
    if hosts.get(args.host_id) is None:
        logger.error(f"Host {args.host_id} not found in {hosts_path}")
        sys.exit(1)

    bridge = SubprocessBridge(args.bridge or config.BRIDGE_COMMAND)
    try:
        await bridge.start()
    except TransportError as e:
        logger.error(str(e))
        sys.exit(1)

    ui = ConsoleUI()
    client = TerminalClient(bridge, hosts, ui, ConsoleSink)

    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    reader = asyncio.create_task(read_stdin(client, ui, shutdown_event))
    await client.start()
    opener = asyncio.create_task(client.open_host(args.host_id))

    await shutdown_event.wait()

    opener.cancel()
    reader.cancel()
    await client.stop()


if __name__ == "__main__":
    asyncio.run(main())
