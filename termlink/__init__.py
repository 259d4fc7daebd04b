# termlink: terminal client for remote PTY sessions

import asyncio

from termlink.app import main as _main


def main():
    """Entry point for the termlink CLI command."""
    asyncio.run(_main())
