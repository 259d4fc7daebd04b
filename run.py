#!/usr/bin/env python3
"""Convenience script to run the termlink console client."""

import asyncio

from termlink.app import main as _main


def main():
    asyncio.run(_main())

if __name__ == "__main__":
    main()
