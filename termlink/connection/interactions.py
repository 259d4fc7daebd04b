"""At most one pending interactive prompt per key.

A second request for a key that already has a prompt open attaches to the
existing future instead of opening another prompt. Registration happens
synchronously in :meth:`PendingInteractions.start`, so two callers on the
same loop iteration can never both start an interaction.
"""

import asyncio
from typing import Any, Awaitable, Callable, Hashable

from loguru import logger


class PendingInteractions:
    """Map from key to the single in-progress interaction for that key."""

    def __init__(self) -> None:
        self._pending: dict[Hashable, asyncio.Future] = {}

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def count(self) -> int:
        return len(self._pending)

    def start(
        self, key: Hashable, factory: Callable[[], Awaitable[Any]]
    ) -> tuple[asyncio.Future, bool]:
        """Start ``factory`` for ``key`` unless an interaction is already pending.

        Args:
            key: De-duplication key, e.g. ("trust", host_id)
            factory: Zero-argument coroutine function performing the interaction

        Returns:
            (future, created): the shared future, and whether this call started it
        """
        existing = self._pending.get(key)
        if existing is not None:
            logger.debug(f"Attaching to pending interaction {key}")
            return existing, False

        future = asyncio.ensure_future(factory())
        self._pending[key] = future

        def release(done: asyncio.Future) -> None:
            if self._pending.get(key) is done:
                del self._pending[key]

        future.add_done_callback(release)
        return future, True
