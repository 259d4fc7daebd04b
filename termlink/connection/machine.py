"""Per-tab connection state machine.

Reconciles the user's intent (connect, disconnect) with the state reported
by the host. The host-side process can only be polled, so polling is the
single source of truth: the client never infers ``connected`` locally and
only sets ``reconnecting(0)`` optimistically while a connect request is
being issued.

Recoverable error codes reported by ``select`` or by a poll open an
interactive side channel (trust decision, password prompt) through the
:class:`CredentialBroker`, at most once per host while it is unresolved, and
retry the connect at most once per code.
"""

import asyncio
from typing import Optional

from loguru import logger

from termlink.config import (
    HOST_KEY_MISMATCH,
    PASSPHRASE_REQUIRED,
    PASSWORD_REQUIRED,
    TRUST_ERROR_CODES,
    PollIntervals,
    config,
)
from termlink.hosts import HostRecord, HostStore
from termlink.session.registry import SessionRegistry
from termlink.session.types import ConnectionState, ConnectionStatus, TerminalTabSession
from termlink.transport import RpcChannel, RpcError, TransportError
from termlink.ui import ClientUI

from .credentials import CredentialBroker
from .state_source import PollingStateSource, StateSource


class ConnectionStateMachine:
    """Drives connect/disconnect and reacts to polled connection state."""

    def __init__(
        self,
        registry: SessionRegistry,
        channel: RpcChannel,
        broker: CredentialBroker,
        hosts: HostStore,
        ui: ClientUI,
        source: Optional[StateSource] = None,
        intervals: Optional[PollIntervals] = None,
        default_geometry: Optional[tuple[int, int]] = None,
    ) -> None:
        self.registry = registry
        self.channel = channel
        self.broker = broker
        self.hosts = hosts
        self.ui = ui
        self.source = source or PollingStateSource(channel)
        self.intervals = intervals or config.timings.poll
        self.default_geometry = default_geometry or (config.DEFAULT_COLS, config.DEFAULT_ROWS)
        self._poll_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # User-issued operations
    # ------------------------------------------------------------------

    async def connect(self, host_id: int, tab_id: Optional[int] = None) -> bool:
        """Connect a tab on explicit user request.

        Clears any codes the user declined earlier, so prompts may be shown
        again for this deliberate attempt.

        Returns:
            True if the connect request was accepted by the bridge
        """
        tab = self.registry.ensure_tab(host_id, tab_id)
        tab.declined_codes.clear()
        tab.retried_codes.clear()
        return await self._connect(tab)

    async def disconnect(self, host_id: int, tab_id: int) -> bool:
        """Disconnect a tab. Failures are surfaced once and not retried."""
        try:
            await self.channel.call("disconnect", hostId=host_id, tabId=tab_id)
        except (TransportError, RpcError) as e:
            logger.error(f"Disconnect {host_id}:{tab_id} failed: {e}")
            self.ui.notify_error(f"Disconnect failed: {self._describe(e)}")
            return False

        tab = self.registry.get_tab(host_id, tab_id)
        if tab is not None:
            tab.confirmed_connected = False
            self._set_state(tab, ConnectionState.disconnected())
        logger.info(f"Disconnected {host_id}:{tab_id}")
        return True

    async def resize(self, host_id: int, tab_id: int) -> None:
        """Report the sink's current geometry. Best-effort."""
        tab = self.registry.get_tab(host_id, tab_id)
        if tab is None or tab.state.is_disconnected:
            return
        await self._report_geometry(tab)

    async def _connect(self, tab: TerminalTabSession) -> bool:
        host = self.hosts.get(tab.host_id)
        if host is None:
            logger.error(f"Connect requested for unknown host {tab.host_id}")
            self.ui.notify_error(f"Unknown host {tab.host_id}")
            return False

        cols, rows = self._measure(tab)
        tab.confirmed_connected = False
        self._set_state(tab, ConnectionState.connecting())
        tab.connect_in_flight = True
        logger.info(f"Connecting {host.label} tab {tab.tab_id} ({cols}x{rows})")

        try:
            await self.channel.call(
                "select",
                hostId=tab.host_id,
                tabId=tab.tab_id,
                cols=cols,
                rows=rows,
                **self.broker.connect_fields(host),
            )
        except RpcError as e:
            tab.connect_in_flight = False
            if e.is_credential_error:
                await self._handle_code(
                    tab,
                    ConnectionState(
                        status=ConnectionStatus.RECONNECTING,
                        error_code=e.code,
                        host_port=e.host_port,
                        fingerprint=e.fingerprint,
                        detail=e.detail,
                    ),
                )
                return False
            self._connect_failed(tab, host, e)
            return False
        except TransportError as e:
            tab.connect_in_flight = False
            self._connect_failed(tab, host, e)
            return False

        tab.connect_in_flight = False
        return True

    def _connect_failed(self, tab: TerminalTabSession, host: HostRecord, error: Exception) -> None:
        logger.error(f"Connect to {host.label} failed: {error}")
        self._set_state(tab, ConnectionState.disconnected())
        self.ui.notify_error(f"Connection to {host.label} failed: {self._describe(error)}")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the background poll loop."""
        if self._poll_task is None or self._poll_task.done():
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.info("Started connection state poll loop")

    async def stop(self) -> None:
        """Stop polling and wait for side-channel tasks to be cancelled."""
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _poll_loop(self) -> None:
        while True:
            delay = await self.poll_once()
            await asyncio.sleep(delay)

    async def poll_once(self) -> float:
        """Poll the active tab once and apply the result.

        Returns:
            Seconds to wait before the next poll
        """
        key = self.registry.active
        if key is None:
            return self.intervals.idle

        try:
            state = await self.source.fetch(*key)
        except (TransportError, RpcError) as e:
            # Liveness only; retried on the next tick
            logger.debug(f"State poll for {key[0]}:{key[1]} failed: {e}")
            tab = self.registry.get_tab(*key)
            return self._interval_for(tab.state if tab else None)

        if self.registry.active != key:
            logger.debug(f"Discarding stale state for {key[0]}:{key[1]}")
            return self._interval_for(None)

        self.apply(key[0], key[1], state)
        return self._interval_for(state)

    def _interval_for(self, state: Optional[ConnectionState]) -> float:
        if self.registry.active is None:
            return self.intervals.idle
        if state is not None and state.status == ConnectionStatus.RECONNECTING:
            return self.intervals.reconnecting
        return self.intervals.connected

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply(self, host_id: int, tab_id: int, state: ConnectionState) -> None:
        """Apply a host-reported state to a tab.

        Public so that a push-based state source can drive the machine.
        """
        tab = self.registry.get_tab(host_id, tab_id)
        if tab is None:
            return

        self._set_state(tab, state)

        if state.is_connected:
            if not tab.confirmed_connected:
                tab.confirmed_connected = True
                self._spawn(self._report_geometry(tab))
        else:
            tab.confirmed_connected = False

        if state.error_code:
            self._begin_side_channel(tab, state)

    def _set_state(self, tab: TerminalTabSession, state: ConnectionState) -> None:
        previous = tab.state
        tab.state = state
        if previous != state:
            if previous.status != state.status:
                logger.info(
                    f"Tab {tab.host_id}:{tab.tab_id} {previous.status.value} -> {state.status.value}"
                )
            self.ui.state_changed(tab.host_id, tab.tab_id, state)

    def _begin_side_channel(self, tab: TerminalTabSession, state: ConnectionState) -> None:
        code = state.error_code
        if tab.connect_in_flight or code in tab.declined_codes:
            return
        if code in TRUST_ERROR_CODES and self.broker.prompt_pending("trust", tab.host_id):
            return
        if code == PASSWORD_REQUIRED and self.broker.prompt_pending("password", tab.host_id):
            return
        self._handle_code_now(tab, state)

    async def _handle_code(self, tab: TerminalTabSession, state: ConnectionState) -> None:
        task = self._handle_code_now(tab, state)
        if task is not None:
            await asyncio.shield(task)

    def _handle_code_now(
        self, tab: TerminalTabSession, state: ConnectionState
    ) -> Optional[asyncio.Task]:
        """Open the side channel for ``state.error_code``.

        The prompt itself is registered synchronously, so a second poll tick
        reporting the same code attaches instead of opening another prompt.
        """
        code = state.error_code
        host = self.hosts.get(tab.host_id)
        if host is None or code is None:
            return None

        if code in tab.retried_codes:
            if code == PASSWORD_REQUIRED:
                # The prompted password was rejected; prompt again on the next deliberate connect
                self.broker.drop_password(host.id)
            self._give_up(tab, code, f"Connection to {host.label} failed again after retry ({code})")
            return None

        if code in TRUST_ERROR_CODES:
            future, created = self.broker.begin_trust(
                host, state.host_port, state.fingerprint, changed=code == HOST_KEY_MISMATCH
            )
            if not created:
                return None
            return self._spawn(self._after_trust(tab, host, code, future))

        if code == PASSWORD_REQUIRED:
            if not host.uses_password_auth:
                self._give_up(tab, code, f"{host.label} requires a password but uses {host.auth.method.value} auth")
                return None
            if self.broker.cached_password(host.id):
                # The password we sent was rejected; ask again on the next deliberate connect
                self.broker.drop_password(host.id)
                self._give_up(tab, code, f"Authentication to {host.label} failed")
                return None
            future, created = self.broker.begin_password_prompt(host)
            if not created:
                return None
            return self._spawn(self._after_password(tab, host, code, future))

        if code == PASSPHRASE_REQUIRED:
            self._give_up(tab, code, f"{host.label}: key passphrase required")
            return None

        logger.debug(f"Ignoring error code {code} for {tab.host_id}:{tab.tab_id}")
        return None

    async def _after_trust(
        self,
        tab: TerminalTabSession,
        host: HostRecord,
        code: str,
        future: asyncio.Future,
    ) -> None:
        try:
            accepted = await asyncio.shield(future)
        except (TransportError, RpcError) as e:
            self._give_up(tab, code, f"Failed to trust {host.label}: {self._describe(e)}")
            return

        if self._is_stale(tab):
            return
        if not accepted:
            tab.declined_codes.add(code)
            await self._abandon(tab)
            return
        await self._retry_connect(tab, code)

    async def _after_password(
        self,
        tab: TerminalTabSession,
        host: HostRecord,
        code: str,
        future: asyncio.Future,
    ) -> None:
        password = await asyncio.shield(future)
        if self._is_stale(tab):
            return
        if password is None:
            tab.declined_codes.add(code)
            await self._abandon(tab)
            return
        await self._retry_connect(tab, code)

    async def _retry_connect(self, tab: TerminalTabSession, code: str) -> None:
        if code in tab.retried_codes:
            self._give_up(tab, code, f"Connection failed again after retry ({code})")
            return
        tab.retried_codes.add(code)
        await self._connect(tab)

    async def _abandon(self, tab: TerminalTabSession) -> None:
        """Stop the host from retrying after the user declined a prompt.

        The tab is left disconnected even if the disconnect request fails.
        """
        await self.channel.call_best_effort("disconnect", hostId=tab.host_id, tabId=tab.tab_id)
        if not self._is_stale(tab):
            tab.confirmed_connected = False
            self._set_state(tab, ConnectionState.disconnected())

    def _give_up(self, tab: TerminalTabSession, code: str, message: str) -> None:
        tab.declined_codes.add(code)
        logger.error(message)
        self.ui.notify_error(message)

    def _is_stale(self, tab: TerminalTabSession) -> bool:
        return tab.released or self.registry.get_tab(tab.host_id, tab.tab_id) is not tab

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def _measure(self, tab: TerminalTabSession) -> tuple[int, int]:
        try:
            size = tab.sink.measure()
        except Exception as e:
            logger.debug(f"Sink measure failed for {tab.host_id}:{tab.tab_id}: {e}")
            size = None
        if size and size[0] > 0 and size[1] > 0:
            return size
        return self.default_geometry

    async def _report_geometry(self, tab: TerminalTabSession) -> None:
        if self._is_stale(tab):
            return
        cols, rows = self._measure(tab)
        await self.channel.call_best_effort(
            "resize", hostId=tab.host_id, tabId=tab.tab_id, cols=cols, rows=rows
        )

    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Connection side-channel task failed: {error!r}")

    async def wait_idle(self) -> None:
        """Wait for every side-channel task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @staticmethod
    def _describe(error: Exception) -> str:
        if isinstance(error, RpcError):
            return error.detail or error.code
        return str(error)
