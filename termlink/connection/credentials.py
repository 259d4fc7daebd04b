"""Credential resolution shared by the connection state machine and transfers.

Owns the per-host session password cache and the two interactive side
channels (host-key trust, password entry). Each side channel is gated by
:class:`PendingInteractions`, so overlapping poll ticks or concurrent
transfer calls never open the same prompt twice for one host.
"""

import asyncio
from typing import Any, Optional

from loguru import logger

from termlink.config import config
from termlink.hosts import HostRecord, HostStore
from termlink.transport import RpcChannel, b64encode
from termlink.ui import ClientUI

from .interactions import PendingInteractions


class CredentialBroker:
    """Caches session passwords and runs de-duplicated trust/password prompts."""

    def __init__(
        self,
        channel: RpcChannel,
        hosts: HostStore,
        ui: ClientUI,
        remember_passwords: Optional[bool] = None,
    ) -> None:
        self.channel = channel
        self.hosts = hosts
        self.ui = ui
        self.interactions = PendingInteractions()
        self.remember_passwords = (
            config.REMEMBER_PASSWORDS if remember_passwords is None else remember_passwords
        )
        self._passwords: dict[int, str] = {}

    def cached_password(self, host_id: int) -> Optional[str]:
        return self._passwords.get(host_id)

    def cache_password(self, host_id: int, password: str) -> None:
        # Never overwrite a cached password with empty data
        if password:
            self._passwords[host_id] = password

    def forget(self, host_id: int) -> None:
        self._passwords.pop(host_id, None)

    def connection_password(self, host: HostRecord) -> Optional[str]:
        """Session-cached password, falling back to the stored one."""
        cached = self._passwords.get(host.id)
        if cached:
            return cached
        if host.uses_password_auth and host.auth.password:
            return host.auth.password
        return None

    def connect_fields(self, host: HostRecord) -> dict[str, Any]:
        password = self.connection_password(host)
        return {"passwordB64": b64encode(password)} if password else {}

    def transfer_fields(self, host: HostRecord) -> dict[str, Any]:
        """Credential fields for a file-transfer request, per the host's mode."""
        if host.sftp_reuses_connection:
            return self.connect_fields(host)
        password = host.sftp.password
        return {"sftpPasswordB64": b64encode(password)} if password else {}

    def begin_trust(
        self,
        host: HostRecord,
        host_port: Optional[str],
        fingerprint: Optional[str],
        changed: bool = False,
    ) -> tuple[asyncio.Future, bool]:
        """Open the trust decision for a host, or attach to the open one.

        The future resolves to True once the key was accepted and registered
        with ``trust_host``, False if rejected, and raises TransportError or
        RpcError if the registration failed.
        """

        async def decide() -> bool:
            accepted = await self.ui.confirm_trust(host, host_port, fingerprint, changed)
            if not accepted:
                logger.info(f"Host key for {host.label} rejected")
                return False
            await self.channel.call("trust_host", hostId=host.id)
            self.hosts.mark_trusted(host.id, host_port, fingerprint)
            logger.info(f"Trusted host key for {host.label} ({fingerprint})")
            return True

        return self.interactions.start(("trust", host.id), decide)

    async def ensure_trusted(
        self,
        host: HostRecord,
        host_port: Optional[str],
        fingerprint: Optional[str],
        changed: bool = False,
    ) -> bool:
        future, _ = self.begin_trust(host, host_port, fingerprint, changed)
        return await asyncio.shield(future)

    def begin_password_prompt(self, host: HostRecord) -> tuple[asyncio.Future, bool]:
        """Open the password prompt for a host, or attach to the open one.

        The future resolves to the entered password (now cached for the
        session), or None if the prompt was cancelled.
        """

        async def ask() -> Optional[str]:
            password = await self.ui.prompt_password(host)
            if not password:
                logger.info(f"Password prompt for {host.label} cancelled")
                return None
            self.cache_password(host.id, password)
            if self.remember_passwords:
                self.hosts.remember_password(host.id, password)
            return password

        return self.interactions.start(("password", host.id), ask)

    async def obtain_password(self, host: HostRecord) -> Optional[str]:
        future, _ = self.begin_password_prompt(host)
        return await asyncio.shield(future)

    def prompt_pending(self, kind: str, host_id: int) -> bool:
        return self.interactions.is_pending((kind, host_id))

    def drop_password(self, host_id: int) -> None:
        """Forget a session password the host rejected."""
        self._passwords.pop(host_id, None)
