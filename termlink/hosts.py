"""Host records consumed from the configuration store.

The store itself (networks, teams, import/export) lives outside this package.
Only the fields the terminal and transfer clients need are modelled here.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class AuthMethod(str, Enum):
    PASSWORD = "password"
    KEY = "key"
    AGENT = "agent"
    KEYBOARD_INTERACTIVE = "keyboard-interactive"


class HostKeyMode(str, Enum):
    KNOWN_HOSTS = "known_hosts"
    INSECURE = "insecure"


class Driver(str, Enum):
    SSH = "ssh"
    TELECOM = "telecom"
    # Legacy alias for telecom
    IOSHELL = "ioshell"


class SftpCredentialsMode(str, Enum):
    CONNECTION = "connection"
    CUSTOM = "custom"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class AuthConfig(_Record):
    method: AuthMethod = AuthMethod.PASSWORD
    key_path: Optional[str] = None
    password: Optional[str] = None


class HostKeyConfig(_Record):
    mode: HostKeyMode = HostKeyMode.KNOWN_HOSTS


class SftpConfig(_Record):
    enabled: bool = False
    credentials: SftpCredentialsMode = SftpCredentialsMode.CONNECTION
    user: Optional[str] = None
    password: Optional[str] = None


class HostRecord(_Record):
    """A host as exported by the configuration store."""

    id: int
    name: str = ""
    host: str = ""
    port: int = 22
    user: str = ""
    driver: Driver = Driver.SSH
    auth: AuthConfig = Field(default_factory=AuthConfig)
    host_key: HostKeyConfig = Field(default_factory=HostKeyConfig)
    sftp: SftpConfig = Field(default_factory=SftpConfig)

    @property
    def uses_password_auth(self) -> bool:
        return self.auth.method == AuthMethod.PASSWORD

    @property
    def sftp_reuses_connection(self) -> bool:
        return self.sftp.credentials == SftpCredentialsMode.CONNECTION

    @property
    def label(self) -> str:
        if self.user and self.host:
            return f"{self.user}@{self.host}"
        return self.name or f"host {self.id}"


class HostStore(Protocol):
    """Source of host records and sink for trust/password updates."""

    def get(self, host_id: int) -> Optional[HostRecord]: ...

    def mark_trusted(self, host_id: int, host_port: Optional[str], fingerprint: Optional[str]) -> None: ...

    def remember_password(self, host_id: int, password: str) -> None: ...


class InMemoryHostStore:
    """Dict-backed host store, optionally loaded from a JSON export."""

    def __init__(self, hosts: Optional[list[HostRecord]] = None) -> None:
        self._hosts: dict[int, HostRecord] = {h.id: h for h in hosts or []}
        self.trusted: dict[int, tuple[Optional[str], Optional[str]]] = {}

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryHostStore":
        """Load hosts from a JSON list or a config object with ``networks``.

        Invalid host entries are skipped with a warning.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            raw_hosts = [h for net in data.get("networks", []) for h in net.get("hosts", [])]
        else:
            raw_hosts = list(data)

        hosts = []
        for raw in raw_hosts:
            try:
                hosts.append(HostRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(f"Skipping invalid host entry: {e.error_count()} error(s)")
        logger.info(f"Loaded {len(hosts)} host(s) from {path}")
        return cls(hosts)

    def add(self, host: HostRecord) -> None:
        self._hosts[host.id] = host

    def all(self) -> list[HostRecord]:
        return list(self._hosts.values())

    def get(self, host_id: int) -> Optional[HostRecord]:
        return self._hosts.get(host_id)

    def mark_trusted(self, host_id: int, host_port: Optional[str], fingerprint: Optional[str]) -> None:
        self.trusted[host_id] = (host_port, fingerprint)

    def remember_password(self, host_id: int, password: str) -> None:
        host = self._hosts.get(host_id)
        if host is None:
            return
        host.auth.password = password
