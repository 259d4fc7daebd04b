"""Pytest fixtures and fakes for termlink tests."""

import asyncio
import inspect
import json
from typing import Any, Callable, Optional

import pytest

from termlink.hosts import AuthMethod, HostRecord, InMemoryHostStore, SftpCredentialsMode
from termlink.session.registry import SessionRegistry
from termlink.transport import Transport, TransportError


def ok(**fields: Any) -> dict[str, Any]:
    return {"ok": True, **fields}


def fail(code: str, **fields: Any) -> dict[str, Any]:
    return {"ok": False, "error": code, **fields}


class FakeTransport(Transport):
    """In-process bridge answering requests through a responder callable.

    The responder gets the decoded request and returns a response dict, an
    exception to raise, or an awaitable producing either.
    """

    def __init__(self, responder: Optional[Callable[[dict], Any]] = None) -> None:
        super().__init__()
        self.responder = responder or (lambda request: ok())
        self.requests: list[dict[str, Any]] = []
        self.closed = False

    async def request(self, payload: str) -> str:
        request = json.loads(payload)
        self.requests.append(request)
        result = self.responder(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return json.dumps(result)

    async def close(self) -> None:
        self.closed = True

    def of_type(self, request_type: str) -> list[dict[str, Any]]:
        return [r for r in self.requests if r["type"] == request_type]

    def types(self) -> list[str]:
        return [r["type"] for r in self.requests]


def offline(request: dict) -> Exception:
    return TransportError("bridge unreachable")


class FakeSink:
    """Rendering sink that records writes; can hold writes on a gate."""

    geometry: Optional[tuple[int, int]] = (100, 30)

    def __init__(self, host_id: int, tab_id: int) -> None:
        self.host_id = host_id
        self.tab_id = tab_id
        self.writes: list[bytes] = []
        self.visible = False
        self.disposed = False
        self.gate: Optional[asyncio.Event] = None
        self.active_writes = 0
        self.max_active_writes = 0

    async def write(self, data: bytes) -> None:
        self.active_writes += 1
        self.max_active_writes = max(self.max_active_writes, self.active_writes)
        try:
            if self.gate is not None:
                await self.gate.wait()
            self.writes.append(data)
        finally:
            self.active_writes -= 1

    def measure(self) -> Optional[tuple[int, int]]:
        return self.geometry

    def set_visible(self, visible: bool) -> None:
        self.visible = visible

    def dispose(self) -> None:
        self.disposed = True

    @property
    def output(self) -> bytes:
        return b"".join(self.writes)


class FakeUI:
    """Scripted answers for trust and password prompts."""

    def __init__(self, trust: bool = True, password: Optional[str] = "secret") -> None:
        self.trust_answer = trust
        self.password_answer = password
        self.gate: Optional[asyncio.Event] = None
        self.trust_prompts: list[tuple[int, Optional[str], Optional[str], bool]] = []
        self.password_prompts: list[int] = []
        self.errors: list[str] = []
        self.states: list[tuple[int, int, Any]] = []

    async def confirm_trust(self, host, host_port, fingerprint, changed) -> bool:
        self.trust_prompts.append((host.id, host_port, fingerprint, changed))
        if self.gate is not None:
            await self.gate.wait()
        return self.trust_answer

    async def prompt_password(self, host) -> Optional[str]:
        self.password_prompts.append(host.id)
        if self.gate is not None:
            await self.gate.wait()
        return self.password_answer

    def notify_error(self, message: str) -> None:
        self.errors.append(message)

    def state_changed(self, host_id: int, tab_id: int, state) -> None:
        self.states.append((host_id, tab_id, state))


def make_host(
    host_id: int = 1,
    method: AuthMethod = AuthMethod.PASSWORD,
    password: Optional[str] = None,
    sftp_mode: SftpCredentialsMode = SftpCredentialsMode.CONNECTION,
    sftp_password: Optional[str] = None,
) -> HostRecord:
    return HostRecord.model_validate(
        {
            "id": host_id,
            "name": f"host-{host_id}",
            "host": f"10.0.0.{host_id}",
            "user": "admin",
            "auth": {"method": method.value, "password": password},
            "sftp": {
                "enabled": True,
                "credentials": sftp_mode.value,
                "password": sftp_password,
            },
        }
    )


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def ui() -> FakeUI:
    return FakeUI()


@pytest.fixture
def hosts() -> InMemoryHostStore:
    return InMemoryHostStore([make_host()])


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(FakeSink)
