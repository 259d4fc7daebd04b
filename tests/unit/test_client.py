"""Unit tests for the terminal client facade and host records."""

import json

import pytest

from conftest import FakeSink, FakeTransport, FakeUI, make_host, ok, settle
from termlink.client import TerminalClient
from termlink.hosts import AuthMethod, Driver, HostRecord, InMemoryHostStore
from termlink.session import ConnectionState
from termlink.transport import b64encode


def _client(responder=None):
    transport = FakeTransport(responder)
    ui = FakeUI()
    client = TerminalClient(transport, InMemoryHostStore([make_host()]), ui, FakeSink)
    return client, transport, ui


class TestTerminalClient:
    @pytest.mark.asyncio
    async def test_open_host_activates_and_connects(self):
        client, transport, _ = _client()

        tab = await client.open_host(1)

        assert client.registry.active == (1, 1)
        assert tab.sink.visible
        assert transport.types() == ["select"]

    @pytest.mark.asyncio
    async def test_pushes_reach_the_tab_sink(self):
        client, transport, _ = _client()
        tab = await client.open_host(1)

        transport.dispatch_push(1, 1, b64encode("$ "))
        await settle()

        assert tab.sink.output == b"$ "

    @pytest.mark.asyncio
    async def test_close_tab_disconnects_and_connects_successor(self):
        client, transport, _ = _client()
        await client.open_host(1)
        tab_id = await client.add_tab(1)
        transport.requests.clear()

        assert await client.close_tab(1, tab_id)

        assert transport.types() == ["disconnect", "select"]
        assert transport.requests[0]["tabId"] == tab_id
        assert transport.requests[1]["tabId"] == 1
        assert client.registry.active == (1, 1)

    @pytest.mark.asyncio
    async def test_close_last_tab_is_a_no_op(self):
        client, transport, _ = _client()
        await client.open_host(1)
        transport.requests.clear()

        assert not await client.close_tab(1, 1)

        assert transport.requests == []
        assert client.registry.get_tab(1, 1) is not None

    @pytest.mark.asyncio
    async def test_switch_tab_connects_disconnected_tab(self):
        client, transport, _ = _client()
        await client.open_host(1)
        await client.add_tab(1)
        client.registry.get_tab(1, 1).state = ConnectionState.disconnected()
        transport.requests.clear()

        await client.switch_tab(1, 1)

        assert client.registry.active == (1, 1)
        assert transport.types() == ["select"]

    @pytest.mark.asyncio
    async def test_reset_forgets_passwords(self):
        client, _, _ = _client()
        await client.open_host(1)
        client.broker.cache_password(1, "pw")

        client.reset()

        assert client.broker.cached_password(1) is None
        assert client.registry.tabs == {}

    @pytest.mark.asyncio
    async def test_stop_closes_transport(self):
        client, transport, _ = _client(lambda r: ok(state="disconnected"))
        await client.start()
        await client.open_host(1)

        await client.stop()

        assert transport.closed


class TestHostRecords:
    def test_camel_case_fields(self):
        host = HostRecord.model_validate(
            {
                "id": 3,
                "host": "router.lab",
                "user": "ops",
                "driver": "ioshell",
                "auth": {"method": "key", "keyPath": "~/.ssh/id_ed25519"},
                "hostKey": {"mode": "insecure"},
                "sftp": {"credentials": "custom", "password": "x"},
            }
        )

        assert host.driver == Driver.IOSHELL
        assert host.auth.method == AuthMethod.KEY
        assert host.auth.key_path == "~/.ssh/id_ed25519"
        assert not host.uses_password_auth
        assert not host.sftp_reuses_connection
        assert host.label == "ops@router.lab"

    def test_from_file_accepts_network_export(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "networks": [
                        {"hosts": [{"id": 1, "host": "a"}, {"id": "not-a-number"}]},
                        {"hosts": [{"id": 2, "host": "b"}]},
                    ]
                }
            )
        )

        store = InMemoryHostStore.from_file(path)

        assert [h.id for h in store.all()] == [1, 2]

    def test_store_updates(self):
        store = InMemoryHostStore([make_host()])

        store.mark_trusted(1, "10.0.0.1:22", "SHA256:k")
        store.remember_password(1, "pw")
        store.remember_password(9, "ignored")

        assert store.trusted[1] == ("10.0.0.1:22", "SHA256:k")
        assert store.get(1).auth.password == "pw"
