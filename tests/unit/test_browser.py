"""Unit tests for the file browser."""

import asyncio

import pytest

from conftest import FakeSink, FakeTransport, FakeUI, make_host, ok
from termlink.connection import CredentialBroker
from termlink.hosts import InMemoryHostStore
from termlink.session import SessionRegistry
from termlink.transfer import FileBrowser, TransferClient, TransferError
from termlink.transport import RpcChannel

HOME = [
    {"name": "docs", "path": "/home/admin/docs", "isDir": True},
    {"name": "notes.txt", "path": "/home/admin/notes.txt", "size": 12},
]


class _RemoteFs:
    """Responder serving a listing per directory."""

    def __init__(self) -> None:
        self.listings = {"/home/admin": list(HOME), "/home/admin/docs": []}
        self.gate = None

    async def __call__(self, request):
        if request["type"] == "sftp_ls":
            if self.gate is not None:
                await self.gate.wait()
            cwd = request.get("path") or "/home/admin"
            return ok(cwd=cwd, entries=self.listings.get(cwd, []))
        if request["type"] == "sftp_upload_begin":
            return ok(uploadId="u-9")
        return ok()


def _browser(fs: _RemoteFs):
    transport = FakeTransport(fs)
    channel = RpcChannel(transport)
    hosts = InMemoryHostStore([make_host()])
    registry = SessionRegistry(FakeSink)
    broker = CredentialBroker(channel, hosts, FakeUI(), remember_passwords=False)
    return FileBrowser(registry, TransferClient(channel, broker, hosts)), registry, transport


@pytest.mark.asyncio
async def test_refresh_replaces_listing() -> None:
    browser, _, transport = _browser(_RemoteFs())

    listing = await browser.refresh(1)

    assert listing.cwd == "/home/admin"
    assert [e.name for e in listing.entries] == ["docs", "notes.txt"]
    assert transport.requests == [{"type": "sftp_ls", "hostId": 1}]


@pytest.mark.asyncio
async def test_selection_survives_only_if_present() -> None:
    fs = _RemoteFs()
    browser, _, _ = _browser(fs)
    await browser.refresh(1)

    assert browser.select(1, "/home/admin/notes.txt")
    await browser.refresh(1)
    assert browser.listing(1).selected_path == "/home/admin/notes.txt"

    fs.listings["/home/admin"] = [HOME[0]]
    await browser.refresh(1)
    assert browser.listing(1).selected_path is None


@pytest.mark.asyncio
async def test_select_unknown_path_is_rejected() -> None:
    browser, _, _ = _browser(_RemoteFs())
    await browser.refresh(1)

    assert not browser.select(1, "/elsewhere")
    assert browser.listing(1).selected_path is None


@pytest.mark.asyncio
async def test_result_for_reset_browser_is_discarded() -> None:
    fs = _RemoteFs()
    fs.gate = asyncio.Event()
    browser, registry, _ = _browser(fs)

    pending = asyncio.create_task(browser.refresh(1))
    await asyncio.sleep(0)
    registry.reset()
    fs.gate.set()
    await pending

    assert registry.browser(1).entries == []
    assert registry.browser(1).cwd == ""


@pytest.mark.asyncio
async def test_open_navigates_into_directories_only() -> None:
    browser, _, _ = _browser(_RemoteFs())
    listing = await browser.refresh(1)
    docs, notes = listing.entries

    with pytest.raises(TransferError) as exc_info:
        await browser.open(1, notes)
    assert exc_info.value.code == "not_a_directory"

    listing = await browser.open(1, docs)
    assert listing.cwd == "/home/admin/docs"

    listing = await browser.up(1)
    assert listing.cwd == "/home/admin"


@pytest.mark.asyncio
async def test_move_into_requires_listed_directory() -> None:
    browser, _, transport = _browser(_RemoteFs())
    await browser.refresh(1)

    for target in ("/home/admin/notes.txt", "/home/admin/missing"):
        with pytest.raises(TransferError) as exc_info:
            await browser.move_into(1, "/home/admin/notes.txt", target)
        assert exc_info.value.code == "not_a_directory"
    assert transport.of_type("sftp_mv") == []

    await browser.move_into(1, "/home/admin/notes.txt", "/home/admin/docs")

    move = transport.of_type("sftp_mv")[0]
    assert move["from"] == "/home/admin/notes.txt"
    assert move["to"] == "/home/admin/docs/notes.txt"
    assert transport.types()[-1] == "sftp_ls"


@pytest.mark.asyncio
async def test_mutations_refresh_listing() -> None:
    browser, _, transport = _browser(_RemoteFs())
    await browser.refresh(1)

    await browser.make_dir(1, "build")
    await browser.rename(1, "/home/admin/notes.txt", "todo.txt")
    await browser.delete(1, "/home/admin/docs")

    assert transport.types() == [
        "sftp_ls",
        "sftp_mkdir",
        "sftp_ls",
        "sftp_mv",
        "sftp_ls",
        "sftp_rm",
        "sftp_ls",
    ]
    assert transport.of_type("sftp_mkdir")[0]["path"] == "/home/admin/build"
    assert transport.of_type("sftp_mv")[0]["to"] == "/home/admin/todo.txt"

    with pytest.raises(TransferError):
        await browser.rename(1, "/home/admin/notes.txt", "  ")


@pytest.mark.asyncio
async def test_upload_into_current_directory(tmp_path) -> None:
    browser, _, transport = _browser(_RemoteFs())
    await browser.refresh(1)
    source = tmp_path / "report.csv"
    source.write_bytes(b"a,b\n")

    session = await browser.upload(1, source)

    begin = transport.of_type("sftp_upload_begin")[0]
    assert begin["dir"] == "/home/admin"
    assert begin["name"] == "report.csv"
    assert session.completed
    assert transport.types()[-1] == "sftp_ls"
