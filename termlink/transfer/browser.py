"""Per-host file browser state driven by the transfer client."""

import posixpath
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

from .client import TransferClient, UploadSource
from .types import DirEntry, DirectoryListing, TransferError, UploadSession

if TYPE_CHECKING:
    from termlink.session.registry import SessionRegistry


class FileBrowser:
    """Navigation, selection and mutations for the companion file browser.

    Listings are always replaced wholesale on refresh. A refresh that
    resolves after the host's browser state was reset is discarded.
    """

    def __init__(self, registry: "SessionRegistry", transfer: TransferClient) -> None:
        self.registry = registry
        self.transfer = transfer

    def listing(self, host_id: int) -> DirectoryListing:
        return self.registry.browser(host_id)

    async def refresh(self, host_id: int, path: Optional[str] = None) -> DirectoryListing:
        """Reload the current directory, or navigate to ``path``."""
        listing = self.registry.browser(host_id)
        target = listing.cwd if path is None else path
        cwd, entries = await self.transfer.list_dir(host_id, target)

        if self.registry.browsers.get(host_id) is not listing:
            logger.debug(f"Discarding stale listing for host {host_id}")
            return listing

        listing.replace(cwd, entries)
        return listing

    async def open(self, host_id: int, entry: DirEntry) -> DirectoryListing:
        if not entry.is_dir:
            raise TransferError("not_a_directory", entry.path)
        return await self.refresh(host_id, entry.path)

    async def up(self, host_id: int) -> DirectoryListing:
        cwd = self.listing(host_id).cwd.rstrip("/")
        parent = posixpath.dirname(cwd) or "/"
        return await self.refresh(host_id, parent)

    def select(self, host_id: int, path: Optional[str]) -> bool:
        """Select an entry of the current listing (None clears)."""
        listing = self.listing(host_id)
        if path is not None and listing.find(path) is None:
            return False
        listing.selected_path = path
        return True

    async def make_dir(self, host_id: int, name: str) -> DirectoryListing:
        path = posixpath.join(self.listing(host_id).cwd or "/", name)
        await self.transfer.mkdir(host_id, path)
        return await self.refresh(host_id)

    async def delete(self, host_id: int, path: str) -> DirectoryListing:
        await self.transfer.remove(host_id, path)
        return await self.refresh(host_id)

    async def rename(self, host_id: int, path: str, new_name: str) -> DirectoryListing:
        new_name = new_name.strip()
        if not new_name or "/" in new_name:
            raise TransferError("invalid_name", new_name)
        dst = posixpath.join(posixpath.dirname(path.rstrip("/")), new_name)
        await self.transfer.rename(host_id, path, dst)
        return await self.refresh(host_id)

    async def move_into(self, host_id: int, src: str, target_dir: str) -> DirectoryListing:
        """Move an entry into a directory of the current listing (drag and drop)."""
        target = self.listing(host_id).find(target_dir)
        if target is None or not target.is_dir:
            raise TransferError("not_a_directory", target_dir)
        if src.rstrip("/") == target.path.rstrip("/"):
            raise TransferError("invalid_move", "cannot move a directory into itself")
        dst = posixpath.join(target.path, posixpath.basename(src.rstrip("/")))
        await self.transfer.rename(host_id, src, dst)
        return await self.refresh(host_id)

    async def upload(
        self, host_id: int, source: UploadSource, name: Optional[str] = None
    ) -> UploadSession:
        """Upload into the current directory and refresh the listing."""
        if name is None:
            if isinstance(source, bytes):
                raise TransferError("invalid_name", "a name is required for in-memory uploads")
            name = Path(source).name
        directory = self.listing(host_id).cwd or "/"
        session = await self.transfer.upload(host_id, directory, name, source)
        await self.refresh(host_id)
        return session
