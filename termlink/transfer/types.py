"""File transfer types and dataclasses."""

from dataclasses import dataclass, field
from typing import Any, Optional


class TransferError(Exception):
    """Raised when a remote filesystem operation failed."""

    def __init__(self, code: str, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(f"{code}: {detail}" if detail else code)


@dataclass
class DirEntry:
    """One entry of a remote directory listing."""

    name: str
    path: str
    is_dir: bool = False
    size: int = 0
    mode: int = 0
    modified_unix_time: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DirEntry":
        return cls(
            name=str(data.get("name", "")),
            path=str(data.get("path", "")),
            is_dir=bool(data.get("isDir", False)),
            size=int(data.get("size") or 0),
            mode=int(data.get("mode") or 0),
            modified_unix_time=int(data.get("modUnix") or 0),
        )


@dataclass
class DirectoryListing:
    """File browser state for one host."""

    host_id: int
    cwd: str = ""
    entries: list[DirEntry] = field(default_factory=list)
    selected_path: Optional[str] = None

    def find(self, path: str) -> Optional[DirEntry]:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def replace(self, cwd: str, entries: list[DirEntry]) -> None:
        """Replace the listing; keep the selection only if still present."""
        self.cwd = cwd
        self.entries = list(entries)
        if self.selected_path is not None and self.find(self.selected_path) is None:
            self.selected_path = None


@dataclass
class UploadSession:
    """An in-progress chunked upload."""

    upload_id: str
    directory: str
    name: str
    bytes_sent: int = 0
    chunks_sent: int = 0
    completed: bool = False
