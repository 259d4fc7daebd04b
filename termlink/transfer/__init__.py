"""Chunked file transfer over the terminal RPC channel."""

from .browser import FileBrowser
from .client import TransferClient
from .types import DirectoryListing, DirEntry, TransferError, UploadSession

__all__ = [
    "DirEntry",
    "DirectoryListing",
    "FileBrowser",
    "TransferClient",
    "TransferError",
    "UploadSession",
]
