"""Remote filesystem operations over the RPC channel.

Every operation is a single host-scoped request on the same channel used for
terminal I/O. All of them go through one credential wrapper that resolves
host-key trust and password prompts through the shared
:class:`CredentialBroker`, retrying at most once per kind of failure.
"""

import contextlib
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

import aiofiles
from loguru import logger

from termlink.config import HOST_KEY_MISMATCH, PASSWORD_REQUIRED, config
from termlink.connection.credentials import CredentialBroker
from termlink.hosts import HostRecord, HostStore
from termlink.transport import RpcChannel, RpcError, TransportError, b64decode, b64encode

from .types import DirEntry, TransferError, UploadSession

UploadSource = bytes | str | Path


class TransferClient:
    """Chunked upload/download, listing and mutation of remote files."""

    def __init__(
        self,
        channel: RpcChannel,
        broker: CredentialBroker,
        hosts: HostStore,
        chunk_size: Optional[int] = None,
    ) -> None:
        self.channel = channel
        self.broker = broker
        self.hosts = hosts
        self.chunk_size = chunk_size or config.timings.transfer.chunk_size

    async def _call(self, host_id: int, request_type: str, **fields: Any) -> dict[str, Any]:
        """Issue a host-scoped request with credential fallback.

        Raises:
            TransferError: On any failure that survives one trust retry and
                one password retry
        """
        host = self.hosts.get(host_id)
        if host is None:
            raise TransferError("unknown_host", f"host {host_id} is not configured")

        trust_retried = False
        password_retried = False
        while True:
            try:
                return await self.channel.call(
                    request_type,
                    hostId=host_id,
                    **fields,
                    **self.broker.transfer_fields(host),
                )
            except TransportError as e:
                raise TransferError("transport_failed", str(e)) from e
            except RpcError as e:
                if e.is_trust_error and not trust_retried:
                    trust_retried = True
                    if await self._trust(host, e):
                        continue
                    raise TransferError(e.code, "host key was not trusted") from e
                if (
                    e.code == PASSWORD_REQUIRED
                    and not password_retried
                    and host.sftp_reuses_connection
                ):
                    password_retried = True
                    if await self.broker.obtain_password(host):
                        continue
                    raise TransferError(e.code, "password prompt cancelled") from e
                raise TransferError(e.code, e.detail) from e

    async def _trust(self, host: HostRecord, error: RpcError) -> bool:
        try:
            return await self.broker.ensure_trusted(
                host,
                error.host_port,
                error.fingerprint,
                changed=error.code == HOST_KEY_MISMATCH,
            )
        except (TransportError, RpcError) as e:
            raise TransferError("trust_failed", str(e)) from e

    async def list_dir(self, host_id: int, path: str = "") -> tuple[str, list[DirEntry]]:
        """List a remote directory.

        Returns:
            (cwd, entries) where cwd is the resolved directory
        """
        data = await self._call(host_id, "sftp_ls", path=path)
        entries = [DirEntry.from_dict(e) for e in data.get("entries") or []]
        return str(data.get("cwd") or path), entries

    async def mkdir(self, host_id: int, path: str) -> None:
        await self._call(host_id, "sftp_mkdir", path=path)

    async def remove(self, host_id: int, path: str) -> None:
        await self._call(host_id, "sftp_rm", path=path)

    async def rename(self, host_id: int, src: str, dst: str) -> None:
        await self._call(host_id, "sftp_mv", **{"from": src, "to": dst})

    async def read_file(self, host_id: int, path: str) -> bytes:
        data = await self._call(host_id, "sftp_read", path=path)
        encoded = data.get("dataB64") or ""
        try:
            return b64decode(encoded) if encoded else b""
        except ValueError as e:
            raise TransferError("bad_response", "file content is not valid base64") from e

    async def write_file(self, host_id: int, path: str, data: bytes | str) -> None:
        await self._call(host_id, "sftp_write", path=path, dataB64=b64encode(data))

    async def download(self, host_id: int, path: str) -> str:
        """Download a remote file into the local downloads directory.

        Returns:
            The local destination path reported by the bridge
        """
        data = await self._call(host_id, "sftp_download", path=path)
        local_path = str(data.get("localPath") or "")
        logger.info(f"Downloaded {path} from host {host_id} to {local_path}")
        return local_path

    async def upload(
        self,
        host_id: int,
        directory: str,
        name: str,
        source: UploadSource,
        on_progress: Optional[Callable[[UploadSession], None]] = None,
    ) -> UploadSession:
        """Upload bytes or a local file in ordered fixed-size chunks.

        The next slice is read only after the previous chunk call resolved.
        If a chunk fails the upload is abandoned: no end call is issued.

        Raises:
            TransferError: If begin, any chunk, or end failed
        """
        if not isinstance(source, bytes) and not Path(source).expanduser().is_file():
            raise TransferError("local_file_missing", str(source))

        data = await self._call(host_id, "sftp_upload_begin", dir=directory, name=name)
        upload_id = data.get("uploadId")
        if not upload_id:
            raise TransferError("bad_response", "upload begin returned no uploadId")
        session = UploadSession(upload_id=str(upload_id), directory=directory, name=name)

        try:
            async with contextlib.aclosing(self._iter_chunks(source)) as chunks:
                async for chunk in chunks:
                    await self._send_chunk(host_id, session, chunk)
                    if on_progress:
                        on_progress(session)
        except OSError as e:
            logger.warning(f"Upload {session.upload_id} of {name} abandoned: {e}")
            raise TransferError("local_read_failed", str(e)) from e

        try:
            await self.channel.call("sftp_upload_end", hostId=host_id, uploadId=session.upload_id)
        except (TransportError, RpcError) as e:
            raise self._as_transfer_error(e) from e

        session.completed = True
        logger.info(
            f"Uploaded {name} to {directory} on host {host_id} "
            f"({session.bytes_sent} bytes, {session.chunks_sent} chunks)"
        )
        return session

    async def _send_chunk(self, host_id: int, session: UploadSession, chunk: bytes) -> None:
        try:
            await self.channel.call(
                "sftp_upload_chunk",
                hostId=host_id,
                uploadId=session.upload_id,
                dataB64=b64encode(chunk),
            )
        except (TransportError, RpcError) as e:
            logger.warning(
                f"Upload {session.upload_id} of {session.name} abandoned after "
                f"{session.chunks_sent} chunk(s): {e}"
            )
            raise self._as_transfer_error(e) from e
        session.bytes_sent += len(chunk)
        session.chunks_sent += 1

    async def _iter_chunks(self, source: UploadSource) -> AsyncIterator[bytes]:
        if isinstance(source, bytes):
            for start in range(0, len(source), self.chunk_size):
                yield source[start : start + self.chunk_size]
            return

        async with aiofiles.open(Path(source).expanduser(), "rb") as f:
            while True:
                chunk = await f.read(self.chunk_size)
                if not chunk:
                    break
                yield chunk

    @staticmethod
    def _as_transfer_error(error: Exception) -> TransferError:
        if isinstance(error, RpcError):
            return TransferError(error.code, error.detail)
        return TransferError("transport_failed", str(error))
