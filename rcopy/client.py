"""
rcopy Client

Drives the four RPC operations. Each call uses its own connection.

Locations follow scp: ``host:path`` (or ``:path`` for the configured host)
names a file on the server, anything else is local. ``copy()`` needs exactly
one remote side and picks Upload or Download accordingly.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import aiofiles

from .config import Config
from .errors import FileOpenError, ReadError, SizeMismatchError, TransferError, WriteError
from .security import client_context, get_cert_fingerprint, normalize_fingerprint
from .transfer import (
    DOWNLOAD, PING, SHUTDOWN, UPLOAD,
    FileDownloadRequest, FileUploadRequest, PingRequest, RpcChannel, ShutdownRequest,
)

logger = logging.getLogger(__name__)

# Progress callback: (bytes transferred so far, total bytes)
ProgressCallback = Callable[[int, int], None]


@dataclass
class Location:
    """A parsed copy source or destination."""
    path: str
    host: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    def __str__(self) -> str:
        return f"{self.host}:{self.path}" if self.is_remote else self.path


def parse_location(text: str, default_host: str) -> Location:
    """
    Parse ``host:path``, ``:path`` or a local path.

    A colon after a slash belongs to a local path (``./a:b``), as in scp.
    """
    if text.startswith(':'):
        return Location(path=text[1:], host=default_host)
    head, sep, tail = text.partition(':')
    if sep and head and '/' not in head:
        return Location(path=tail, host=head)
    return Location(path=text)


class FileTransferClient:
    """
    Client for the FileTransfer service.

    - ping(message): liveness check
    - shutdown(): stop the remote server process
    - upload(local, remote) / download(remote, local)
    - copy(src, dest): cp-like front end over upload/download
    """

    def __init__(self, config: Optional[Config] = None,
                 log: Optional[logging.Logger] = None):
        self.config = config or Config()
        self.logger = log or logger

    async def connect(self, host: Optional[str] = None) -> RpcChannel:
        """
        Open a connection, verifying the pinned fingerprint if configured.

        Raises:
            TransferError: connection failed or fingerprint mismatch
        """
        host = host or self.config.host
        ssl_context = client_context(self.config.ca_file) if self.config.tls else None
        if ssl_context is None:
            self.logger.debug("Connecting without TLS")

        channel = await RpcChannel.connect(
            host, self.config.port,
            ssl_context=ssl_context,
            timeout=self.config.connect_timeout,
        )

        if ssl_context is not None and self.config.fingerprint:
            der = channel.peer_certificate()
            actual = get_cert_fingerprint(der) if der else ''
            if normalize_fingerprint(actual) != normalize_fingerprint(self.config.fingerprint):
                await channel.close()
                raise TransferError(
                    f"server certificate fingerprint mismatch: expected "
                    f"{self.config.fingerprint}, got {actual or 'none'}"
                )
        return channel

    # === Control ===

    async def ping(self, message: str = "ping", host: Optional[str] = None) -> str:
        async with await self.connect(host) as channel:
            response = await channel.unary(PING, PingRequest(message=message))
        self.logger.info(f"Ping response: {response.message}")
        return response.message

    async def shutdown(self, host: Optional[str] = None):
        async with await self.connect(host) as channel:
            await channel.unary(SHUTDOWN, ShutdownRequest())
        self.logger.info("Server shutdown requested")

    # === Transfers ===

    async def upload(self, local_path, remote_path: str,
                     host: Optional[str] = None,
                     progress: Optional[ProgressCallback] = None) -> str:
        """
        Send a local file to the server.

        Returns:
            The server's acknowledgement message
        """
        local_path = Path(local_path)
        if remote_path == '' or remote_path.endswith('/'):
            remote_path = remote_path + local_path.name

        try:
            f = await aiofiles.open(local_path, 'rb')
        except (OSError, ValueError) as e:
            raise FileOpenError(f"failed to open file: {e}") from e

        try:
            size = os.fstat(f.fileno()).st_size
            self.logger.info(f"Uploading {local_path} to {remote_path} ({size} bytes)")

            async with await self.connect(host) as channel:
                call = await channel.open(UPLOAD)
                sent = 0
                first = True
                while True:
                    try:
                        chunk = await f.read(self.config.chunk_size)
                    except OSError as e:
                        raise ReadError(f"failed to read file: {e}") from e
                    # The first message declares the upload, even for empty files
                    if not chunk and not first:
                        break
                    await call.send(FileUploadRequest(
                        filename=remote_path,
                        content=chunk,
                        size=size,
                    ))
                    first = False
                    sent += len(chunk)
                    if progress:
                        progress(sent, size)
                    if not chunk:
                        break
                await call.done_writing()
                response = await call.result()
        finally:
            await f.close()

        self.logger.info(f"Upload completed: {sent} bytes")
        return response.message

    async def download(self, remote_path: str, local_path,
                       host: Optional[str] = None,
                       progress: Optional[ProgressCallback] = None) -> int:
        """
        Fetch a file from the server into ``local_path``.

        Returns:
            Number of bytes received
        """
        local_path = Path(local_path)
        if local_path.is_dir():
            local_path = local_path / os.path.basename(remote_path)
        self.logger.info(f"Downloading {remote_path} to {local_path}")

        try:
            f = await aiofiles.open(local_path, 'wb')
        except (OSError, ValueError) as e:
            raise FileOpenError(f"failed to open file: {e}") from e

        received = 0
        expected: Optional[int] = None
        try:
            async with await self.connect(host) as channel:
                call = await channel.open(DOWNLOAD)
                await call.send(FileDownloadRequest(filename=remote_path))
                await call.done_writing()

                while True:
                    response = await call.recv()
                    if response is None:
                        break
                    if expected is None:
                        expected = response.size
                    elif response.size != expected:
                        raise TransferError(
                            f"size changed during download: {expected} -> {response.size}"
                        )
                    try:
                        await f.write(response.content)
                    except OSError as e:
                        raise WriteError(f"failed to write file: {e}") from e
                    received += len(response.content)
                    if progress:
                        progress(received, expected)
        finally:
            await f.close()

        expected = expected or 0
        if received != expected:
            raise SizeMismatchError(expected, received)

        self.logger.info(f"Download completed: {received} bytes")
        return received

    async def copy(self, src: str, dest: str,
                   progress: Optional[ProgressCallback] = None):
        """Copy between a local path and a remote ``host:path``."""
        source = parse_location(src, self.config.host)
        target = parse_location(dest, self.config.host)

        if source.is_remote and target.is_remote:
            raise ValueError("copying between two remote locations is not supported")
        if not source.is_remote and not target.is_remote:
            raise ValueError("one of source and destination must be remote (host:path)")

        if target.is_remote:
            return await self.upload(source.path, target.path,
                                     host=target.host, progress=progress)
        return await self.download(source.path, target.path,
                                   host=source.host, progress=progress)
