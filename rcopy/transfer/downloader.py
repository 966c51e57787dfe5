"""
Download Handler

Server side of the server-streaming Download call. The file's size is taken
from fstat right after opening; every chunk message repeats that size, and
the session only succeeds when the bytes sent add up to it. A file that
grows or shrinks while it is being read is reported as a size mismatch.
"""

import logging
import os
from typing import Optional

import aiofiles

from ..errors import FileOpenError, ReadError, SizeMismatchError, TransferError
from .messages import FileDownloadRequest, FileDownloadResponse
from .protocol import STREAM_BUFFER_SIZE, ServerStream

logger = logging.getLogger(__name__)


class DownloadHandler:
    """
    Serves Download calls.

    Reads the requested file sequentially in ``chunk_size`` pieces and sends
    one response message per piece.
    """

    def __init__(self, chunk_size: int = STREAM_BUFFER_SIZE,
                 log: Optional[logging.Logger] = None):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self.logger = log or logger

        # Statistics
        self.files_sent = 0
        self.bytes_sent = 0

    async def __call__(self, request: FileDownloadRequest,
                       stream: ServerStream) -> None:
        self.logger.info(f"Server accepting download request: {request.filename}")
        try:
            # Unbuffered: every read reflects the file as it is on disk now
            f = await aiofiles.open(request.filename, 'rb', buffering=0)
        except (OSError, ValueError) as e:
            raise FileOpenError(f"failed to open file: {e}") from e

        try:
            total_bytes = await self._send_file(f, request.filename, stream)
        finally:
            await f.close()

        self.files_sent += 1
        self.bytes_sent += total_bytes

    async def _send_file(self, f, filename: str, stream: ServerStream) -> int:
        try:
            expected_bytes = os.fstat(f.fileno()).st_size
        except OSError as e:
            raise ReadError(f"failed to stat file: {e}") from e

        total_bytes = 0
        while True:
            try:
                chunk = await f.read(self.chunk_size)
            except OSError as e:
                raise ReadError(f"failed to read file: {e}") from e
            if not chunk:
                break

            try:
                await stream.send(FileDownloadResponse(
                    filename=filename,
                    content=chunk,
                    size=expected_bytes,
                ))
            except TransferError as e:
                raise TransferError(f"failed to send file: {e}") from e
            total_bytes += len(chunk)

        self.logger.info(f"Server download of {filename} completed: {total_bytes} bytes")
        if total_bytes != expected_bytes:
            raise SizeMismatchError(expected_bytes, total_bytes)
        return total_bytes

    def get_stats(self) -> dict:
        return {
            'files_sent': self.files_sent,
            'bytes_sent': self.bytes_sent,
        }
