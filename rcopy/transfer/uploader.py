"""
Upload Handler

Server side of the client-streaming Upload call. Each session is an explicit
state machine:

```
AWAITING_FIRST_CHUNK --first chunk--> RECEIVING --end of stream--> COMPLETED
AWAITING_FIRST_CHUNK --end of stream------------------------------> COMPLETED
AWAITING_FIRST_CHUNK, RECEIVING --any error-----------------------> FAILED
```

A stream with no chunks at all declares nothing, so it counts as an
empty upload of zero bytes: it succeeds and creates no file.

The first chunk opens the destination and fixes the declared size; every
chunk (the first included) is appended in arrival order. A failed upload
leaves whatever was written on disk.
"""

import logging
import os
from enum import Enum
from typing import Optional

import aiofiles

from ..errors import FileOpenError, SizeMismatchError, TransferError, WriteError
from .messages import FileUploadRequest, FileUploadResponse
from .protocol import ServerStream

logger = logging.getLogger(__name__)

UPLOAD_RECEIVED = "Upload received successfully"


class UploadState(Enum):
    AWAITING_FIRST_CHUNK = "awaiting_first_chunk"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    FAILED = "failed"


def _open_for_write(path, _flags):
    # Mode flags from open() are replaced: create if absent, never truncate.
    return os.open(path, os.O_WRONLY | os.O_CREAT, 0o644)


class UploadSession:
    """
    Byte accounting for one upload.

    Use as an async context manager so the destination is closed on every
    exit path and errors move the session to FAILED.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.logger = log or logger
        self.state = UploadState.AWAITING_FIRST_CHUNK
        self.filename: Optional[str] = None
        self.expected_size = 0
        self.total_bytes = 0
        self._file = None

    async def __aenter__(self) -> 'UploadSession':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.state = UploadState.FAILED
        await self.close()

    async def receive_chunk(self, request: FileUploadRequest):
        """Handle one inbound chunk."""
        if self.state is UploadState.AWAITING_FIRST_CHUNK:
            await self._open(request)
            self.state = UploadState.RECEIVING
        elif self.state is not UploadState.RECEIVING:
            raise TransferError(f"upload session is {self.state.value}")

        await self._write(request.content)

    async def finish(self) -> FileUploadResponse:
        """Handle end of stream: check the byte count against the declaration."""
        if self.state is UploadState.AWAITING_FIRST_CHUNK:
            self.logger.info("Server upload completed: 0 bytes, no chunks received")
            self.state = UploadState.COMPLETED
            return FileUploadResponse(message=UPLOAD_RECEIVED)
        if self.state is not UploadState.RECEIVING:
            raise TransferError(f"upload session is {self.state.value}")

        self.logger.info(f"Server upload of {self.filename} completed: {self.total_bytes} bytes")
        if self.total_bytes != self.expected_size:
            raise SizeMismatchError(self.expected_size, self.total_bytes)

        try:
            # Drop the tail of a longer file that was already there
            await self._file.truncate()
            await self._file.flush()
        except OSError as e:
            raise WriteError(f"failed to write file: {e}") from e
        await self.close()

        self.state = UploadState.COMPLETED
        return FileUploadResponse(message=UPLOAD_RECEIVED)

    async def close(self):
        if self._file is None:
            return
        f, self._file = self._file, None
        try:
            await f.close()
        except OSError as e:
            if self.state is not UploadState.FAILED:
                self.state = UploadState.FAILED
                raise WriteError(f"failed to write file: {e}") from e
            self.logger.debug(f"Error closing {self.filename} after failure: {e}")

    async def _open(self, request: FileUploadRequest):
        self.logger.info(f"Server accepting upload request: {request.filename} ({request.size} bytes)")
        try:
            self._file = await aiofiles.open(request.filename, 'wb', opener=_open_for_write)
        except (OSError, ValueError) as e:
            raise FileOpenError(f"failed to open file: {e}") from e
        self.filename = request.filename
        self.expected_size = request.size

    async def _write(self, content: bytes):
        if not content:
            return
        try:
            written = await self._file.write(content)
        except OSError as e:
            raise WriteError(f"failed to write file: {e}") from e
        if written != len(content):
            raise WriteError(f"short write: {written} of {len(content)} bytes")
        self.total_bytes += written


class UploadHandler:
    """
    Serves Upload calls.

    Registered with the RPC server for the client-streaming Upload method.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.logger = log or logger

        # Statistics
        self.files_received = 0
        self.bytes_received = 0

    async def __call__(self, stream: ServerStream) -> FileUploadResponse:
        async with UploadSession(self.logger) as session:
            while True:
                try:
                    request = await stream.recv()
                except TransferError as e:
                    raise TransferError(f"failed to receive file: {e}") from e
                if request is None:
                    response = await session.finish()
                    break
                await session.receive_chunk(request)

        self.files_received += 1
        self.bytes_received += session.total_bytes
        return response

    def get_stats(self) -> dict:
        return {
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
        }
