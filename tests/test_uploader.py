"""Tests for transfer/uploader.py - upload state machine."""

import asyncio
import errno

import pytest

from rcopy.errors import FileOpenError, SizeMismatchError, TransferError, WriteError
from rcopy.transfer import uploader
from rcopy.transfer.messages import FileUploadRequest
from rcopy.transfer.uploader import UPLOAD_RECEIVED, UploadHandler, UploadSession, UploadState


class FakeStream:
    """Stands in for ServerStream: replays requests, then end of stream."""

    def __init__(self, requests, fail_after=None):
        self.requests = list(requests)
        self.fail_after = fail_after
        self.received = 0

    async def recv(self):
        if self.fail_after is not None and self.received >= self.fail_after:
            raise TransferError("connection reset")
        if not self.requests:
            return None
        self.received += 1
        return self.requests.pop(0)


def chunks_of(data: bytes, size: int, filename: str, declared=None):
    declared = len(data) if declared is None else declared
    pieces = [data[i:i + size] for i in range(0, len(data), size)] or [b'']
    return [FileUploadRequest(filename=filename, content=p, size=declared) for p in pieces]


class TestUploadSession:
    """Tests for the UploadSession state transitions."""

    def test_starts_awaiting_first_chunk(self):
        assert UploadSession().state is UploadState.AWAITING_FIRST_CHUNK

    def test_first_chunk_opens_and_declares(self, tmp_path):
        dest = tmp_path / "out.bin"

        async def run():
            async with UploadSession() as session:
                await session.receive_chunk(FileUploadRequest(str(dest), b'abc', 6))
                assert session.state is UploadState.RECEIVING
                assert session.expected_size == 6
                assert dest.exists()

                # Later chunks do not re-open or re-declare
                await session.receive_chunk(FileUploadRequest('ignored', b'def', 99))
                assert session.filename == str(dest)
                assert session.expected_size == 6

                response = await session.finish()
            return session, response

        session, response = asyncio.run(run())

        assert session.state is UploadState.COMPLETED
        assert response.message == UPLOAD_RECEIVED
        assert dest.read_bytes() == b'abcdef'

    def test_end_before_first_chunk(self, tmp_path):
        """A stream without chunks is an empty upload and creates nothing."""
        session = UploadSession()

        async def run():
            async with session:
                return await session.finish()

        response = asyncio.run(run())

        assert response.message == UPLOAD_RECEIVED
        assert session.state is UploadState.COMPLETED
        assert session.total_bytes == 0
        assert list(tmp_path.iterdir()) == []

    def test_size_mismatch_marks_failed_and_keeps_file(self, tmp_path):
        dest = tmp_path / "out.bin"
        session = UploadSession()

        async def run():
            async with session:
                await session.receive_chunk(FileUploadRequest(str(dest), b'abc', 10))
                await session.finish()

        with pytest.raises(SizeMismatchError) as exc_info:
            asyncio.run(run())

        assert exc_info.value.expected == 10
        assert exc_info.value.actual == 3
        assert session.state is UploadState.FAILED
        assert dest.read_bytes() == b'abc'

    def test_open_failure(self, tmp_path):
        missing_dir = tmp_path / "no" / "such" / "dir" / "out.bin"
        session = UploadSession()

        async def run():
            async with session:
                await session.receive_chunk(FileUploadRequest(str(missing_dir), b'abc', 3))

        with pytest.raises(FileOpenError):
            asyncio.run(run())
        assert session.state is UploadState.FAILED

    def test_open_failure_empty_filename(self):
        async def run():
            async with UploadSession() as session:
                await session.receive_chunk(FileUploadRequest('', b'abc', 3))

        with pytest.raises(FileOpenError):
            asyncio.run(run())

    def test_overwrites_longer_existing_file(self, tmp_path):
        """Successful upload leaves exactly the uploaded bytes."""
        dest = tmp_path / "out.bin"
        dest.write_bytes(b'X' * 100)

        async def run():
            async with UploadSession() as session:
                await session.receive_chunk(FileUploadRequest(str(dest), b'short', 5))
                await session.finish()

        asyncio.run(run())
        assert dest.read_bytes() == b'short'

    def test_failed_upload_does_not_truncate(self, tmp_path):
        dest = tmp_path / "out.bin"
        dest.write_bytes(b'X' * 10)

        async def run():
            async with UploadSession() as session:
                await session.receive_chunk(FileUploadRequest(str(dest), b'ab', 5))
                await session.finish()

        with pytest.raises(SizeMismatchError):
            asyncio.run(run())
        assert dest.read_bytes() == b'ab' + b'X' * 8

    def test_chunk_after_completion(self, tmp_path):
        dest = tmp_path / "out.bin"

        async def run():
            async with UploadSession() as session:
                await session.receive_chunk(FileUploadRequest(str(dest), b'a', 1))
                await session.finish()
                await session.receive_chunk(FileUploadRequest(str(dest), b'b', 1))

        with pytest.raises(TransferError, match="completed"):
            asyncio.run(run())


class TestUploadHandler:
    """Tests for UploadHandler driving a stream."""

    @pytest.mark.parametrize("chunk_size", [1, 7, 4096, 100_000])
    def test_byte_exact(self, tmp_path, sample_file, chunk_size):
        source = sample_file(10_000)
        dest = tmp_path / "dest.bin"
        data = source.read_bytes()
        handler = UploadHandler()

        response = asyncio.run(handler(FakeStream(chunks_of(data, chunk_size, str(dest)))))

        assert response.message == UPLOAD_RECEIVED
        assert dest.read_bytes() == data
        assert handler.get_stats() == {'files_received': 1, 'bytes_received': 10_000}

    def test_zero_byte_file(self, tmp_path):
        dest = tmp_path / "empty.bin"

        response = asyncio.run(UploadHandler()(FakeStream(chunks_of(b'', 10, str(dest)))))

        assert response.message == UPLOAD_RECEIVED
        assert dest.exists()
        assert dest.stat().st_size == 0

    def test_more_bytes_than_declared(self, tmp_path):
        dest = tmp_path / "dest.bin"
        requests = chunks_of(b'0123456789', 4, str(dest), declared=5)

        with pytest.raises(SizeMismatchError) as exc_info:
            asyncio.run(UploadHandler()(FakeStream(requests)))
        assert (exc_info.value.expected, exc_info.value.actual) == (5, 10)

    def test_receive_error(self, tmp_path):
        dest = tmp_path / "dest.bin"
        stream = FakeStream(chunks_of(b'0123456789', 2, str(dest)), fail_after=2)
        handler = UploadHandler()

        with pytest.raises(TransferError, match="failed to receive file"):
            asyncio.run(handler(stream))

        assert dest.read_bytes() == b'0123'
        assert handler.files_received == 0


class StubWriter:
    """Destination file whose writes come up short or fail."""

    def __init__(self, short_by=0, error=None):
        self.short_by = short_by
        self.error = error
        self.closed = False

    async def write(self, data):
        if self.error is not None:
            raise self.error
        return len(data) - self.short_by

    async def close(self):
        self.closed = True


class TestUploadWriteErrors:
    """Write failures end the session as WriteError."""

    @pytest.fixture
    def stub_open(self, monkeypatch):
        def install(writer):
            async def fake_open(*args, **kwargs):
                return writer
            monkeypatch.setattr(uploader.aiofiles, 'open', fake_open)
            return writer
        return install

    def test_short_write(self, stub_open):
        writer = stub_open(StubWriter(short_by=2))
        session = UploadSession()

        async def run():
            async with session:
                await session.receive_chunk(FileUploadRequest('dest.bin', b'abcdef', 6))

        with pytest.raises(WriteError, match="short write: 4 of 6 bytes"):
            asyncio.run(run())

        assert session.state is UploadState.FAILED
        assert session.total_bytes == 0
        assert writer.closed

    def test_write_oserror(self, stub_open):
        writer = stub_open(StubWriter(error=OSError(errno.ENOSPC, "No space left on device")))
        handler = UploadHandler()
        stream = FakeStream([FileUploadRequest('dest.bin', b'abc', 3)])

        with pytest.raises(WriteError, match="failed to write file"):
            asyncio.run(handler(stream))

        assert writer.closed
        assert handler.files_received == 0
