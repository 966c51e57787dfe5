"""Shared pytest fixtures for rcopy tests."""

import os
from contextlib import asynccontextmanager

import pytest

from rcopy.client import FileTransferClient
from rcopy.config import Config
from rcopy.server import FileTransferServer


@pytest.fixture
def terminations():
    """Records calls to the server's process terminator."""
    return []


@pytest.fixture
def serve(terminations):
    """Start a server on an ephemeral 127.0.0.1 port.

    Usage (inside a coroutine):
        async with serve(tls=True) as server:
            ...
    """
    @asynccontextmanager
    async def _serve(**overrides):
        settings = {
            'host': '127.0.0.1',
            'port': 0,
            'tls': False,
            'shutdown_delay': 0.05,
        }
        settings.update(overrides)
        server = FileTransferServer(
            Config(**settings),
            terminate=lambda: terminations.append(True),
        )
        await server.start()
        try:
            yield server
        finally:
            await server.stop()

    return _serve


@pytest.fixture
def make_client():
    """Build a client pointed at a running server."""
    def _make(server, **overrides):
        host, port = server.address
        settings = {
            'host': host,
            'port': port,
            'tls': server.listener.secure,
            'connect_timeout': 5.0,
        }
        settings.update(overrides)
        return FileTransferClient(Config(**settings))

    return _make


@pytest.fixture
def sample_file(tmp_path):
    """Create a file of random content with the given size."""
    def _make(size: int, name: str = 'source.bin'):
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return path

    return _make
