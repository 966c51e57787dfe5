"""
rcopy Server - Main Controller

Wires the components together:
- Listener (plain TCP, or TLS with a loaded or generated certificate)
- Upload / Download handlers
- Ping / Shutdown control operations

Listener construction (and certificate provisioning) happens once in
``start()``; any failure there aborts start-up.
"""

import logging
from typing import Callable, Optional, Tuple

from .config import Config
from .control import ControlService
from .security import Listener, build_listener
from .transfer import (
    DOWNLOAD, PING, SHUTDOWN, UPLOAD,
    DownloadHandler, RpcServer, UploadHandler,
)

logger = logging.getLogger(__name__)


class FileTransferServer:
    """
    The FileTransfer service.

    Combines the handlers into a running server:
    - start(): bind the listener and begin accepting sessions
    - serve_forever(): block until stopped (or shut down remotely)
    - stop(): stop accepting sessions
    """

    def __init__(self, config: Optional[Config] = None,
                 log: Optional[logging.Logger] = None,
                 terminate: Optional[Callable[[], None]] = None):
        """
        Args:
            config: Server configuration (uses defaults if not provided)
            log: Logger handed to every component
            terminate: Called by Shutdown to end the process
        """
        self.config = config or Config()
        self.logger = log or logger

        self.rpc = RpcServer(log=self.logger)
        self.uploader = UploadHandler(log=self.logger)
        self.downloader = DownloadHandler(
            chunk_size=self.config.chunk_size,
            log=self.logger,
        )
        self.control = ControlService(
            shutdown_delay=self.config.shutdown_delay,
            terminate=terminate,
            log=self.logger,
        )

        self.listener: Optional[Listener] = None
        self._running = False

        self._setup_handlers()

    def _setup_handlers(self):
        """Register method handlers with the RPC server."""
        self.rpc.set_handler(UPLOAD, self.uploader)
        self.rpc.set_handler(DOWNLOAD, self.downloader)
        self.rpc.set_handler(PING, self.control.ping)
        self.rpc.set_handler(SHUTDOWN, self.control.shutdown)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Tuple[str, int]:
        if self.listener is None:
            raise RuntimeError("server not started")
        return self.listener.address

    async def start(self):
        """
        Start the server.

        Raises:
            BindError: listener could not be bound
            CertificateLoadError, CertificateGenerationError: TLS setup failed
        """
        if self._running:
            return

        self.listener = build_listener(
            self.config.host,
            self.config.port,
            tls=self.config.tls,
            cert_file=self.config.cert_file,
            key_file=self.config.key_file,
            log=self.logger,
        )
        try:
            await self.rpc.start(self.listener.sock, self.listener.ssl_context)
        except BaseException:
            self.listener.close()
            raise
        self._running = True

        host, port = self.listener.address
        self.logger.info(f"Starting server on {host}:{port} (tls={self.listener.secure})")

    async def serve_forever(self):
        await self.rpc.serve_forever()

    async def stop(self):
        """Stop the server."""
        if not self._running:
            return
        self._running = False
        await self.rpc.stop()
        self.logger.info(
            f"Server stopped. Received {self.uploader.files_received} files, "
            f"sent {self.downloader.files_sent} files"
        )

    def get_stats(self) -> dict:
        return {
            'running': self._running,
            'uploader': self.uploader.get_stats(),
            'downloader': self.downloader.get_stats(),
        }


async def run_server(config: Optional[Config] = None,
                     log: Optional[logging.Logger] = None):
    """
    Run a server until cancelled or shut down remotely.
    """
    server = FileTransferServer(config, log=log)
    await server.start()
    try:
        await server.serve_forever()
    finally:
        await server.stop()
