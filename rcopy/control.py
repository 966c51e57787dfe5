"""
Control Operations

Ping answers with a fixed "pong". Shutdown answers immediately and then,
once the answer has been flushed, terminates the whole process after a
short delay. There is no drain: transfers still running are cut off.

The delay only makes it likely that the response reaches the caller; on a
slow or congested link the process may exit before the client has read it.
"""

import asyncio
import logging
import os
from typing import Callable, Optional

from .transfer.messages import PingRequest, PingResponse, ShutdownRequest, ShutdownResponse
from .transfer.protocol import ServerStream

logger = logging.getLogger(__name__)

PONG = "pong"
DEFAULT_SHUTDOWN_DELAY = 1.0


def terminate_process():
    """Flush logging and exit the process immediately."""
    logging.shutdown()
    os._exit(0)


class ControlService:
    """Ping and Shutdown handlers."""

    def __init__(self, shutdown_delay: float = DEFAULT_SHUTDOWN_DELAY,
                 terminate: Optional[Callable[[], None]] = None,
                 log: Optional[logging.Logger] = None):
        self.shutdown_delay = shutdown_delay
        self.terminate = terminate or terminate_process
        self.logger = log or logger
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def shutdown_pending(self) -> bool:
        return self._timer is not None

    async def ping(self, request: PingRequest, stream: ServerStream) -> PingResponse:
        self.logger.info(f"Ping: {request.message}")
        return PingResponse(message=PONG)

    async def shutdown(self, request: ShutdownRequest,
                       stream: ServerStream) -> ShutdownResponse:
        self.logger.info("Server shutdown requested")
        stream.add_done_callback(self._schedule_exit)
        return ShutdownResponse()

    def _schedule_exit(self):
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.shutdown_delay, self._exit)

    def _exit(self):
        self.logger.info("Server shutdown completed")
        self.terminate()
