"""
Streaming RPC Protocol

Design Decision: RPC Transport
==============================

Options Considered:
1. gRPC
   - Streaming calls out of the box
   - Needs generated stubs and a protoc step in the build

2. HTTP with chunked bodies
   - Standard, but awkward for a terminal status after a body

3. Custom TCP framing over asyncio streams
   - Small, no code generation
   - Same framing for TLS and plain TCP

Decision: Length-prefixed frames with a JSON header and a binary payload.

Frame Format:
```
+----------------+----------------+----------------+----------------+
| Length (4B)    | Header len (4B)| Header (JSON)  | Data (binary)  |
+----------------+----------------+----------------+----------------+
```

Session Layout:
```
client -> server   OPEN {method}
client -> server   MESSAGE*            (request messages)
client -> server   END
server -> client   MESSAGE*            (response messages)
server -> client   STATUS {ok, code, message, details}
```

A connection carries sessions one after another. The server answers a
session with exactly one STATUS frame; if the handler fails before it has
consumed the whole request stream, the server reports the failure first and
then discards request frames up to END, so the connection stays usable.
A transport failure (broken connection, malformed frame) closes it instead.
"""

import asyncio
import json
import logging
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..errors import RcopyError, TransferError, error_from_status
from .messages import (
    FileDownloadRequest, FileDownloadResponse,
    FileUploadRequest, FileUploadResponse,
    PingRequest, PingResponse,
    ShutdownRequest, ShutdownResponse,
    join_message, split_message,
)

logger = logging.getLogger(__name__)

# Largest chunk a transfer reads/sends at once (1 MiB)
STREAM_BUFFER_SIZE = 1024 * 1024

# Sanity limit for a single frame
MAX_FRAME_SIZE = 64 * 1024 * 1024

_LENGTH = struct.Struct('>I')


class FrameType(Enum):
    """Frame types of the session layout."""
    OPEN = "OPEN"
    MESSAGE = "MESSAGE"
    END = "END"
    STATUS = "STATUS"


@dataclass
class Frame:
    """A single protocol frame."""
    type: FrameType
    headers: Dict[str, Any] = field(default_factory=dict)
    data: bytes = b''

    def to_bytes(self) -> bytes:
        """Serialize frame to bytes."""
        header_dict = {
            'type': self.type.value,
            **self.headers
        }
        header_bytes = json.dumps(header_dict).encode('utf-8')
        total_length = len(header_bytes) + len(self.data)

        return (
            _LENGTH.pack(total_length) +
            _LENGTH.pack(len(header_bytes)) +
            header_bytes +
            self.data
        )

    @classmethod
    async def from_reader(cls, reader: asyncio.StreamReader) -> Optional['Frame']:
        """Read a frame from a stream.

        Returns None when the peer closed the connection cleanly between
        frames.

        Raises:
            TransferError: connection lost inside a frame, or malformed frame
        """
        try:
            length_bytes = await reader.readexactly(4)
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                return None
            raise TransferError("connection closed in the middle of a frame") from e
        except OSError as e:
            raise TransferError(f"failed to receive frame: {e}") from e

        total_length = _LENGTH.unpack(length_bytes)[0]
        if total_length > MAX_FRAME_SIZE:
            raise TransferError(f"frame too large: {total_length} bytes")

        try:
            header_length = _LENGTH.unpack(await reader.readexactly(4))[0]
            if header_length > total_length:
                raise TransferError(f"bad header length: {header_length}")
            header_dict = json.loads((await reader.readexactly(header_length)).decode('utf-8'))
            data_length = total_length - header_length
            data = await reader.readexactly(data_length) if data_length > 0 else b''
            frame_type = FrameType(header_dict.pop('type'))
        except asyncio.IncompleteReadError as e:
            raise TransferError("connection closed in the middle of a frame") from e
        except OSError as e:
            raise TransferError(f"failed to receive frame: {e}") from e
        except (ValueError, KeyError, AttributeError) as e:
            raise TransferError(f"malformed frame: {e}") from e

        return cls(type=frame_type, headers=header_dict, data=data)


# === Service definition ===

@dataclass(frozen=True)
class Method:
    """An RPC method and the shape of its streams."""
    name: str
    request_type: type
    response_type: type
    client_streaming: bool = False
    server_streaming: bool = False


UPLOAD = Method('Upload', FileUploadRequest, FileUploadResponse, client_streaming=True)
DOWNLOAD = Method('Download', FileDownloadRequest, FileDownloadResponse, server_streaming=True)
PING = Method('Ping', PingRequest, PingResponse)
SHUTDOWN = Method('Shutdown', ShutdownRequest, ShutdownResponse)

METHODS: Dict[str, Method] = {m.name: m for m in (UPLOAD, DOWNLOAD, PING, SHUTDOWN)}


class TransferProtocol:
    """
    Frame-level connection handler.

    Wraps an asyncio reader/writer pair; transport failures surface as
    TransferError.
    """

    def __init__(self, reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._closed = False

    @property
    def remote_address(self) -> Tuple[str, int]:
        """Get remote peer address."""
        return self.writer.get_extra_info('peername')

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: Frame):
        """Send a frame and wait until it is flushed to the transport."""
        if self._closed:
            raise TransferError("connection closed")
        try:
            self.writer.write(frame.to_bytes())
            await self.writer.drain()
        except OSError as e:
            raise TransferError(f"failed to send frame: {e}") from e

    async def receive(self) -> Optional[Frame]:
        """Receive a frame, None on clean end of connection."""
        if self._closed:
            return None
        return await Frame.from_reader(self.reader)

    async def close(self):
        """Close the connection."""
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing connection: {e}")


def status_frame(error: Optional[RcopyError] = None) -> Frame:
    """Build the terminal STATUS frame for a session."""
    if error is None:
        return Frame(FrameType.STATUS, {'ok': True})
    return Frame(FrameType.STATUS, {
        'ok': False,
        'code': error.code,
        'message': str(error),
        'details': error.details(),
    })


# === Server side ===

class ServerStream:
    """
    Server half of one RPC session.

    Handlers receive request messages through ``recv()`` and emit response
    messages through ``send()``.
    """

    def __init__(self, protocol: TransferProtocol, method: Optional[Method]):
        self.protocol = protocol
        self.method = method
        self.ended = False
        self.broken = False
        self._done_callbacks: List[Callable[[], None]] = []

    @property
    def peer(self) -> Tuple[str, int]:
        return self.protocol.remote_address

    async def recv(self) -> Optional[Any]:
        """Next request message, or None at end of stream."""
        if self.ended:
            return None
        try:
            frame = await self.protocol.receive()
            if frame is None:
                raise TransferError("connection closed before end of stream")
            if frame.type == FrameType.END:
                self.ended = True
                return None
            if frame.type != FrameType.MESSAGE:
                raise TransferError(f"unexpected {frame.type.value} frame in request stream")
        except TransferError:
            self.broken = True
            raise
        return join_message(self.method.request_type, frame.headers, frame.data)

    async def send(self, message: Any):
        """Send one response message."""
        headers, payload = split_message(message)
        try:
            await self.protocol.send(Frame(FrameType.MESSAGE, headers, payload))
        except TransferError:
            self.broken = True
            raise

    async def drain(self):
        """Discard request messages up to END."""
        while not self.ended:
            frame = await self.protocol.receive()
            if frame is None:
                raise TransferError("connection closed before end of stream")
            if frame.type == FrameType.END:
                self.ended = True

    def add_done_callback(self, callback: Callable[[], None]):
        """Run ``callback`` once the terminal status has been flushed."""
        self._done_callbacks.append(callback)

    def run_done_callbacks(self):
        for callback in self._done_callbacks:
            callback()


# Handler types: client-streaming handlers get the stream only, the others
# get the single request message and the stream.
StreamHandler = Callable[..., Awaitable[Any]]


class RpcServer:
    """
    asyncio server dispatching sessions to registered method handlers.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.logger = log or logger
        self.server: Optional[asyncio.AbstractServer] = None
        self._handlers: Dict[str, StreamHandler] = {}

    def set_handler(self, method: Method, handler: StreamHandler):
        """Set a method handler."""
        self._handlers[method.name] = handler

    async def start(self, sock, ssl_context=None):
        """Start accepting connections on an already bound socket."""
        self.server = await asyncio.start_server(
            self._handle_connection,
            sock=sock,
            ssl=ssl_context,
        )
        return self.server

    async def serve_forever(self):
        if self.server is None:
            raise RuntimeError("server not started")
        await self.server.serve_forever()

    async def stop(self):
        """Stop accepting connections."""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        protocol = TransferProtocol(reader, writer)
        peer = protocol.remote_address
        self.logger.debug(f"New connection from {peer}")

        try:
            while True:
                frame = await protocol.receive()
                if frame is None:
                    break
                if frame.type != FrameType.OPEN:
                    raise TransferError(f"expected OPEN frame, got {frame.type.value}")
                if not await self._run_session(protocol, frame.headers.get('method')):
                    break
        except TransferError as e:
            self.logger.warning(f"Connection from {peer} dropped: {e}")
        except Exception:
            self.logger.exception(f"Error handling connection from {peer}")
        finally:
            await protocol.close()
            self.logger.debug(f"Connection closed: {peer}")

    async def _run_session(self, protocol: TransferProtocol, name: Any) -> bool:
        """Run one session. Returns False when the connection must be closed."""
        method = METHODS.get(name) if isinstance(name, str) else None
        handler = self._handlers.get(method.name) if method else None
        stream = ServerStream(protocol, method)
        response = None
        error: Optional[RcopyError] = None

        try:
            if method is None or handler is None:
                raise TransferError(f"unknown method: {name!r}")
            if method.client_streaming:
                response = await handler(stream)
            else:
                request = await stream.recv()
                if request is None:
                    raise TransferError(f"{method.name}: missing request message")
                response = await handler(request, stream)
        except RcopyError as e:
            self.logger.error(str(e))
            error = e
        except Exception as e:
            self.logger.exception(f"{name} failed")
            error = TransferError(f"internal error: {e}")

        if stream.broken:
            return False

        if error is None and response is not None:
            await stream.send(response)
        await protocol.send(status_frame(error))
        stream.run_done_callbacks()

        await stream.drain()
        return True


# === Client side ===

class ClientCall:
    """Client half of one RPC session."""

    def __init__(self, protocol: TransferProtocol, method: Method):
        self.protocol = protocol
        self.method = method
        self.finished = False

    async def send(self, message: Any):
        headers, payload = split_message(message)
        await self.protocol.send(Frame(FrameType.MESSAGE, headers, payload))

    async def done_writing(self):
        await self.protocol.send(Frame(FrameType.END))

    async def recv(self) -> Optional[Any]:
        """Next response message; None once the session ended successfully.

        Raises the session's error when the server reported a failure.
        """
        if self.finished:
            return None
        frame = await self.protocol.receive()
        if frame is None:
            raise TransferError("connection closed before the session ended")
        if frame.type == FrameType.MESSAGE:
            return join_message(self.method.response_type, frame.headers, frame.data)
        if frame.type != FrameType.STATUS:
            raise TransferError(f"unexpected {frame.type.value} frame in response stream")

        self.finished = True
        if frame.headers.get('ok'):
            return None
        raise error_from_status(
            frame.headers.get('code', ''),
            frame.headers.get('message', ''),
            frame.headers.get('details'),
        )

    async def result(self) -> Any:
        """Single response of a unary or client-streaming call."""
        response = await self.recv()
        if response is None:
            raise TransferError(f"{self.method.name}: no response message")
        if await self.recv() is not None:
            raise TransferError(f"{self.method.name}: more than one response message")
        return response


class RpcChannel:
    """A client connection to an rcopy server."""

    def __init__(self, protocol: TransferProtocol):
        self.protocol = protocol

    @classmethod
    async def connect(cls, host: str, port: int, ssl_context=None,
                      timeout: float = 10.0) -> 'RpcChannel':
        """Connect to a server.

        Raises:
            TransferError: connection (or TLS handshake) failed
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host, port,
                    ssl=ssl_context,
                    server_hostname=host if ssl_context else None,
                ),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise TransferError(f"timed out connecting to {host}:{port}") from e
        except OSError as e:
            raise TransferError(f"failed to connect to {host}:{port}: {e}") from e
        return cls(TransferProtocol(reader, writer))

    def peer_certificate(self) -> Optional[bytes]:
        """DER-encoded server certificate, None without TLS."""
        ssl_object = self.protocol.writer.get_extra_info('ssl_object')
        if ssl_object is None:
            return None
        return ssl_object.getpeercert(binary_form=True)

    async def open(self, method: Method) -> ClientCall:
        """Start a session for ``method``."""
        await self.protocol.send(Frame(FrameType.OPEN, {'method': method.name}))
        return ClientCall(self.protocol, method)

    async def unary(self, method: Method, request: Any) -> Any:
        call = await self.open(method)
        await call.send(request)
        await call.done_writing()
        return await call.result()

    async def close(self):
        await self.protocol.close()

    async def __aenter__(self) -> 'RpcChannel':
        return self

    async def __aexit__(self, *exc_info):
        await self.close()
