"""
RPC Messages

One dataclass per request/response type of the FileTransfer service.
Scalar fields go into the JSON frame header, the ``content`` field (if any)
is carried as the raw frame payload.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Tuple, Type, TypeVar

from ..errors import TransferError

T = TypeVar('T')

PAYLOAD_FIELD = 'content'


@dataclass
class FileUploadRequest:
    filename: str = ''
    content: bytes = b''
    size: int = 0


@dataclass
class FileUploadResponse:
    message: str = ''


@dataclass
class FileDownloadRequest:
    filename: str = ''


@dataclass
class FileDownloadResponse:
    message: str = ''
    filename: str = ''
    content: bytes = b''
    size: int = 0


@dataclass
class PingRequest:
    message: str = ''


@dataclass
class PingResponse:
    message: str = ''


@dataclass
class ShutdownRequest:
    pass


@dataclass
class ShutdownResponse:
    pass


def split_message(message: Any) -> Tuple[Dict[str, Any], bytes]:
    """Split a message into (header fields, payload)."""
    headers = {}
    payload = b''
    for f in fields(message):
        value = getattr(message, f.name)
        if f.name == PAYLOAD_FIELD:
            payload = bytes(value)
        else:
            headers[f.name] = value
    return headers, payload


def join_message(cls: Type[T], headers: Dict[str, Any], payload: bytes) -> T:
    """Build a message of type ``cls`` from header fields and payload.

    Unknown header keys are ignored, missing ones keep their defaults.

    Raises:
        TransferError: a header value does not have the field's type
    """
    kwargs = {}
    for f in fields(cls):
        if f.name == PAYLOAD_FIELD:
            kwargs[f.name] = payload
        elif f.name in headers:
            value = headers[f.name]
            # bool is an int subclass; JSON true/false is never a size
            if not isinstance(value, f.type) or (f.type is int and isinstance(value, bool)):
                raise TransferError(
                    f"malformed message: {cls.__name__}.{f.name} must be "
                    f"{f.type.__name__}, got {type(value).__name__}"
                )
            kwargs[f.name] = value
    return cls(**kwargs)
