"""
Transfer Module - Upload/Download over the streaming RPC protocol

Handles the framed RPC sessions and the server-side transfer handlers.
"""

from .messages import (
    FileDownloadRequest,
    FileDownloadResponse,
    FileUploadRequest,
    FileUploadResponse,
    PingRequest,
    PingResponse,
    ShutdownRequest,
    ShutdownResponse,
)
from .protocol import (
    DOWNLOAD,
    MAX_FRAME_SIZE,
    METHODS,
    PING,
    SHUTDOWN,
    STREAM_BUFFER_SIZE,
    UPLOAD,
    ClientCall,
    RpcChannel,
    RpcServer,
    ServerStream,
    TransferProtocol,
)
from .uploader import UploadHandler, UploadSession, UploadState
from .downloader import DownloadHandler

__all__ = [
    'FileDownloadRequest',
    'FileDownloadResponse',
    'FileUploadRequest',
    'FileUploadResponse',
    'PingRequest',
    'PingResponse',
    'ShutdownRequest',
    'ShutdownResponse',
    'DOWNLOAD',
    'MAX_FRAME_SIZE',
    'METHODS',
    'PING',
    'SHUTDOWN',
    'STREAM_BUFFER_SIZE',
    'UPLOAD',
    'ClientCall',
    'RpcChannel',
    'RpcServer',
    'ServerStream',
    'TransferProtocol',
    'UploadHandler',
    'UploadSession',
    'UploadState',
    'DownloadHandler',
]
