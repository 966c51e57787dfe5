"""
Transport Listener

Binds the plain TCP listening socket and pairs it with a TLS context when
security is enabled. The asyncio server performs the TLS handshake on each
accepted connection.
"""

import logging
import socket
import ssl
from dataclasses import dataclass
from typing import Optional, Tuple

from ..errors import BindError, RcopyError
from .certs import provision_tls

logger = logging.getLogger(__name__)


@dataclass
class Listener:
    """A bound listening socket plus its TLS context (None = plain TCP)."""
    sock: socket.socket
    ssl_context: Optional[ssl.SSLContext] = None

    @property
    def secure(self) -> bool:
        return self.ssl_context is not None

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def close(self):
        self.sock.close()


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening TCP socket. No retry.

    Raises:
        BindError: address in use, permission denied, invalid address
    """
    try:
        return socket.create_server((host, port))
    except (OSError, OverflowError) as e:
        raise BindError(f"failed to listen on {host}:{port}: {e}") from e


def build_listener(host: str, port: int, tls: bool = True,
                   cert_file: Optional[str] = None,
                   key_file: Optional[str] = None,
                   log: Optional[logging.Logger] = None) -> Listener:
    """Bind ``host:port`` and attach TLS when ``tls`` is set.

    Raises:
        BindError: see bind_socket
        CertificateLoadError, CertificateGenerationError: TLS setup failed
    """
    log = log or logger
    sock = bind_socket(host, port)

    if not tls:
        log.warning("running server without TLS")
        return Listener(sock)

    try:
        ssl_context = provision_tls(cert_file, key_file, log)
    except RcopyError:
        sock.close()
        raise
    return Listener(sock, ssl_context)
