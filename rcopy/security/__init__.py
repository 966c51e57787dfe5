"""
Security Module - TLS certificates and the transport listener
"""

from .certs import (
    SelfSignedCertificate,
    client_context,
    context_from_material,
    generate_self_signed,
    get_cert_fingerprint,
    load_certificate,
    normalize_fingerprint,
    provision_tls,
)
from .listener import Listener, bind_socket, build_listener

__all__ = [
    'SelfSignedCertificate',
    'client_context',
    'context_from_material',
    'generate_self_signed',
    'get_cert_fingerprint',
    'load_certificate',
    'normalize_fingerprint',
    'provision_tls',
    'Listener',
    'bind_socket',
    'build_listener',
]
