"""
TLS Certificate Provisioning

Produces the server's ``ssl.SSLContext`` either from a certificate/key pair
on disk or from a self-signed certificate generated in memory.

Trust limitation: a generated certificate is signed by nobody. It encrypts
the connection but does not prove the server's identity to the client. The
SHA-256 fingerprint is logged at start-up so a client can pin it
(``rcopy cp --fingerprint``); without pinning or a CA file, clients accept
any server certificate.

Generated material is never written to disk. The PEM bytes reach OpenSSL
through an anonymous in-memory file (``memfd_create``), so this path is
only available where the platform provides it.
"""

import datetime
import hashlib
import ipaddress
import logging
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from ..errors import CertificateGenerationError, CertificateLoadError

logger = logging.getLogger(__name__)

# Certificate defaults
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 2048
PLACEHOLDER_COMMON_NAME = 'localhost'
PLACEHOLDER_ORGANIZATION = 'rcopy'


@dataclass
class SelfSignedCertificate:
    """A generated key pair and certificate, held in memory only."""
    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    not_before: datetime.datetime
    not_after: datetime.datetime

    def cert_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def key_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    def fingerprint(self) -> str:
        return get_cert_fingerprint(self.certificate.public_bytes(serialization.Encoding.DER))


def get_cert_fingerprint(der: bytes) -> str:
    """SHA-256 fingerprint of a DER certificate as colon separated hex (AB:CD:...)."""
    digest = hashlib.sha256(der).hexdigest().upper()
    return ':'.join(digest[i:i + 2] for i in range(0, len(digest), 2))


def normalize_fingerprint(fingerprint: str) -> str:
    """Uppercase hex without separators, for comparing user input."""
    return fingerprint.replace(':', '').replace(' ', '').upper()


def generate_self_signed(days: int = DEFAULT_CERT_DAYS,
                         key_size: int = DEFAULT_KEY_SIZE,
                         common_name: str = PLACEHOLDER_COMMON_NAME,
                         now: Optional[datetime.datetime] = None) -> SelfSignedCertificate:
    """Generate an RSA key pair and a self-signed certificate.

    Pure function: nothing touches the filesystem or the network.

    Raises:
        CertificateGenerationError: key or certificate could not be built
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    not_after = now + datetime.timedelta(days=days)

    try:
        private_key = rsa.generate_private_key(
            public_exponent=65537,
            key_size=key_size,
        )

        subject = issuer = x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, PLACEHOLDER_ORGANIZATION),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ])

        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(not_after)
            .add_extension(
                x509.SubjectAlternativeName([
                    x509.DNSName(common_name),
                    x509.IPAddress(ipaddress.ip_address('127.0.0.1')),
                ]),
                critical=False,
            )
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(private_key, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise CertificateGenerationError(f"failed to generate certificate: {e}") from e

    return SelfSignedCertificate(
        private_key=private_key,
        certificate=certificate,
        not_before=now,
        not_after=not_after,
    )


def server_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    return context


def load_certificate(cert_file: Union[str, Path],
                     key_file: Union[str, Path]) -> ssl.SSLContext:
    """Server context from a certificate/key pair on disk.

    Raises:
        CertificateLoadError: file missing, unreadable, or not a valid pair
    """
    cert_path = Path(cert_file)
    key_path = Path(key_file)
    if not cert_path.is_file():
        raise CertificateLoadError(f"Certificate not found: {cert_path}")
    if not key_path.is_file():
        raise CertificateLoadError(f"Key not found: {key_path}")

    context = server_context()
    try:
        context.load_cert_chain(str(cert_path), str(key_path))
    except (OSError, ValueError) as e:
        raise CertificateLoadError(
            f"failed to load certificate {cert_path} / key {key_path}: {e}"
        ) from e
    return context


def context_from_material(material: SelfSignedCertificate) -> ssl.SSLContext:
    """Server context from in-memory certificate material.

    Raises:
        CertificateGenerationError: material could not be loaded
    """
    if not hasattr(os, 'memfd_create'):
        raise CertificateGenerationError(
            "in-memory certificates are not supported on this platform; "
            "provide a certificate and key file instead"
        )

    context = server_context()
    fd = os.memfd_create('rcopy-tls', os.MFD_CLOEXEC)
    try:
        with open(fd, 'wb', closefd=False) as f:
            f.write(material.key_pem())
            f.write(material.cert_pem())
        context.load_cert_chain(f'/proc/self/fd/{fd}')
    except (OSError, ValueError) as e:
        raise CertificateGenerationError(f"failed to load generated certificate: {e}") from e
    finally:
        os.close(fd)
    return context


def provision_tls(cert_file: Optional[Union[str, Path]] = None,
                  key_file: Optional[Union[str, Path]] = None,
                  log: Optional[logging.Logger] = None) -> ssl.SSLContext:
    """Build the server TLS context.

    Loads ``cert_file``/``key_file`` when both are given, generates a
    self-signed certificate when neither is.

    Raises:
        CertificateLoadError: only one of the paths given, or loading failed
        CertificateGenerationError: self-signed generation failed
    """
    log = log or logger

    if cert_file and key_file:
        log.info(f"Loading certificate {cert_file} (key {key_file})")
        return load_certificate(cert_file, key_file)
    if cert_file or key_file:
        raise CertificateLoadError("both a certificate and a key file are required")

    log.info("Generating self-signed certificate")
    material = generate_self_signed()
    log.info(f"Certificate fingerprint (SHA256): {material.fingerprint}")
    log.warning("Self-signed certificate: traffic is encrypted but the server "
                "identity is not verifiable; clients should pin the fingerprint")
    return context_from_material(material)


def client_context(ca_file: Optional[Union[str, Path]] = None) -> ssl.SSLContext:
    """Client TLS context.

    With ``ca_file`` the server chain and hostname are verified. Without it
    any certificate is accepted (self-signed servers); callers pin the
    fingerprint instead.
    """
    if ca_file:
        try:
            return ssl.create_default_context(cafile=str(ca_file))
        except (OSError, ValueError) as e:
            raise CertificateLoadError(f"failed to load CA file {ca_file}: {e}") from e

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context
