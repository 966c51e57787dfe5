"""
Error Kinds

Start-up errors (bind, certificates) abort the server before it accepts
anything. Session errors end one RPC session and are reported to the caller
as the terminal status of that session; they never stop the server.

Each error carries a stable ``code`` so a failed status frame can be turned
back into the same exception class on the client side.
"""

from typing import Any, Dict, Optional


class RcopyError(Exception):
    """Base class for all rcopy errors."""
    code = 'RcopyError'

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        """Extra fields sent along with the status frame."""
        return {}

    @classmethod
    def from_status(cls, message: str, details: Dict[str, Any]) -> 'RcopyError':
        return cls(message)


# === Start-up errors ===

class BindError(RcopyError):
    """Listening socket could not be bound."""
    code = 'BindError'


class CertificateLoadError(RcopyError):
    """Certificate or key file missing, unreadable or invalid."""
    code = 'CertificateLoadError'


class CertificateGenerationError(RcopyError):
    """Self-signed certificate could not be generated or loaded."""
    code = 'CertificateGenerationError'


# === Session errors ===

class FileOpenError(RcopyError):
    code = 'FileOpenError'


class ReadError(RcopyError):
    code = 'ReadError'


class WriteError(RcopyError):
    code = 'WriteError'


class TransferError(RcopyError):
    """Transport failure in the middle of a session."""
    code = 'TransferError'


class SizeMismatchError(RcopyError):
    """Bytes transferred differ from the declared (or stat) size."""
    code = 'SizeMismatchError'

    def __init__(self, expected: int, actual: int, message: Optional[str] = None):
        if message is None:
            message = f"file size mismatch: expected {expected} bytes, got {actual} bytes"
        super().__init__(message)
        self.expected = expected
        self.actual = actual

    def details(self) -> Dict[str, Any]:
        return {'expected': self.expected, 'actual': self.actual}

    @classmethod
    def from_status(cls, message: str, details: Dict[str, Any]) -> 'SizeMismatchError':
        return cls(
            _int_or_unknown(details.get('expected')),
            _int_or_unknown(details.get('actual')),
            message or None,
        )


def _int_or_unknown(value: Any) -> int:
    """Byte count from status details, -1 when absent or not a number."""
    if isinstance(value, bool):
        return -1
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        BindError,
        CertificateLoadError,
        CertificateGenerationError,
        FileOpenError,
        ReadError,
        WriteError,
        TransferError,
        SizeMismatchError,
    )
}


def error_from_status(code: str, message: str,
                      details: Optional[Dict[str, Any]] = None) -> RcopyError:
    """Rebuild the exception described by a failed status frame."""
    cls = ERRORS_BY_CODE.get(code, TransferError)
    if not isinstance(details, dict):
        details = {}
    return cls.from_status(message, details)
