from __future__ import annotations
"""
Exception taxonomy for authorization and resumable transfers.
"""

from enum import Enum
from typing import Optional


class AuthErrorKind(Enum):
    DENIED = "denied"
    NETWORK_FAILURE = "network_failure"
    INVALID_GRANT = "invalid_grant"


class AuthError(Exception):
    """Raised when a valid access token cannot be obtained for an identity"""

    def __init__(self, kind: AuthErrorKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind


class StorageError(IOError):
    """Raised when the token or media storage cannot be read or written"""
    pass


class ErrorKind(Enum):
    """Classification of a failed request, used for retry decisions"""
    NETWORK_FAILURE = "network_failure"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    CLIENT_ERROR = "client_error"
    INVALID_SESSION = "invalid_session"

    @property
    def is_transient(self) -> bool:
        return self in (ErrorKind.NETWORK_FAILURE, ErrorKind.SERVER_ERROR, ErrorKind.RATE_LIMITED)


class UploadErrorKind(Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class UploadError(Exception):
    """
    Raised when a request against the upload endpoint fails.
    TRANSIENT errors are retried internally and only escape as PERMANENT
    once the retry budget is spent.
    """

    def __init__(
        self,
        kind: UploadErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
        status: Optional[int] = None,
        error_kind: Optional[ErrorKind] = None,
    ):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.cause = cause
        self.status = status
        self.error_kind = error_kind

    @classmethod
    def classified(cls, error_kind: ErrorKind, message: str, cause=None, status=None) -> "UploadError":
        kind = UploadErrorKind.TRANSIENT if error_kind.is_transient else UploadErrorKind.PERMANENT
        return cls(kind, message, cause=cause, status=status, error_kind=error_kind)

    @property
    def requires_new_session(self) -> bool:
        """True when the session URI expired server-side and initiate() must run again"""
        error = self
        while isinstance(error, UploadError):
            if error.error_kind == ErrorKind.INVALID_SESSION:
                return True
            error = error.cause
        return False


class InitiationError(Exception):
    """Raised when the remote endpoint refuses to open a resumable session"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
