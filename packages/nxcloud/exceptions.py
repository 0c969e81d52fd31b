"""Custom exceptions for nxcloud.

Every failure raised by the core carries a ``kind`` from a fixed taxonomy and
the path (or command) it concerns, so callers can decide whether to retry,
log in again, or give up without parsing messages.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Fixed set of failure kinds surfaced to callers."""
    # Credential store
    NOT_LOGGED_IN = "not_logged_in"
    IO_FAILURE = "io_failure"
    # Remote filesystem
    NOT_FOUND = "not_found"
    NOT_A_DIRECTORY = "not_a_directory"
    NOT_EMPTY = "not_empty"
    ALREADY_EXISTS = "already_exists"
    UNAUTHORIZED = "unauthorized"
    UNREACHABLE = "unreachable"
    PARTIAL = "partial"
    UNKNOWN = "unknown"
    # Transfers
    LOCAL_IO = "local_io"
    INCOMPLETE_WRITE = "incomplete_write"
    REMOTE = "remote"
    # Front end
    COMMAND = "command"
    TERMINATED = "terminated"
    CONFIGURATION = "configuration"


class NxCloudError(Exception):
    """Base exception for nxcloud."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, path: str = ""):
        super().__init__(message)
        self.path = path


# ---------------------------------------------------------------------------
# Credential store
# ---------------------------------------------------------------------------

class StoreError(NxCloudError):
    """Raised when stored credentials cannot be read or written."""
    kind = ErrorKind.IO_FAILURE


class NotLoggedInError(StoreError):
    """Raised when no credentials are stored."""
    kind = ErrorKind.NOT_LOGGED_IN

    def __init__(self, message: str = "Not logged in", path: str = ""):
        super().__init__(message, path=path)


class StoreIoError(StoreError):
    """Raised when the credential record exists but cannot be used."""
    kind = ErrorKind.IO_FAILURE


# ---------------------------------------------------------------------------
# Remote filesystem
# ---------------------------------------------------------------------------

class RemoteError(NxCloudError):
    """Base class for failures reported by the remote server."""
    kind = ErrorKind.UNKNOWN


class RemoteNotFoundError(RemoteError):
    """Raised when a remote path (or one of its parents) does not exist."""
    kind = ErrorKind.NOT_FOUND


class RemoteNotADirectoryError(RemoteError):
    """Raised when a directory operation targets a file."""
    kind = ErrorKind.NOT_A_DIRECTORY


class RemoteNotEmptyError(RemoteError):
    """Raised when a non-recursive delete targets a directory with children."""
    kind = ErrorKind.NOT_EMPTY


class RemoteAlreadyExistsError(RemoteError):
    """Raised when creating something that is already there."""
    kind = ErrorKind.ALREADY_EXISTS


class UnauthorizedError(RemoteError):
    """Raised when the server rejects the stored credentials."""
    kind = ErrorKind.UNAUTHORIZED


class UnreachableError(RemoteError):
    """Raised on network, DNS, TLS or timeout failures."""
    kind = ErrorKind.UNREACHABLE


class PartialDeleteError(RemoteError):
    """Raised when the server only deleted part of a tree."""
    kind = ErrorKind.PARTIAL

    def __init__(self, message: str, path: str = "", failed_paths: Optional[list[str]] = None):
        super().__init__(message, path=path)
        self.failed_paths = failed_paths or []


class UnknownRemoteError(RemoteError):
    """Raised for any server reply outside the known taxonomy."""
    kind = ErrorKind.UNKNOWN

    def __init__(self, message: str, path: str = "", status_code: int = 0):
        super().__init__(message, path=path)
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Transfers
# ---------------------------------------------------------------------------

class TransferError(NxCloudError):
    """Base class for push/pull failures.

    When a directory transfer fails for every file, the raised error also
    carries the complete ``report``.
    """
    kind = ErrorKind.LOCAL_IO

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, path=path)
        self.report = None


class LocalIoError(TransferError):
    """Raised when the local filesystem refuses a read or write."""
    kind = ErrorKind.LOCAL_IO


class IncompleteWriteError(TransferError):
    """Raised when a stream broke after some bytes were already moved."""
    kind = ErrorKind.INCOMPLETE_WRITE

    def __init__(self, message: str, path: str = "", bytes_transferred: int = 0):
        super().__init__(message, path=path)
        self.bytes_transferred = bytes_transferred


class RemoteTransferError(TransferError):
    """Wraps a RemoteError raised while transferring."""
    kind = ErrorKind.REMOTE

    def __init__(self, remote: RemoteError, path: str = ""):
        super().__init__(str(remote), path=path or remote.path)
        self.remote = remote

    @property
    def remote_kind(self) -> ErrorKind:
        return self.remote.kind


# ---------------------------------------------------------------------------
# Front end
# ---------------------------------------------------------------------------

class CommandError(NxCloudError):
    """Raised for invalid commands or arguments."""
    kind = ErrorKind.COMMAND


class SessionTerminatedError(NxCloudError):
    """Raised when a command is sent to a session that has ended."""
    kind = ErrorKind.TERMINATED

    def __init__(self, message: str = "Session has terminated"):
        super().__init__(message)


class ConfigurationError(NxCloudError):
    """Raised when configuration is invalid or missing."""
    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, missing_key: str = ""):
        super().__init__(message)
        self.missing_key = missing_key
