"""Data model for nxcloud.

Credentials are validated user input, so they are a pydantic model. Everything
produced by the client and the transfer engine is a plain dataclass.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from .exceptions import TransferError


# An absolute, normalized, '/'-delimited remote path (see paths.resolve)
RemotePath = str


class Credentials(BaseModel):
    """Server URL, username and app-scoped secret."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        frozen=True,
        extra='forbid'
    )

    server_url: str = Field(
        ...,
        description="Server base URL; https is assumed when no scheme is given",
        min_length=1,
        examples=["https://cloud.example.com/", "cloud.example.com"]
    )
    username: str = Field(..., min_length=1, description="Account username")
    secret: str = Field(
        ...,
        min_length=1,
        repr=False,
        description="App password issued by the server, never the account password"
    )

    @field_validator("server_url")
    @classmethod
    def normalize_server_url(cls, value: str) -> str:
        if "://" not in value:
            value = "https://" + value
        parts = urlsplit(value)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"Invalid server URL: {value}")
        path = parts.path if parts.path.endswith("/") else parts.path + "/"
        return urlunsplit((parts.scheme, parts.netloc, path, "", ""))

    def __str__(self) -> str:
        return f"{self.username} @ {self.server_url}"


@dataclass
class AccountInfo:
    """Account details returned by the server's user API."""
    server_url: str
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    quota_used: Optional[int] = None
    quota_total: Optional[int] = None


@dataclass
class RemoteEntry:
    """A file or directory on the remote server."""
    path: RemotePath
    name: str
    is_directory: bool
    size: Optional[int] = None
    modified_time: Optional[datetime] = None
    etag: Optional[str] = None

    @property
    def is_hidden(self) -> bool:
        return self.name.startswith(".")


@dataclass
class SessionState:
    """State held by one shell session."""
    current_remote_dir: RemotePath = "/"


class TransferDirection(str, Enum):
    """Direction of a push/pull job."""
    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass
class TransferJob:
    """One push or pull invocation."""
    source_path: str
    destination_path: str
    direction: TransferDirection
    recursive: bool = False


@dataclass
class TransferFailure:
    """A single file that could not be transferred."""
    source_path: str
    destination_path: str
    error: "TransferError"


@dataclass
class TransferReport:
    """Aggregated outcome of a push/pull job."""
    job: TransferJob
    transferred: list[str] = field(default_factory=list)
    failures: list[TransferFailure] = field(default_factory=list)
    directories_created: list[str] = field(default_factory=list)
    bytes_transferred: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def file_count(self) -> int:
        return len(self.transferred) + len(self.failures)
