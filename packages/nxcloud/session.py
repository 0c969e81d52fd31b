"""Shell session for nxcloud.

A ShellSession owns the current remote directory and turns command values
into calls on the credential store, the remote client and the transfer
engine. One-shot invocations use a fresh session and send it one command.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from .client import RemoteClient
from .config import NxCloudConfig
from .credentials import CredentialStore
from .exceptions import (
    CommandError,
    RemoteNotADirectoryError,
    SessionTerminatedError,
)
from .models import AccountInfo, Credentials, RemoteEntry, RemotePath, SessionState, TransferReport
from .paths import ROOT, resolve
from .transfer import TransferEngine

logger = logging.getLogger(__name__)


# ============================================================================
# Commands
# ============================================================================

@dataclass(frozen=True)
class Login:
    server_url: str
    username: str
    secret: str


@dataclass(frozen=True)
class Logout:
    pass


@dataclass(frozen=True)
class Status:
    pass


@dataclass(frozen=True)
class Ls:
    path: str = ""
    long: bool = False
    all: bool = False


@dataclass(frozen=True)
class Mkdir:
    path: str
    recursive: bool = False


@dataclass(frozen=True)
class Rm:
    path: str
    recursive: bool = False


@dataclass(frozen=True)
class Push:
    local: str
    remote: str = ""


@dataclass(frozen=True)
class Pull:
    remote: str
    local: str = "."


@dataclass(frozen=True)
class Cd:
    path: str


@dataclass(frozen=True)
class Pwd:
    pass


@dataclass(frozen=True)
class Exit:
    pass


Command = Union[Login, Logout, Status, Ls, Mkdir, Rm, Push, Pull, Cd, Pwd, Exit]


class SessionStatus(str, Enum):
    """Lifecycle of a shell session."""
    ACTIVE = "active"
    TERMINATED = "terminated"


ClientFactory = Callable[[Credentials], RemoteClient]


# ============================================================================
# Shell Session
# ============================================================================

class ShellSession:
    """State machine behind both one-shot commands and the interactive shell.

    The remote client is created lazily from stored credentials the first
    time a command needs it, and dropped again on login/logout.
    """

    def __init__(
        self,
        store: CredentialStore,
        config: NxCloudConfig,
        client_factory: Optional[ClientFactory] = None
    ):
        """Initialize the session at the remote root.

        Args:
            store: Where credentials are kept
            config: Client configuration (timeouts, chunk size, workers)
            client_factory: Builds a RemoteClient from credentials
        """
        self.store = store
        self.config = config
        self.state = SessionState()
        self.status = SessionStatus.ACTIVE
        self._client_factory = client_factory or self._default_client
        self._client: Optional[RemoteClient] = None

    def _default_client(self, credentials: Credentials) -> RemoteClient:
        return RemoteClient(
            credentials,
            timeout=self.config.timeout,
            chunk_size=self.config.chunk_size,
        )

    @property
    def current_dir(self) -> RemotePath:
        return self.state.current_remote_dir

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def resolve(self, path: str) -> RemotePath:
        """Resolve a user path against the current remote directory."""
        return resolve(self.current_dir, path)

    def client(self) -> RemoteClient:
        """Get the authenticated client, loading credentials on first use.

        Raises:
            NotLoggedInError: If no credentials are stored
        """
        if self._client is None:
            self._client = self._client_factory(self.store.load())
        return self._client

    def _drop_client(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _engine(self) -> TransferEngine:
        return TransferEngine(
            self.client(),
            chunk_size=self.config.chunk_size,
            workers=self.config.transfer_workers,
        )

    # =========================================================================
    # Dispatch
    # =========================================================================

    def execute(self, command: Command) -> Any:
        """Run one command against this session.

        Raises:
            SessionTerminatedError: If the session has already ended
            NxCloudError: Whatever the command itself raises
        """
        if not self.is_active:
            raise SessionTerminatedError()

        logger.debug("Executing %r in %s", command, self.current_dir)

        if isinstance(command, Login):
            return self.login(command.server_url, command.username, command.secret)
        if isinstance(command, Logout):
            return self.logout()
        if isinstance(command, Status):
            return self.status_check()
        if isinstance(command, Ls):
            return self.ls(command.path, all=command.all)
        if isinstance(command, Mkdir):
            return self.mkdir(command.path, recursive=command.recursive)
        if isinstance(command, Rm):
            return self.rm(command.path, recursive=command.recursive)
        if isinstance(command, Push):
            return self.push(command.local, command.remote)
        if isinstance(command, Pull):
            return self.pull(command.remote, command.local)
        if isinstance(command, Cd):
            return self.cd(command.path)
        if isinstance(command, Pwd):
            return self.current_dir
        if isinstance(command, Exit):
            return self.terminate()
        raise CommandError(f"Unknown command: {command!r}")

    # =========================================================================
    # Account commands
    # =========================================================================

    def login(self, server_url: str, username: str, secret: str) -> AccountInfo:
        """Validate credentials against the server, then store them.

        Raises:
            CommandError: If the server URL or username is malformed
            UnauthorizedError: If the server rejects the credentials
            UnreachableError: If the server cannot be reached
        """
        try:
            credentials = Credentials(server_url=server_url, username=username, secret=secret)
        except ValidationError as e:
            messages = "; ".join(error["msg"] for error in e.errors())
            raise CommandError(f"Invalid login: {messages}")

        client = self._client_factory(credentials)
        try:
            account = client.authenticate_check()
            self.store.save(credentials)
        except BaseException:
            client.close()
            raise

        self._drop_client()
        self._client = client
        logger.info("Logged in to %s as %s", credentials.server_url, credentials.username)
        return account

    def logout(self) -> None:
        """Forget stored credentials. Logging out twice is not an error."""
        self.store.clear()
        self._drop_client()
        logger.info("Logged out")

    def status_check(self) -> AccountInfo:
        """Check the stored credentials against the server.

        Raises:
            NotLoggedInError: If no credentials are stored
            UnauthorizedError: If the server no longer accepts them
            UnreachableError: If the server cannot be reached
        """
        credentials = self.store.load()
        if self._client is None or self._client.credentials != credentials:
            self._drop_client()
            self._client = self._client_factory(credentials)
        return self._client.authenticate_check()

    # =========================================================================
    # Filesystem commands
    # =========================================================================

    def ls(self, path: str = "", all: bool = False) -> list[RemoteEntry]:
        """List a remote directory; dot-entries are hidden unless ``all``."""
        entries = self.client().list(self.resolve(path))
        if all:
            return entries
        return [entry for entry in entries if not entry.is_hidden]

    def mkdir(self, path: str, recursive: bool = False) -> RemotePath:
        target = self.resolve(path)
        self.client().make_directory(target, recursive=recursive)
        return target

    def rm(self, path: str, recursive: bool = False) -> RemotePath:
        target = self.resolve(path)
        self.client().delete(target, recursive=recursive)
        return target

    def push(self, local: str, remote: str = "") -> TransferReport:
        return self._engine().push(local, self.resolve(remote))

    def pull(self, remote: str, local: str = ".") -> TransferReport:
        return self._engine().pull(self.resolve(remote), local)

    def cd(self, path: str = "") -> RemotePath:
        """Change the remote directory.

        The directory only changes if the target exists and is a directory;
        otherwise the error is raised and the session stays where it was.
        """
        target = self.resolve(path) if path else ROOT
        entry = self.client().stat(target)
        if not entry.is_directory:
            raise RemoteNotADirectoryError(f"Not a directory: {target}", path=target)
        self.state.current_remote_dir = target
        return target

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def terminate(self) -> None:
        self.status = SessionStatus.TERMINATED
        self.close()

    def close(self) -> None:
        self._drop_client()
