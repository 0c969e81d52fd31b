"""Remote client for nxcloud - talks WebDAV and OCS to a Nextcloud server.

This module is the only place that knows about HTTP status codes, WebDAV
multistatus XML and OCS envelopes. Every server reply is normalized into the
RemoteError taxonomy before it leaves the client.
"""

import logging
import xml.etree.ElementTree as ElementTree
from email.utils import parsedate_to_datetime
from typing import BinaryIO, Optional
from urllib.parse import quote, unquote, urlsplit

import requests

from . import __version__
from .exceptions import (
    CommandError,
    PartialDeleteError,
    RemoteAlreadyExistsError,
    RemoteError,
    RemoteNotADirectoryError,
    RemoteNotEmptyError,
    RemoteNotFoundError,
    UnauthorizedError,
    UnknownRemoteError,
    UnreachableError,
)
from .models import AccountInfo, Credentials, RemoteEntry, RemotePath
from .paths import ROOT, is_root, normalize, remote_ancestors, remote_basename

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:">'
    "<d:prop>"
    "<d:resourcetype/>"
    "<d:getcontentlength/>"
    "<d:getlastmodified/>"
    "<d:getetag/>"
    "</d:prop>"
    "</d:propfind>"
)

# OCS status codes (v1 API answers HTTP 200 and puts the real status here)
OCS_OK = 100
OCS_UNAUTHORIZED = 997
OCS_NOT_FOUND = 998


def _parse_int(text: Optional[str]) -> Optional[int]:
    if text is None or not text.strip():
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


class RemoteClient:
    """Client for one user's files on a Nextcloud server.

    All paths must already be resolved (see paths.resolve).
    """

    def __init__(
        self,
        credentials: Credentials,
        timeout: float = 30.0,
        chunk_size: int = 1024 * 1024,
        session: Optional[requests.Session] = None
    ):
        """Initialize remote client.

        Args:
            credentials: Server URL, username and app password
            timeout: Per-request timeout in seconds
            chunk_size: Chunk size for streamed downloads
            session: Optional preconfigured requests session
        """
        self.credentials = credentials
        self.timeout = timeout
        self.chunk_size = chunk_size

        self._session = session or requests.Session()
        self._session.auth = (credentials.username, credentials.secret)
        self._session.headers.update({"User-Agent": f"nxcloud/{__version__}"})

        self.dav_root = (
            f"{credentials.server_url}remote.php/dav/files/"
            f"{quote(credentials.username, safe='')}"
        )
        self._dav_root_path = unquote(urlsplit(self.dav_root).path).rstrip("/")

    @property
    def server_url(self) -> str:
        return self.credentials.server_url

    @property
    def username(self) -> str:
        return self.credentials.username

    # =========================================================================
    # Transport
    # =========================================================================

    def url_for(self, path: RemotePath) -> str:
        """Full WebDAV URL for a resolved remote path."""
        return self.dav_root + quote(normalize(path), safe="/")

    def _send(
        self,
        method: str,
        url: str,
        path: str,
        **kwargs
    ) -> requests.Response:
        logger.debug("%s %s", method, url)
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise UnreachableError(f"Cannot reach {self.server_url}: {e}", path=path)
        except requests.exceptions.RequestException as e:
            raise UnknownRemoteError(f"Request failed: {e}", path=path)

    def _dav(
        self,
        method: str,
        path: RemotePath,
        ok: tuple[int, ...],
        **kwargs
    ) -> requests.Response:
        """Send a WebDAV request and raise the mapped error on bad status."""
        response = self._send(method, self.url_for(path), path, **kwargs)
        if response.status_code not in ok:
            error = self._error_for(response, method, path)
            response.close()
            raise error
        return response

    def _error_for(self, response: requests.Response, method: str, path: RemotePath) -> RemoteError:
        """Map an HTTP status onto the RemoteError taxonomy."""
        status = response.status_code
        if status == 401:
            return UnauthorizedError(
                f"Server rejected the credentials for {self.username}", path=path
            )
        if status == 404:
            return RemoteNotFoundError(f"No such file or directory: {path}", path=path)
        if status == 409:
            # WebDAV: an intermediate collection is missing
            return RemoteNotFoundError(f"Parent directory does not exist: {path}", path=path)
        if status == 405 and method == "MKCOL":
            return RemoteAlreadyExistsError(f"Already exists: {path}", path=path)
        if status == 405 and method == "GET":
            # Collections cannot be downloaded
            return RemoteNotADirectoryError(f"Is a directory: {path}", path=path)
        if status == 412:
            return RemoteAlreadyExistsError(f"Already exists: {path}", path=path)
        return UnknownRemoteError(
            f"{method} {path} failed: HTTP {status} {response.reason or ''}".rstrip(),
            path=path,
            status_code=status
        )

    # =========================================================================
    # Multistatus parsing
    # =========================================================================

    def _href_to_path(self, href: str) -> RemotePath:
        href_path = unquote(urlsplit(href).path)
        if href_path.startswith(self._dav_root_path):
            href_path = href_path[len(self._dav_root_path):]
        return normalize(href_path)

    def _parse_multistatus(self, content: bytes, path: RemotePath) -> list[RemoteEntry]:
        try:
            tree = ElementTree.fromstring(content)
        except ElementTree.ParseError as e:
            raise UnknownRemoteError(f"Malformed listing for {path}: {e}", path=path)

        entries = []
        for node in tree.findall(f"{DAV_NS}response"):
            href = node.findtext(f"{DAV_NS}href")
            if href is None:
                continue
            entry_path = self._href_to_path(href)
            is_directory = node.find(f".//{DAV_NS}resourcetype/{DAV_NS}collection") is not None

            modified_time = None
            modified_text = node.findtext(f".//{DAV_NS}getlastmodified")
            if modified_text:
                try:
                    modified_time = parsedate_to_datetime(modified_text)
                except (TypeError, ValueError):
                    modified_time = None

            etag = node.findtext(f".//{DAV_NS}getetag")
            entries.append(RemoteEntry(
                path=entry_path,
                name=remote_basename(entry_path),
                is_directory=is_directory,
                size=None if is_directory else _parse_int(node.findtext(f".//{DAV_NS}getcontentlength")),
                modified_time=modified_time,
                etag=etag.strip('"') if etag else None,
            ))
        return entries

    def _propfind(self, path: RemotePath, depth: int) -> tuple[RemoteEntry, list[RemoteEntry]]:
        """PROPFIND a path, returning (the entry itself, its children)."""
        path = normalize(path)
        response = self._dav(
            "PROPFIND",
            path,
            ok=(207,),
            headers={"Depth": str(depth), "Content-Type": "application/xml; charset=utf-8"},
            data=PROPFIND_BODY.encode("utf-8"),
        )
        entries = self._parse_multistatus(response.content, path)

        own = None
        children = []
        for entry in entries:
            if entry.path == path and own is None:
                own = entry
            else:
                children.append(entry)
        if own is None:
            raise UnknownRemoteError(f"Server listing did not include {path}", path=path)
        if is_root(path):
            own.name = ""
        return own, children

    # =========================================================================
    # Filesystem operations
    # =========================================================================

    def stat(self, path: RemotePath) -> RemoteEntry:
        """Get metadata for one path.

        Raises:
            RemoteNotFoundError: If the path does not exist
        """
        own, _ = self._propfind(path, depth=0)
        return own

    def list(self, path: RemotePath) -> list[RemoteEntry]:
        """List a directory's children, sorted by name.

        Raises:
            RemoteNotFoundError: If the path does not exist
            RemoteNotADirectoryError: If the path is a file
        """
        own, children = self._propfind(path, depth=1)
        if not own.is_directory:
            raise RemoteNotADirectoryError(f"Not a directory: {own.path}", path=own.path)
        return sorted(children, key=lambda entry: entry.name)

    def _mkcol(self, path: RemotePath) -> None:
        self._dav("MKCOL", path, ok=(201,)).close()
        logger.info("Created directory %s", path)

    def make_directory(self, path: RemotePath, recursive: bool = False) -> None:
        """Create a directory.

        Args:
            path: Directory to create
            recursive: Create missing parents; succeed if it already exists

        Raises:
            RemoteNotFoundError: If a parent is missing and recursive is False
            RemoteAlreadyExistsError: If the path exists (non-recursive), or
                some segment exists as a file (recursive)
        """
        path = normalize(path)
        if is_root(path):
            if recursive:
                return
            raise RemoteAlreadyExistsError("Already exists: /", path=ROOT)

        if not recursive:
            self._mkcol(path)
            return

        missing = False
        for ancestor in remote_ancestors(path):
            if not missing:
                try:
                    entry = self.stat(ancestor)
                except RemoteNotFoundError:
                    missing = True
                else:
                    if not entry.is_directory:
                        raise RemoteAlreadyExistsError(
                            f"Exists and is not a directory: {ancestor}", path=ancestor
                        )
                    continue
            try:
                self._mkcol(ancestor)
            except RemoteAlreadyExistsError:
                # Created concurrently by someone else
                if not self.stat(ancestor).is_directory:
                    raise

    def delete(self, path: RemotePath, recursive: bool = False) -> None:
        """Delete a file or directory with a single server-side request.

        Raises:
            CommandError: If asked to delete the root
            RemoteNotFoundError: If the path does not exist
            RemoteNotEmptyError: If a non-empty directory is deleted without recursive
            PartialDeleteError: If the server removed only part of the tree
        """
        path = normalize(path)
        if is_root(path):
            raise CommandError("Deleting the root is not supported", path=ROOT)

        if not recursive:
            own, children = self._propfind(path, depth=1)
            if own.is_directory and children:
                raise RemoteNotEmptyError(
                    f"Directory not empty: {path} ({len(children)} entries)", path=path
                )

        response = self._dav("DELETE", path, ok=(200, 204, 207))
        try:
            if response.status_code == 207:
                failed = [entry.path for entry in self._parse_multistatus(response.content, path)]
                raise PartialDeleteError(
                    f"Server deleted only part of {path}; {len(failed)} entries remain",
                    path=path,
                    failed_paths=failed
                )
        finally:
            response.close()
        logger.info("Deleted %s", path)

    def upload_stream(
        self,
        path: RemotePath,
        byte_source: BinaryIO,
        modified_time: Optional[float] = None
    ) -> None:
        """Stream a binary source into a remote file, replacing it.

        The body is read from byte_source in blocks, so memory use does not
        depend on the file size.

        Args:
            path: Destination file
            byte_source: Readable binary file-like object
            modified_time: Optional mtime (epoch seconds) to keep on the server
        """
        headers = {"Content-Type": "application/octet-stream"}
        if modified_time is not None:
            headers["X-OC-Mtime"] = str(int(modified_time))
        self._dav("PUT", path, ok=(200, 201, 204), headers=headers, data=byte_source).close()
        logger.debug("Uploaded %s", path)

    def download_stream(self, path: RemotePath, byte_sink: BinaryIO) -> int:
        """Stream a remote file into a writable binary sink.

        Returns:
            Number of bytes written to the sink

        Raises:
            UnreachableError: If the connection breaks mid-stream
            RemoteNotADirectoryError: If the path is a directory
            UnknownRemoteError: If the body cannot be decoded
        """
        written = 0
        with self._dav("GET", path, ok=(200,), stream=True) as response:
            try:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        byte_sink.write(chunk)
                        written += len(chunk)
            except (requests.exceptions.ConnectionError,
                    requests.exceptions.ChunkedEncodingError,
                    requests.exceptions.Timeout) as e:
                raise UnreachableError(
                    f"Connection lost while downloading {path} after {written} bytes: {e}",
                    path=path
                )
            except requests.exceptions.RequestException as e:
                raise UnknownRemoteError(
                    f"Download of {path} failed after {written} bytes: {e}",
                    path=path
                )
        logger.debug("Downloaded %s (%d bytes)", path, written)
        return written

    # =========================================================================
    # Account
    # =========================================================================

    def authenticate_check(self) -> AccountInfo:
        """Check that the server accepts the credentials.

        Returns:
            AccountInfo for the logged-in user

        Raises:
            UnauthorizedError: If the server rejects the credentials
            UnreachableError: If the server cannot be reached
        """
        url = f"{self.server_url}ocs/v1.php/cloud/users/{quote(self.username, safe='')}"
        response = self._send(
            "GET",
            url,
            "/",
            headers={"OCS-APIRequest": "true", "Accept": "application/json"},
            params={"format": "json"},
        )
        if response.status_code == 401:
            raise UnauthorizedError(f"Server rejected the credentials for {self.username}")
        if response.status_code != 200:
            raise UnknownRemoteError(
                f"Account check failed: HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            ocs = response.json()["ocs"]
            statuscode = int(ocs["meta"]["statuscode"])
        except (ValueError, KeyError, TypeError):
            raise UnknownRemoteError(f"{self.server_url} did not answer like a Nextcloud server")

        if statuscode == OCS_UNAUTHORIZED:
            raise UnauthorizedError(f"Server rejected the credentials for {self.username}")
        if statuscode != OCS_OK:
            raise UnknownRemoteError(
                f"Account check failed: {ocs['meta'].get('message') or statuscode}",
                status_code=statuscode
            )

        data = ocs.get("data") or {}
        quota = data.get("quota") if isinstance(data.get("quota"), dict) else {}
        return AccountInfo(
            server_url=self.server_url,
            username=data.get("id") or self.username,
            display_name=data.get("displayname") or data.get("display-name"),
            email=data.get("email"),
            quota_used=_parse_int(str(quota["used"])) if "used" in quota else None,
            quota_total=_parse_int(str(quota["total"])) if "total" in quota else None,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self):
        """Close the underlying HTTP session."""
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
