"""Credential storage for nxcloud.

One record of {server_url, username, secret} is kept in the system keyring
when a backend is available. When it is not, the record falls back to a file
readable only by the current user. The record is base64-encoded JSON in both
places.
"""

import base64
import binascii
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

import keyring
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import ValidationError

from .exceptions import NotLoggedInError, StoreIoError
from .models import Credentials

logger = logging.getLogger(__name__)

# Keyring "username" slot under which the whole record is stored
KEYRING_ENTRY = "credentials"


def encode_credentials(credentials: Credentials) -> str:
    """Encode credentials as base64 JSON."""
    payload = json.dumps({
        "server_url": credentials.server_url,
        "username": credentials.username,
        "secret": credentials.secret,
    })
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_credentials(content: str) -> Credentials:
    """Decode credentials written by encode_credentials.

    Raises:
        StoreIoError: If the content is not a valid record
    """
    try:
        data = json.loads(base64.b64decode(content.strip(), validate=True).decode("utf-8"))
        return Credentials(**data)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, TypeError, ValidationError) as e:
        raise StoreIoError(f"Stored credentials are corrupt: {e.__class__.__name__}")


class CredentialStore:
    """Persists a single credential record.

    The keyring is tried first on every operation; the file is the fallback.
    """

    def __init__(
        self,
        path: Union[str, Path],
        use_keyring: bool = True,
        service: str = "nxcloud"
    ):
        """Initialize the store.

        Args:
            path: Fallback credential file
            use_keyring: Try the system keyring before the file
            service: Keyring service name
        """
        self.path = Path(path).expanduser()
        self.use_keyring = use_keyring
        self.service = service

    # =========================================================================
    # Public API
    # =========================================================================

    def save(self, credentials: Credentials) -> None:
        """Persist credentials, replacing any existing record.

        Never fails just because the keyring is unavailable; the record is
        written to the fallback file with a warning instead.

        Raises:
            StoreIoError: If the fallback file cannot be written
        """
        content = encode_credentials(credentials)

        if self.use_keyring and self._keyring_set(content):
            logger.debug("Stored credentials in keyring service %r", self.service)
            # Keep exactly one copy of the record
            self._file_delete()
            return

        if self.use_keyring:
            logger.warning(
                "No usable keyring backend; storing credentials in %s", self.path
            )
        self._file_write(content)
        logger.debug("Stored credentials in %s", self.path)

    def load(self) -> Credentials:
        """Load the stored credentials.

        Raises:
            NotLoggedInError: If no record exists
            StoreIoError: If the record cannot be read or decoded
        """
        content = self._keyring_get() if self.use_keyring else None
        if content is None:
            content = self._file_read()
        if content is None:
            raise NotLoggedInError()
        return decode_credentials(content)

    def clear(self) -> None:
        """Remove the stored record. Removing nothing is not an error.

        Raises:
            StoreIoError: If the fallback file exists but cannot be removed
        """
        if self.use_keyring:
            self._keyring_delete()
        self._file_delete()

    # =========================================================================
    # Keyring backend
    # =========================================================================

    def _keyring_set(self, content: str) -> bool:
        try:
            keyring.set_password(self.service, KEYRING_ENTRY, content)
            return True
        except KeyringError as e:
            logger.debug("Keyring write failed: %s", e)
            return False

    def _keyring_get(self) -> Optional[str]:
        try:
            return keyring.get_password(self.service, KEYRING_ENTRY)
        except KeyringError as e:
            logger.debug("Keyring read failed: %s", e)
            return None

    def _keyring_delete(self) -> None:
        try:
            keyring.delete_password(self.service, KEYRING_ENTRY)
        except PasswordDeleteError:
            pass
        except KeyringError as e:
            logger.debug("Keyring delete failed: %s", e)

    # =========================================================================
    # File backend
    # =========================================================================

    def _file_write(self, content: str) -> None:
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            # Create with owner-only permissions before any secret is written
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(content)
            self.path.chmod(0o600)
        except OSError as e:
            raise StoreIoError(f"Cannot write credentials: {e.strerror}", path=str(self.path))

    def _file_read(self) -> Optional[str]:
        try:
            return self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreIoError(f"Cannot read credentials: {e.strerror}", path=str(self.path))

    def _file_delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StoreIoError(f"Cannot remove credentials: {e.strerror}", path=str(self.path))
