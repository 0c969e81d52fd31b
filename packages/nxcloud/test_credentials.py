#!/usr/bin/env python3
"""Unit tests for credentials.py - keyring and file credential storage."""

import base64
import os
import stat
from unittest.mock import patch

import pytest
from keyring.errors import KeyringError, NoKeyringError, PasswordDeleteError

from nxcloud.credentials import (
    KEYRING_ENTRY,
    CredentialStore,
    decode_credentials,
    encode_credentials,
)
from nxcloud.exceptions import ErrorKind, NotLoggedInError, StoreIoError
from nxcloud.models import Credentials


@pytest.fixture
def credentials():
    return Credentials(server_url="https://cloud.example.com", username="alice", secret="app-secret")


@pytest.fixture
def cred_path(tmp_path):
    return tmp_path / "state" / "credentials"


@pytest.fixture
def fake_keyring():
    """Patch the keyring module with an in-memory dict."""
    vault = {}

    def set_password(service, entry, value):
        vault[(service, entry)] = value

    def get_password(service, entry):
        return vault.get((service, entry))

    def delete_password(service, entry):
        if (service, entry) not in vault:
            raise PasswordDeleteError("not found")
        del vault[(service, entry)]

    with patch("nxcloud.credentials.keyring") as mock_keyring:
        mock_keyring.set_password.side_effect = set_password
        mock_keyring.get_password.side_effect = get_password
        mock_keyring.delete_password.side_effect = delete_password
        yield vault


class TestEncoding:
    """Tests for the base64 JSON record format."""

    def test_encode_decode(self, credentials):
        """Test that a record decodes to the same credentials."""
        assert decode_credentials(encode_credentials(credentials)) == credentials

    def test_encoded_record_is_base64_json(self, credentials):
        """Test the on-disk shape of a record."""
        raw = base64.b64decode(encode_credentials(credentials)).decode("utf-8")
        assert '"username": "alice"' in raw
        assert '"server_url": "https://cloud.example.com/"' in raw

    @pytest.mark.parametrize("content", [
        "not base64 at all!",
        base64.b64encode(b"not json").decode(),
        base64.b64encode(b'{"username": "alice"}').decode(),
        base64.b64encode(b"\xff\xfe").decode(),
    ])
    def test_decode_corrupt_record(self, content):
        """Test that corrupt records raise StoreIoError."""
        with pytest.raises(StoreIoError) as exc_info:
            decode_credentials(content)
        assert exc_info.value.kind == ErrorKind.IO_FAILURE


class TestFileStore:
    """Tests for the file backend (keyring disabled)."""

    def test_load_without_record(self, cred_path):
        """Test that an empty store raises NotLoggedInError."""
        store = CredentialStore(cred_path, use_keyring=False)
        with pytest.raises(NotLoggedInError):
            store.load()

    def test_save_then_load(self, cred_path, credentials):
        store = CredentialStore(cred_path, use_keyring=False)
        store.save(credentials)
        assert store.load() == credentials

    def test_save_replaces_record(self, cred_path, credentials):
        """Test that saving twice keeps only the latest record."""
        store = CredentialStore(cred_path, use_keyring=False)
        store.save(credentials)
        other = Credentials(server_url="https://other.example.org", username="bob", secret="s2")
        store.save(other)
        assert store.load() == other

    def test_file_is_owner_only(self, cred_path, credentials):
        """Test that the file is created readable by the owner only."""
        store = CredentialStore(cred_path, use_keyring=False)
        store.save(credentials)
        assert stat.S_IMODE(os.stat(cred_path).st_mode) == 0o600

    def test_secret_not_in_plain_text(self, cred_path, credentials):
        store = CredentialStore(cred_path, use_keyring=False)
        store.save(credentials)
        assert "app-secret" not in cred_path.read_text()

    def test_clear_is_idempotent(self, cred_path, credentials):
        """Test that clearing an empty store is not an error."""
        store = CredentialStore(cred_path, use_keyring=False)
        store.save(credentials)
        store.clear()
        store.clear()
        with pytest.raises(NotLoggedInError):
            store.load()

    def test_corrupt_file(self, cred_path):
        """Test that a corrupt file is an I/O failure, not 'not logged in'."""
        cred_path.parent.mkdir(parents=True)
        cred_path.write_text("garbage!!")
        store = CredentialStore(cred_path, use_keyring=False)
        with pytest.raises(StoreIoError):
            store.load()

    def test_unwritable_location(self, tmp_path, credentials):
        """Test that a write failure is reported as StoreIoError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = CredentialStore(blocker / "credentials", use_keyring=False)
        with pytest.raises(StoreIoError):
            store.save(credentials)


class TestKeyringStore:
    """Tests for the keyring backend."""

    def test_save_uses_keyring(self, cred_path, credentials, fake_keyring):
        """Test that the record goes to the keyring and no file is written."""
        store = CredentialStore(cred_path, service="nxcloud-test")
        store.save(credentials)
        assert ("nxcloud-test", KEYRING_ENTRY) in fake_keyring
        assert not cred_path.exists()
        assert store.load() == credentials

    def test_save_removes_stale_file(self, cred_path, credentials, fake_keyring):
        """Test that a keyring save leaves exactly one copy of the record."""
        CredentialStore(cred_path, use_keyring=False).save(credentials)
        assert cred_path.exists()
        CredentialStore(cred_path).save(credentials)
        assert not cred_path.exists()

    def test_clear_keyring(self, cred_path, credentials, fake_keyring):
        store = CredentialStore(cred_path)
        store.save(credentials)
        store.clear()
        store.clear()
        assert fake_keyring == {}
        with pytest.raises(NotLoggedInError):
            store.load()

    def test_fallback_when_keyring_unavailable(self, cred_path, credentials, caplog):
        """Test that a missing keyring backend falls back to the file with a warning."""
        with patch("nxcloud.credentials.keyring") as mock_keyring:
            mock_keyring.set_password.side_effect = NoKeyringError("no backend")
            mock_keyring.get_password.side_effect = NoKeyringError("no backend")
            mock_keyring.delete_password.side_effect = NoKeyringError("no backend")

            store = CredentialStore(cred_path)
            with caplog.at_level("WARNING", logger="nxcloud.credentials"):
                store.save(credentials)

            assert cred_path.exists()
            assert "No usable keyring backend" in caplog.text
            assert store.load() == credentials
            store.clear()
            assert not cred_path.exists()

    def test_load_reads_file_when_keyring_empty(self, cred_path, credentials, fake_keyring):
        """Test that a record written while the keyring was down is still found."""
        CredentialStore(cred_path, use_keyring=False).save(credentials)
        assert CredentialStore(cred_path).load() == credentials

    def test_keyring_read_error(self, cred_path):
        """Test that keyring read errors fall through to the file backend."""
        with patch("nxcloud.credentials.keyring") as mock_keyring:
            mock_keyring.get_password.side_effect = KeyringError("locked")
            with pytest.raises(NotLoggedInError):
                CredentialStore(cred_path).load()
