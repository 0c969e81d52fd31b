"""Shared fixtures: a fake Nextcloud patched into requests, plus a logged-in session."""

from pathlib import Path
from unittest.mock import patch

import pytest
import requests

from fakedav import FakeDavServer
from nxcloud.client import RemoteClient
from nxcloud.config import NxCloudConfig
from nxcloud.credentials import CredentialStore
from nxcloud.models import Credentials
from nxcloud.session import ShellSession

SERVER_URL = "https://cloud.example.com"


@pytest.fixture
def dav():
    """FakeDavServer answering every requests.Session.request call."""
    server = FakeDavServer(SERVER_URL + "/")
    with patch.object(requests.Session, "request", autospec=True, side_effect=server.handle):
        yield server


@pytest.fixture
def credentials():
    return Credentials(server_url=SERVER_URL, username="alice", secret="app-secret")


@pytest.fixture
def client(dav, credentials):
    with RemoteClient(credentials, chunk_size=4) as c:
        yield c


@pytest.fixture
def config(tmp_path) -> NxCloudConfig:
    base = tmp_path / "nxcloud-state"
    return NxCloudConfig(
        config_dir=base,
        credentials_path=base / "credentials",
        history_path=base / "history",
        use_keyring=False,
        chunk_size=4,
        transfer_workers=2,
    )


@pytest.fixture
def store(config):
    return CredentialStore(config.credentials_path, use_keyring=False)


@pytest.fixture
def logged_in_store(store, credentials):
    store.save(credentials)
    return store


@pytest.fixture
def session(dav, logged_in_store, config):
    s = ShellSession(logged_in_store, config)
    yield s
    s.close()


@pytest.fixture
def local_tree(tmp_path) -> Path:
    """A small local directory tree to push.

    photos/
        a.jpg, b.jpg, c.jpg
        2023/
            d.jpg, e.jpg
    """
    root = tmp_path / "local" / "photos"
    (root / "2023").mkdir(parents=True)
    for name in ["a.jpg", "b.jpg", "c.jpg"]:
        (root / name).write_bytes(f"image {name}".encode())
    for name in ["d.jpg", "e.jpg"]:
        (root / "2023" / name).write_bytes(f"old image {name}".encode())
    return root
