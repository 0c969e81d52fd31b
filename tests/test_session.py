"""Tests for ShellSession command dispatch and state."""

from unittest.mock import MagicMock

import pytest

from nxcloud.exceptions import (
    CommandError,
    NotLoggedInError,
    RemoteNotADirectoryError,
    RemoteNotEmptyError,
    RemoteNotFoundError,
    SessionTerminatedError,
    UnauthorizedError,
)
from nxcloud.models import Credentials
from nxcloud.session import (
    Cd,
    Exit,
    Login,
    Logout,
    Ls,
    Mkdir,
    Pull,
    Push,
    Pwd,
    Rm,
    SessionStatus,
    ShellSession,
    Status,
)


@pytest.fixture
def fresh_session(dav, store, config):
    """Session with no stored credentials."""
    s = ShellSession(store, config)
    yield s
    s.close()


class TestAccount:
    """Tests for login, logout and status."""

    def test_login_status_scenario(self, fresh_session, store):
        """Test login stores credentials and status reports the account."""
        account = fresh_session.execute(Login("https://cloud.example.com", "alice", "app-secret"))
        assert account.username == "alice"
        assert store.load().username == "alice"

        status = fresh_session.execute(Status())
        assert status.username == "alice"
        assert status.server_url == "https://cloud.example.com/"

    def test_login_rejected_stores_nothing(self, fresh_session, store):
        with pytest.raises(UnauthorizedError):
            fresh_session.execute(Login("https://cloud.example.com", "alice", "wrong"))
        with pytest.raises(NotLoggedInError):
            store.load()

    def test_login_invalid_url(self, fresh_session):
        with pytest.raises(CommandError) as exc_info:
            fresh_session.execute(Login("ftp://cloud.example.com", "alice", "app-secret"))
        assert "Invalid login" in str(exc_info.value)

    def test_logout_then_status(self, session):
        """Test that status after logout never reports a cached account."""
        session.execute(Status())
        session.execute(Logout())
        with pytest.raises(NotLoggedInError):
            session.execute(Status())

    def test_logout_twice(self, session):
        session.execute(Logout())
        session.execute(Logout())

    def test_commands_need_login(self, fresh_session):
        with pytest.raises(NotLoggedInError):
            fresh_session.execute(Ls())

    def test_status_picks_up_new_credentials(self, session, store, dav):
        """Test that status rebuilds the client when the stored record changed."""
        dav.users["bob"] = "bob-secret"
        session.execute(Status())
        store.save(Credentials(server_url="https://cloud.example.com", username="bob", secret="bob-secret"))
        assert session.execute(Status()).username == "bob"

    def test_lazy_validation(self, dav, store, config):
        """Test that bad stored credentials only fail on the first real request."""
        store.save(Credentials(server_url="https://cloud.example.com", username="alice", secret="stale"))
        s = ShellSession(store, config)
        assert dav.requests == []
        with pytest.raises(UnauthorizedError):
            s.execute(Ls())


class TestFilesystem:
    """Tests for ls, mkdir, rm, push and pull through the session."""

    def test_rm_scenario(self, session, dav):
        """Test rm of a non-empty directory, then recursive rm, then ls."""
        dav.add_file("/docs/a.txt", b"a")
        dav.add_file("/docs/b.txt", b"b")

        with pytest.raises(RemoteNotEmptyError):
            session.execute(Rm("/docs"))
        assert dav.exists("/docs/a.txt")

        session.execute(Rm("/docs", recursive=True))
        with pytest.raises(RemoteNotFoundError):
            session.execute(Ls("/docs"))

    def test_ls_hides_dot_entries(self, session, dav):
        dav.add_file("/.hidden", b"")
        dav.add_file("/visible.txt", b"")
        assert [e.name for e in session.execute(Ls())] == ["visible.txt"]
        assert [e.name for e in session.execute(Ls(all=True))] == [".hidden", "visible.txt"]

    def test_mkdir_relative(self, session, dav):
        dav.add_dir("/Projects")
        session.execute(Cd("Projects"))
        assert session.execute(Mkdir("new")) == "/Projects/new"
        assert dav.is_dir("/Projects/new")

    def test_mkdir_recursive_twice(self, session, dav):
        session.execute(Mkdir("a/b/c", recursive=True))
        session.execute(Mkdir("a/b/c", recursive=True))
        assert dav.is_dir("/a/b/c")

    def test_push_pull_relative(self, session, dav, tmp_path):
        """Test transfers resolve remote paths against the current directory."""
        dav.add_dir("/Projects")
        source = tmp_path / "plan.txt"
        source.write_bytes(b"the plan")

        session.execute(Cd("/Projects"))
        report = session.execute(Push(str(source)))
        assert report.transferred == ["/Projects/plan.txt"]

        out_dir = tmp_path / "out"
        out_dir.mkdir()
        session.execute(Pull("plan.txt", str(out_dir)))
        assert (out_dir / "plan.txt").read_bytes() == b"the plan"


class TestNavigation:
    """Tests for cd and pwd."""

    def test_cd_and_pwd(self, session, dav):
        dav.add_dir("/a/b")
        assert session.execute(Cd("a")) == "/a"
        assert session.execute(Cd("b")) == "/a/b"
        assert session.execute(Pwd()) == "/a/b"
        assert session.execute(Cd("..")) == "/a"

    def test_cd_missing_keeps_directory(self, session, dav):
        dav.add_dir("/a")
        session.execute(Cd("/a"))
        with pytest.raises(RemoteNotFoundError):
            session.execute(Cd("missing"))
        assert session.current_dir == "/a"
        assert session.status == SessionStatus.ACTIVE

    def test_cd_file_keeps_directory(self, session, dav):
        dav.add_file("/a.txt", b"a")
        with pytest.raises(RemoteNotADirectoryError):
            session.execute(Cd("a.txt"))
        assert session.current_dir == "/"

    def test_cd_empty_goes_to_root(self, session, dav):
        dav.add_dir("/a")
        session.execute(Cd("a"))
        assert session.execute(Cd("")) == "/"

    def test_cd_above_root(self, session):
        assert session.execute(Cd("../..")) == "/"


class TestLifecycle:
    """Tests for session termination and client handling."""

    def test_exit_terminates(self, session):
        session.execute(Exit())
        assert not session.is_active
        with pytest.raises(SessionTerminatedError):
            session.execute(Pwd())

    def test_client_factory(self, logged_in_store, config, credentials):
        """Test that the client is built once from stored credentials."""
        factory = MagicMock()
        factory.return_value.list.return_value = []
        s = ShellSession(logged_in_store, config, client_factory=factory)

        s.execute(Ls())
        s.execute(Ls("/x"))
        factory.assert_called_once_with(credentials)
        factory.return_value.list.assert_called_with("/x")

    def test_logout_closes_client(self, logged_in_store, config):
        factory = MagicMock()
        s = ShellSession(logged_in_store, config, client_factory=factory)
        s.client()
        s.execute(Logout())
        factory.return_value.close.assert_called_once()

    def test_unknown_command(self, session):
        with pytest.raises(CommandError):
            session.execute("ls")
