#!/usr/bin/env python3
"""
nxcloud command line - one-shot subcommands and an interactive shell.

The same argparse parser handles argv and every shell line, so both modes
build the same command values and run them through a ShellSession.
"""

import argparse
import getpass
import logging
import readline
import shlex
import sys
from pathlib import Path
from typing import Callable, Optional, TextIO

from . import __version__
from .config import get_config
from .credentials import CredentialStore
from .exceptions import (
    CommandError,
    ConfigurationError,
    ErrorKind,
    NxCloudError,
    TransferError,
)
from .models import AccountInfo, RemoteEntry, TransferReport
from .session import (
    Cd,
    Command,
    Exit,
    Login,
    Logout,
    Ls,
    Mkdir,
    Pull,
    Push,
    Pwd,
    Rm,
    ShellSession,
    Status,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

SHELL_ONLY = ("cd", "pwd")
EXIT_WORDS = ("exit", "quit", "q")


# ============================================================================
# Argument parsing
# ============================================================================

class _ParserExit(Exception):
    """argparse wanted to exit (e.g. after printing help) inside the shell."""

    def __init__(self, status: int):
        super().__init__(status)
        self.status = status


class ShellArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting the process."""

    def error(self, message):
        raise CommandError(message)

    def exit(self, status=0, message=None):
        if message:
            sys.stderr.write(message)
        raise _ParserExit(status)


def build_parser(parser_class: type = argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Build the nxcloud parser.

    Args:
        parser_class: ArgumentParser subclass; subparsers use the same class
    """
    parser = parser_class(
        prog="nxcloud",
        description="A command line client for interacting with your Nextcloud server."
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Verbose mode (-v, -vv, -vvv)"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("status", help="Display the account status")

    login = sub.add_parser(
        "login",
        help="Login to your Nextcloud server, please provide an app password for security"
    )
    login.add_argument("server", help="The server url, e.g. https://cloud.example.com")
    login.add_argument("username", help="Your Nextcloud username")
    login.add_argument(
        "secret",
        nargs="?",
        help="A Nextcloud app password, do not use your account password (prompted if omitted)"
    )

    sub.add_parser("logout", help="Logout of your Nextcloud server")

    ls = sub.add_parser("ls", help="List files and directories")
    ls.add_argument("path", nargs="?", default="", help="Directory to list")
    ls.add_argument("-l", "--long", action="store_true", help="One entry per line with details")
    ls.add_argument("-a", "--all", action="store_true", help="Include entries starting with '.'")

    mkdir = sub.add_parser("mkdir", help="Make a directory")
    mkdir.add_argument("path", help="Path to directory to create")
    mkdir.add_argument(
        "-p", "--parents",
        action="store_true",
        help="Create missing parents, no error if it already exists"
    )

    rm = sub.add_parser("rm", help="Remove a file or directory")
    rm.add_argument("path", help="Path to file or directory to remove")
    rm.add_argument("-r", "--recursive", action="store_true", help="Remove directories and their contents")
    rm.add_argument("-f", "--force", action="store_true", help="Do not ask for confirmation")

    push = sub.add_parser("push", help="Push a file or directory from your machine to the server")
    push.add_argument("source", help="Local file or directory")
    push.add_argument("destination", nargs="?", default="", help="Remote destination (default: current directory)")

    pull = sub.add_parser("pull", help="Pull a file or directory from the server to your machine")
    pull.add_argument("source", help="Remote file or directory")
    pull.add_argument("destination", nargs="?", default=".", help="Local destination (default: .)")

    sub.add_parser("shell", help="Enter an interactive prompt")

    cd = sub.add_parser("cd", help="Change remote directory - shell only")
    cd.add_argument("path", nargs="?", default="", help="Directory to change to (default: /)")

    sub.add_parser("pwd", help="Print the remote directory - shell only")

    return parser


def command_from_args(args: argparse.Namespace) -> Command:
    """Turn parsed arguments into a command value."""
    name = args.command
    if name == "status":
        return Status()
    if name == "login":
        secret = args.secret
        if secret is None:
            secret = getpass.getpass("App password: ")
        return Login(server_url=args.server, username=args.username, secret=secret)
    if name == "logout":
        return Logout()
    if name == "ls":
        return Ls(path=args.path, long=args.long, all=args.all)
    if name == "mkdir":
        return Mkdir(path=args.path, recursive=args.parents)
    if name == "rm":
        return Rm(path=args.path, recursive=args.recursive)
    if name == "push":
        return Push(local=args.source, remote=args.destination)
    if name == "pull":
        return Pull(remote=args.source, local=args.destination)
    if name == "cd":
        return Cd(path=args.path)
    if name == "pwd":
        return Pwd()
    raise CommandError(f"Unknown command: {name}")


# ============================================================================
# Output
# ============================================================================

def _color(code: str, text: str, stream: TextIO) -> str:
    if hasattr(stream, "isatty") and stream.isatty():
        return f"\033[{code}m{text}\033[0m"
    return text


def format_size(size: Optional[int]) -> str:
    """Human readable size, e.g. 1.5K, 12M."""
    if size is None:
        return "-"
    value = float(size)
    for unit in ("B", "K", "M", "G", "T"):
        if value < 1024 or unit == "T":
            if unit == "B":
                return f"{int(value)}B"
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{size}B"


def _display_name(entry: RemoteEntry) -> str:
    name = entry.name + ("/" if entry.is_directory else "")
    if " " in name:
        return f"'{name}'"
    return name


def format_entries(entries: list[RemoteEntry], long: bool = False) -> str:
    """Format a directory listing."""
    if not long:
        return "  ".join(_display_name(entry) for entry in entries)

    lines = []
    for entry in entries:
        kind = "d" if entry.is_directory else "-"
        modified = entry.modified_time.strftime("%Y-%m-%d %H:%M") if entry.modified_time else "-"
        lines.append(f"{kind} {format_size(entry.size):>8} {modified:>16} {_display_name(entry)}")
    return "\n".join(lines)


def format_account(account: AccountInfo) -> str:
    lines = [f"Logged in to Server: '{account.server_url}' as User: '{account.username}'"]
    if account.display_name and account.display_name != account.username:
        lines.append(f"Display name: {account.display_name}")
    if account.email:
        lines.append(f"Email: {account.email}")
    if account.quota_used is not None:
        if account.quota_total and account.quota_total > 0:
            lines.append(f"Quota: {format_size(account.quota_used)} of {format_size(account.quota_total)} used")
        else:
            lines.append(f"Quota: {format_size(account.quota_used)} used")
    return "\n".join(lines)


def format_report(report: TransferReport) -> str:
    verb = "Pushed" if report.job.direction.value == "upload" else "Pulled"
    if not report.job.recursive:
        return f"{verb} {report.job.source_path} -> {report.job.destination_path} ({format_size(report.bytes_transferred)})"
    return (
        f"{verb} {report.job.source_path} -> {report.job.destination_path}: "
        f"{len(report.transferred)} of {report.file_count} files, "
        f"{format_size(report.bytes_transferred)}"
    )


def report_error(command: str, error: NxCloudError, stream: TextIO = None) -> None:
    """Print an error naming the command, the path and the failure kind."""
    stream = stream or sys.stderr
    where = f"{command} {error.path}" if error.path else command
    kind = error.kind.value
    if isinstance(error, TransferError) and getattr(error, "remote", None) is not None:
        kind = f"{kind}:{error.remote.kind.value}"
    print(_color("1;31", f"nxcloud: {where}: {error} [{kind}]", stream), file=stream)

    remote_kind = getattr(getattr(error, "remote", None), "kind", error.kind)
    if remote_kind == ErrorKind.UNAUTHORIZED:
        print("hint: the server rejected your app password, run 'nxcloud login' again", file=stream)
    elif remote_kind == ErrorKind.NOT_LOGGED_IN:
        print("hint: run 'nxcloud login' first", file=stream)


def _print_failures(report: TransferReport, stream: TextIO) -> None:
    for failure in report.failures:
        print(
            _color("1;31", f"  failed: {failure.source_path} -> {failure.destination_path}: "
                           f"{failure.error} [{failure.error.kind.value}]", stream),
            file=stream
        )


def input_no_history(prompt: str = "") -> str:
    """Get input without adding to readline history."""
    hist_len = readline.get_current_history_length()
    result = input(prompt)
    new_len = readline.get_current_history_length()
    if new_len > hist_len:
        readline.remove_history_item(new_len - 1)
    return result


def confirm(prompt: str) -> bool:
    """Ask a yes/no question; anything but y/yes is no."""
    try:
        answer = input_no_history(f"{prompt} (y/n) ").strip().lower()
    except EOFError:
        return False
    return answer in ("y", "yes")


# ============================================================================
# Command execution
# ============================================================================

def run_command(
    session: ShellSession,
    args: argparse.Namespace,
    out: TextIO = None,
    err: TextIO = None,
    confirm_fn: Callable[[str], bool] = confirm,
    interactive: bool = False
) -> int:
    """Run one parsed command and print its result.

    Returns:
        Process exit code
    """
    out = out or sys.stdout
    err = err or sys.stderr
    name = args.command

    if name in SHELL_ONLY and not interactive:
        report_error(name, CommandError(f"'{name}' is only available inside 'nxcloud shell'"), err)
        return EXIT_USAGE
    if name == "shell":
        report_error(name, CommandError("Already in a shell"), err)
        return EXIT_USAGE

    try:
        command = command_from_args(args)

        if isinstance(command, Rm):
            target = session.resolve(command.path)
            if not args.force:
                if command.recursive:
                    logger.warning("DIRECTORIES DELETE ALL FILES AND DIRECTORIES RECURSIVELY")
                if not confirm_fn(f"Are you sure you want to delete '{target}'?"):
                    print("Cancelled.", file=out)
                    return EXIT_OK

        result = session.execute(command)

    except TransferError as e:
        report_error(name, e, err)
        if e.report is not None:
            _print_failures(e.report, err)
        return EXIT_FAILURE
    except NxCloudError as e:
        report_error(name, e, err)
        return EXIT_USAGE if isinstance(e, CommandError) else EXIT_FAILURE

    if isinstance(command, Login):
        print(f"Login successful: {result.username} @ {result.server_url}", file=out)
    elif isinstance(command, Logout):
        print("Logout successful", file=out)
    elif isinstance(command, Status):
        print(format_account(result), file=out)
    elif isinstance(command, Ls):
        listing = format_entries(result, long=command.long)
        if listing:
            print(listing, file=out)
    elif isinstance(command, (Push, Pull)):
        print(format_report(result), file=out)
        if result.failures:
            print(
                _color("1;33", f"warning: {len(result.failures)} of {result.file_count} files failed", err),
                file=err
            )
            _print_failures(result, err)
    elif isinstance(command, Pwd):
        print(result, file=out)
    return EXIT_OK


# ============================================================================
# Interactive shell
# ============================================================================

class NxCloudShell:
    """Interactive prompt keeping a remote working directory."""

    def __init__(
        self,
        session: ShellSession,
        history_path: Optional[Path] = None,
        input_fn: Callable[[str], str] = input,
        out: TextIO = None,
        err: TextIO = None,
        confirm_fn: Callable[[str], bool] = confirm
    ):
        self.session = session
        self.history_path = history_path
        self.parser = build_parser(ShellArgumentParser)
        self._input = input_fn
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self._confirm = confirm_fn
        self._setup_readline()

    def _setup_readline(self):
        """Setup readline for input history."""
        if self.history_path and self.history_path.exists():
            try:
                readline.read_history_file(self.history_path)
                logger.info("Loaded prompt history")
            except OSError as e:
                logger.debug("Could not read history: %s", e)
        readline.set_history_length(1000)

    def _save_history(self):
        """Save readline history."""
        if not self.history_path:
            return
        try:
            self.history_path.parent.mkdir(parents=True, exist_ok=True)
            readline.write_history_file(self.history_path)
        except OSError as e:
            logger.debug("Could not save history: %s", e)

    def get_prompt(self) -> str:
        return f"[{self.session.current_dir}] >> "

    def run_line(self, line: str) -> int:
        """Parse and run one shell line.

        Returns:
            Exit code of the line (errors never end the session)
        """
        line = line.strip()
        if not line:
            return EXIT_OK

        if line.lower() in EXIT_WORDS:
            self.session.execute(Exit())
            return EXIT_OK

        try:
            argv = shlex.split(line)
        except ValueError as e:
            report_error("shell", CommandError(str(e)), self.err)
            return EXIT_USAGE

        # Accept lines copied from the command line
        if argv and argv[0] == "nxcloud":
            argv = argv[1:]
            if not argv:
                return EXIT_OK

        try:
            args = self.parser.parse_args(argv)
        except CommandError as e:
            report_error(argv[0], e, self.err)
            return EXIT_USAGE
        except _ParserExit as e:
            return e.status

        if args.command is None:
            return EXIT_OK

        return run_command(
            self.session,
            args,
            out=self.out,
            err=self.err,
            confirm_fn=self._confirm,
            interactive=True
        )

    def run(self) -> int:
        """Main shell loop."""
        print(f"nxcloud {__version__} - type 'exit' or 'quit' to leave", file=self.out)
        last = EXIT_OK
        try:
            while self.session.is_active:
                try:
                    line = self._input(self.get_prompt())
                except EOFError:
                    print(file=self.out)
                    self.session.execute(Exit())
                    break
                except KeyboardInterrupt:
                    print("^C", file=self.out)
                    continue
                try:
                    last = self.run_line(line)
                except KeyboardInterrupt:
                    print(_color("1;33", "Interrupted.", self.err), file=self.err)
                    last = EXIT_INTERRUPTED
        finally:
            self._save_history()
        return last


# ============================================================================
# Entry point
# ============================================================================

def configure_logging(verbose: int) -> None:
    """Map -v counts to log levels."""
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")
    # HTTP connection chatter only at -vvv
    logging.getLogger("urllib3").setLevel(logging.DEBUG if verbose >= 3 else logging.WARNING)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    logger.info("Logger has been initialized")

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        config = get_config()
    except ConfigurationError as e:
        report_error(args.command, e)
        return EXIT_USAGE

    store = CredentialStore(
        config.credentials_path,
        use_keyring=config.use_keyring,
        service=config.keyring_service
    )
    session = ShellSession(store, config)

    try:
        if args.command == "shell":
            return NxCloudShell(session, config.history_path).run()
        return run_command(session, args)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        return EXIT_INTERRUPTED
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
