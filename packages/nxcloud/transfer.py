"""Push/pull transfer engine for nxcloud.

Single files are streamed through the RemoteClient. Directory trees are
walked breadth-first, the whole destination directory structure is created
first, and then every file is transferred independently on a small thread
pool. Failed files are collected into the TransferReport; the call only
raises when every file failed.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from .client import RemoteClient
from .exceptions import (
    IncompleteWriteError,
    LocalIoError,
    RemoteAlreadyExistsError,
    RemoteError,
    RemoteNotFoundError,
    RemoteTransferError,
    TransferError,
    UnreachableError,
)
from .models import (
    RemotePath,
    TransferDirection,
    TransferFailure,
    TransferJob,
    TransferReport,
)
from .paths import normalize, remote_join, remote_parent

logger = logging.getLogger(__name__)

# Downloads are written to ".<name>.nxcloud-part" beside the target
PARTIAL_SUFFIX = ".nxcloud-part"


# ============================================================================
# Byte stream adapters
# ============================================================================

class CountingReader:
    """Binary reader that counts bytes handed to the HTTP layer.

    It also remembers a local read error, because the HTTP stack may wrap
    it in a connection error on the way out.
    """

    def __init__(self, raw: BinaryIO, size: int, chunk_size: int = 1024 * 1024):
        self._raw = raw
        self._size = size
        self._chunk_size = chunk_size
        self.bytes_read = 0
        self.error: Optional[OSError] = None

    def read(self, size: int = -1) -> bytes:
        try:
            data = self._raw.read(size)
        except OSError as e:
            self.error = e
            raise
        self.bytes_read += len(data)
        return data

    def __iter__(self):
        while chunk := self.read(self._chunk_size):
            yield chunk

    def __len__(self) -> int:
        return self._size


class CountingWriter:
    """Binary writer that counts bytes written."""

    def __init__(self, raw: BinaryIO):
        self._raw = raw
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        written = self._raw.write(data)
        self.bytes_written += len(data)
        return written


@dataclass
class _FileUnit:
    """One file of a transfer; ``error`` set up front means it is not attempted."""
    source: str
    destination: str
    error: Optional[TransferError] = None
    bytes_transferred: int = 0


def _local_error(action: str, path: Union[str, Path], error: OSError) -> LocalIoError:
    reason = error.strerror or str(error)
    return LocalIoError(f"Cannot {action} {path}: {reason}", path=str(path))


# ============================================================================
# Transfer Engine
# ============================================================================

class TransferEngine:
    """Moves files and directory trees between the local disk and the server.

    Usage:
        engine = TransferEngine(client, workers=4)
        report = engine.push(Path("photos"), "/Backup")
        for failure in report.failures:
            print(failure.source_path, failure.error)
    """

    DEFAULT_WORKERS = 4

    def __init__(
        self,
        client: RemoteClient,
        chunk_size: int = 1024 * 1024,
        workers: int = DEFAULT_WORKERS
    ):
        """Initialize the engine.

        Args:
            client: Authenticated client, borrowed for the engine's lifetime
            chunk_size: Read size for uploads
            workers: Maximum concurrent file transfers in a directory job
        """
        self.client = client
        self.chunk_size = chunk_size
        self.workers = max(1, workers)

    # =========================================================================
    # Push
    # =========================================================================

    def push(self, local_path: Union[str, Path], remote_path: RemotePath) -> TransferReport:
        """Upload a local file or directory.

        If remote_path is an existing directory the source is placed inside
        it under its own name; otherwise remote_path is the exact target.

        Raises:
            LocalIoError: If the source cannot be read
            IncompleteWriteError: If a single-file upload broke partway
            RemoteTransferError: On any other server failure
            TransferError: With ``report`` attached, if every file failed
        """
        source = Path(local_path).expanduser()
        if not source.exists():
            raise LocalIoError(f"No such file or directory: {source}", path=str(source))

        destination = self._remote_destination(source.resolve().name, normalize(remote_path))

        if source.is_dir():
            job = TransferJob(str(source), destination, TransferDirection.UPLOAD, recursive=True)
            return self._push_tree(job, source, destination)

        job = TransferJob(str(source), destination, TransferDirection.UPLOAD)
        report = TransferReport(job=job)
        report.bytes_transferred = self._upload_file(source, destination)
        report.transferred.append(destination)
        logger.info("Pushed %s -> %s (%d bytes)", source, destination, report.bytes_transferred)
        return report

    def _remote_destination(self, name: str, remote_path: RemotePath) -> RemotePath:
        try:
            entry = self.client.stat(remote_path)
        except RemoteNotFoundError:
            return remote_path
        except RemoteError as e:
            raise RemoteTransferError(e, path=remote_path)
        if entry.is_directory and name:
            return remote_join(remote_path, name)
        return remote_path

    def _upload_file(self, source: Path, destination: RemotePath) -> int:
        try:
            handle = source.open("rb")
        except OSError as e:
            raise _local_error("read", source, e)

        with handle:
            try:
                stat = os.fstat(handle.fileno())
            except OSError as e:
                raise _local_error("read", source, e) from e
            reader = CountingReader(handle, stat.st_size, self.chunk_size)
            try:
                self.client.upload_stream(destination, reader, modified_time=stat.st_mtime)
            except RemoteError as e:
                if reader.error is not None:
                    raise _local_error("read", source, reader.error) from e
                if isinstance(e, UnreachableError) and reader.bytes_read > 0:
                    raise IncompleteWriteError(
                        f"Upload of {destination} broke after {reader.bytes_read} of "
                        f"{stat.st_size} bytes; the remote file may be partial",
                        path=destination,
                        bytes_transferred=reader.bytes_read
                    ) from e
                raise RemoteTransferError(e, path=destination) from e
            except OSError as e:
                raise _local_error("read", source, e) from e
        return reader.bytes_read

    def _ensure_remote_directory(self, path: RemotePath) -> None:
        try:
            self.client.make_directory(path, recursive=False)
        except RemoteAlreadyExistsError:
            if not self.client.stat(path).is_directory:
                raise

    def _push_tree(self, job: TransferJob, root: Path, destination: RemotePath) -> TransferReport:
        directories: list[tuple[RemotePath, Optional[RemotePath]]] = []
        units: list[_FileUnit] = []

        # Breadth-first walk of the local tree
        queue: deque[tuple[Path, RemotePath, Optional[RemotePath]]] = deque([(root, destination, None)])
        while queue:
            local_dir, remote_dir, parent = queue.popleft()
            directories.append((remote_dir, parent))
            try:
                children = sorted(local_dir.iterdir(), key=lambda p: p.name)
            except OSError as e:
                units.append(_FileUnit(str(local_dir), remote_dir, _local_error("list", local_dir, e)))
                continue
            for child in children:
                target = remote_join(remote_dir, child.name)
                if child.is_symlink() and child.is_dir():
                    logger.warning("Skipping symlinked directory %s", child)
                elif child.is_dir():
                    queue.append((child, target, remote_dir))
                elif child.is_file():
                    units.append(_FileUnit(str(child), target))
                else:
                    logger.debug("Skipping special file %s", child)

        # Mirror the directory structure before any file moves
        report = TransferReport(job=job)
        failed_dirs: dict[RemotePath, TransferError] = {}
        for remote_dir, parent in directories:
            if parent in failed_dirs:
                failed_dirs[remote_dir] = failed_dirs[parent]
                continue
            try:
                if parent is None:
                    self.client.make_directory(remote_dir, recursive=True)
                else:
                    self._ensure_remote_directory(remote_dir)
                report.directories_created.append(remote_dir)
            except RemoteError as e:
                if parent is None:
                    raise RemoteTransferError(e, path=remote_dir) from e
                logger.warning("Cannot create %s: %s", remote_dir, e)
                failed_dirs[remote_dir] = RemoteTransferError(e, path=remote_dir)

        self._fail_orphans(units, failed_dirs)
        self._run(units, lambda unit: self._upload_file(Path(unit.source), unit.destination))
        return self._finish(report, units)

    # =========================================================================
    # Pull
    # =========================================================================

    def pull(self, remote_path: RemotePath, local_path: Union[str, Path]) -> TransferReport:
        """Download a remote file or directory.

        If local_path is an existing directory the source is placed inside it
        under its own name; otherwise local_path is the exact target. Missing
        local parent directories are created. Each file is downloaded beside
        its target and only replaces it once complete, so a failed or
        interrupted download leaves an existing local file untouched.

        Raises:
            LocalIoError: If the local target cannot be written
            IncompleteWriteError: If a single-file download broke partway
            RemoteTransferError: On any other server failure
            TransferError: With ``report`` attached, if every file failed
        """
        remote_path = normalize(remote_path)
        try:
            entry = self.client.stat(remote_path)
        except RemoteError as e:
            raise RemoteTransferError(e, path=remote_path)

        target = Path(local_path).expanduser()
        if target.is_dir() and entry.name:
            target = target / entry.name

        if entry.is_directory:
            job = TransferJob(remote_path, str(target), TransferDirection.DOWNLOAD, recursive=True)
            return self._pull_tree(job, remote_path, target)

        job = TransferJob(remote_path, str(target), TransferDirection.DOWNLOAD)
        report = TransferReport(job=job)
        report.bytes_transferred = self._download_file(remote_path, target)
        report.transferred.append(str(target))
        logger.info("Pulled %s -> %s (%d bytes)", remote_path, target, report.bytes_transferred)
        return report

    def _download_file(self, source: RemotePath, target: Path) -> int:
        # The body lands in a side file; the target is only replaced once complete
        partial = target.with_name(f".{target.name}{PARTIAL_SUFFIX}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            handle = partial.open("wb")
        except OSError as e:
            raise _local_error("write", target, e)

        sink = CountingWriter(handle)
        completed = False
        try:
            with handle:
                self.client.download_stream(source, sink)
            os.replace(partial, target)
            completed = True
        except RemoteError as e:
            if isinstance(e, UnreachableError) and sink.bytes_written > 0:
                raise IncompleteWriteError(
                    f"Download of {source} broke after {sink.bytes_written} bytes",
                    path=source,
                    bytes_transferred=sink.bytes_written
                ) from e
            raise RemoteTransferError(e, path=source) from e
        except OSError as e:
            raise _local_error("write", target, e) from e
        finally:
            if not completed:
                self._remove_partial(partial)
        return sink.bytes_written

    def _remove_partial(self, partial: Path) -> None:
        try:
            partial.unlink()
            logger.debug("Removed partial download %s", partial)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove partial download %s: %s", partial, e)

    def _pull_tree(self, job: TransferJob, root: RemotePath, destination: Path) -> TransferReport:
        directories: list[tuple[Path, Optional[Path]]] = []
        units: list[_FileUnit] = []

        # Breadth-first walk of the remote tree
        queue: deque[tuple[RemotePath, Path, Optional[Path]]] = deque([(root, destination, None)])
        while queue:
            remote_dir, local_dir, parent = queue.popleft()
            directories.append((local_dir, parent))
            try:
                children = self.client.list(remote_dir)
            except RemoteError as e:
                units.append(_FileUnit(remote_dir, str(local_dir), RemoteTransferError(e, path=remote_dir)))
                continue
            for child in children:
                target = local_dir / child.name
                if child.is_directory:
                    queue.append((child.path, target, local_dir))
                else:
                    units.append(_FileUnit(child.path, str(target)))

        # Mirror the directory structure before any file moves
        report = TransferReport(job=job)
        failed_dirs: dict[str, TransferError] = {}
        for local_dir, parent in directories:
            if parent is not None and str(parent) in failed_dirs:
                failed_dirs[str(local_dir)] = failed_dirs[str(parent)]
                continue
            try:
                local_dir.mkdir(parents=True, exist_ok=True)
                report.directories_created.append(str(local_dir))
            except OSError as e:
                if parent is None:
                    raise _local_error("create", local_dir, e) from e
                logger.warning("Cannot create %s: %s", local_dir, e)
                failed_dirs[str(local_dir)] = _local_error("create", local_dir, e)

        self._fail_orphans(units, failed_dirs, local=True)
        self._run(units, lambda unit: self._download_file(unit.source, Path(unit.destination)))
        return self._finish(report, units)

    # =========================================================================
    # Shared tree machinery
    # =========================================================================

    @staticmethod
    def _fail_orphans(
        units: list[_FileUnit],
        failed_dirs: dict[str, TransferError],
        local: bool = False
    ) -> None:
        """Mark files whose destination directory could not be created."""
        if not failed_dirs:
            return
        for unit in units:
            if unit.error is not None:
                continue
            parent = str(Path(unit.destination).parent) if local else remote_parent(unit.destination)
            if parent in failed_dirs:
                unit.error = failed_dirs[parent]

    def _attempt(self, unit: _FileUnit, transfer_fn: Callable[[_FileUnit], int]) -> None:
        try:
            unit.bytes_transferred = transfer_fn(unit)
            logger.debug("Transferred %s -> %s", unit.source, unit.destination)
        except TransferError as e:
            logger.warning("Failed %s -> %s: %s", unit.source, unit.destination, e)
            unit.error = e

    def _run(self, units: list[_FileUnit], transfer_fn: Callable[[_FileUnit], int]) -> None:
        """Transfer every pending unit, sequentially or on a bounded pool."""
        pending = [unit for unit in units if unit.error is None]
        if self.workers == 1 or len(pending) <= 1:
            for unit in pending:
                self._attempt(unit, transfer_fn)
            return

        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="nxcloud-transfer")
        try:
            futures = [pool.submit(self._attempt, unit, transfer_fn) for unit in pending]
            wait(futures)
            for future in futures:
                future.result()
        except BaseException:
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        pool.shutdown(wait=True)

    def _finish(self, report: TransferReport, units: list[_FileUnit]) -> TransferReport:
        for unit in units:
            if unit.error is not None:
                report.failures.append(TransferFailure(unit.source, unit.destination, unit.error))
            else:
                report.transferred.append(unit.destination)
                report.bytes_transferred += unit.bytes_transferred

        logger.info(
            "%s %s -> %s: %d transferred, %d failed, %d bytes",
            report.job.direction.value,
            report.job.source_path,
            report.job.destination_path,
            len(report.transferred),
            len(report.failures),
            report.bytes_transferred,
        )

        if units and not report.transferred:
            error = report.failures[0].error
            error.report = report
            raise error
        return report
