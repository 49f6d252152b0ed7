"""Copy located files into the job work directory.

Sources on network shares fail transiently, so copies are retried with a
fixed hold-off. Sources that live in the remote archive (directory paths
starting with the archive sentinel) are not copied here; they are handed to
the download queue and fetched when the caller flushes it.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import time
from collections.abc import Callable
from pathlib import Path

from retrieval_core.archive.download_queue import DownloadQueue
from retrieval_core.network_utils import _is_retryable_os_error
from retrieval_core.reporting import LoggingReporter, StatusReporter
from retrieval_core.stability import stable_api
from retrieval_core.tiers import ARCHIVE_FILE_ID_TAG, is_archive_path, join_path

logger = logging.getLogger(__name__)

STORAGE_PATH_INFO_FILE_SUFFIX = "_StoragePathInfo.txt"
COPY_RETRY_HOLDOFF_SECONDS = 15
FILE_EXISTS_RETRY_HOLDOFF_SECONDS = 15
MAX_FILE_EXISTS_ATTEMPTS = 10
MAX_FILE_EXISTS_HOLDOFF_SECONDS = 600


@stable_api
class FileCopier:
    """Copy files with retries, or record where they are instead of copying.

    Args:
        download_queue: Receives archive-sentinel sources (optional)
        reporter: Status sink
        debug_level: 4+ reports every copied file
        sleep: Hold-off function (tests inject a no-op)
    """

    def __init__(
        self,
        download_queue: DownloadQueue | None = None,
        reporter: StatusReporter | None = None,
        *,
        debug_level: int = 1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.download_queue = download_queue
        self.reporter = reporter or LoggingReporter(logger)
        self.debug_level = debug_level
        self.sleep = sleep

    def _report_not_found(self, message: str, level: int) -> None:
        if level >= logging.ERROR:
            self.reporter.error(message)
        elif level >= logging.WARNING:
            self.reporter.warning(message)
        else:
            self.reporter.debug(message)

    def copy_file_to_work_dir(
        self,
        source_file_name: str,
        source_directory: str,
        target_directory: Path,
        *,
        not_found_level: int = logging.ERROR,
        create_storage_path_info_only: bool = False,
        max_copy_attempts: int = 3,
    ) -> bool:
        """Copy ``source_directory/source_file_name`` into ``target_directory``.

        Archive sources are queued for download instead; the return value
        then says whether queuing worked.
        """
        if is_archive_path(source_directory):
            if self.download_queue is None:
                self.reporter.error(
                    f"Cannot retrieve {source_file_name}: archive source with no download queue"
                )
                return False
            if ARCHIVE_FILE_ID_TAG in source_directory:
                return self.download_queue.enqueue_encoded_path(source_directory)
            return self.download_queue.enqueue_encoded_path(
                join_path(source_directory, source_file_name)
            )

        source_path = Path(source_directory) / source_file_name
        destination_path = Path(target_directory) / source_file_name
        try:
            if not self.file_exists_with_retry(
                source_path, retry_holdoff_seconds=1, max_attempts=1, not_found_level=not_found_level
            ):
                return False

            if create_storage_path_info_only:
                return self.create_storage_path_info_file(source_path, destination_path)

            if self.copy_file_with_retry(source_path, destination_path, True, max_copy_attempts):
                if self.debug_level > 3:
                    self.reporter.status(f"File copied: {source_path}")
                return True
            self.reporter.error(f"Error copying file {source_path}")
            return False
        except OSError as exc:
            self.reporter.error(f"Error copying {source_path} to the work directory", exc)
            return False

    def copy_file_to_work_dir_with_rename(
        self,
        dataset_name: str,
        source_file_name: str,
        source_directory: str,
        target_directory: Path,
        *,
        not_found_level: int = logging.ERROR,
        create_storage_path_info_only: bool = False,
        max_copy_attempts: int = 3,
    ) -> bool:
        """Like :meth:`copy_file_to_work_dir`, naming the copy ``<dataset><ext>``."""
        source_path = Path(source_directory) / source_file_name
        try:
            if not self.file_exists_with_retry(source_path, not_found_level=not_found_level):
                return False
            destination_path = Path(target_directory) / f"{dataset_name}{source_path.suffix}"
            if create_storage_path_info_only:
                return self.create_storage_path_info_file(source_path, destination_path)
            if self.copy_file_with_retry(source_path, destination_path, True, max_copy_attempts):
                return True
            self.reporter.error(f"Error copying file {source_path}")
            return False
        except OSError as exc:
            self.reporter.error(f"Error copying {source_path} to the work directory", exc)
            return False

    def copy_file_with_retry(
        self,
        source_path: Path,
        destination_path: Path,
        overwrite: bool = True,
        max_copy_attempts: int = 3,
    ) -> bool:
        attempts_left = max(1, max_copy_attempts)
        source_path = Path(source_path)
        destination_path = Path(destination_path)

        while True:
            try:
                if not overwrite and destination_path.exists():
                    raise FileExistsError(errno.EEXIST, "Destination exists", str(destination_path))
                destination_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source_path, destination_path)
                return True
            except FileExistsError:
                self.reporter.error(
                    f"Tried to overwrite an existing file when overwrite is False: {destination_path}"
                )
                return False
            except OSError as exc:
                if exc.errno == errno.ENAMETOOLONG or not _is_retryable_os_error(exc):
                    self.reporter.error(f"Exception copying file {source_path} to {destination_path}", exc)
                    return False
                self.reporter.error(
                    f"Exception copying file {source_path} to {destination_path}; "
                    f"retry count = {attempts_left}",
                    exc,
                )
                attempts_left -= 1
                if attempts_left <= 0:
                    return False
                self.sleep(COPY_RETRY_HOLDOFF_SECONDS)

    def create_storage_path_info_file(self, source_path: Path, destination_path: Path) -> bool:
        """Write ``<destination>_StoragePathInfo.txt`` holding the source path."""
        info_path = Path(f"{destination_path}{STORAGE_PATH_INFO_FILE_SUFFIX}")
        try:
            info_path.parent.mkdir(parents=True, exist_ok=True)
            with info_path.open("w", encoding="utf-8") as f:
                f.write(f"{source_path}{os.linesep}")
        except OSError as exc:
            self.reporter.error(f"Error creating storage path info file {info_path}", exc)
            return False
        return True

    def file_exists_with_retry(
        self,
        path: Path,
        *,
        retry_holdoff_seconds: float = FILE_EXISTS_RETRY_HOLDOFF_SECONDS,
        max_attempts: int = 3,
        not_found_level: int = logging.ERROR,
    ) -> bool:
        """Check for a file, retrying to ride out share glitches."""
        max_attempts = min(max(1, max_attempts), MAX_FILE_EXISTS_ATTEMPTS)
        if retry_holdoff_seconds <= 0:
            retry_holdoff_seconds = FILE_EXISTS_RETRY_HOLDOFF_SECONDS
        retry_holdoff_seconds = min(retry_holdoff_seconds, MAX_FILE_EXISTS_HOLDOFF_SECONDS)

        path = Path(path)
        for attempt in range(max_attempts):
            if path.is_file():
                return True
            remaining = max_attempts - attempt
            if not_found_level >= logging.ERROR and max_attempts > 1:
                self.reporter.debug(f"File {path} not found; retry count = {remaining}")
            if remaining > 1:
                self.sleep(retry_holdoff_seconds)

        if max_attempts == 1:
            message = f"File not found: {path}"
        else:
            message = f"File not found after {max_attempts} tries: {path}"
        self._report_not_found(message, not_found_level)
        return False


def read_storage_path_info_file(info_path: Path) -> str:
    """Return the source path recorded in a ``_StoragePathInfo.txt`` file."""
    with Path(info_path).open("r", encoding="utf-8") as f:
        return f.readline().strip()
