"""
retrieval_core/archive/download_queue.py

Pending archive downloads for one job, keyed by file id.

Callers register files as they resolve them and flush once per job; the
flush downloads sequentially and stops at the first failure. Already
downloaded files are left in place (no rollback) and drop out of the queue,
so a later flush only retries what is still pending.
"""

from __future__ import annotations

import logging
from pathlib import Path

from retrieval_core.archive.client import ArchiveClient
from retrieval_core.archive.models import ArchivedFileRef, DownloadLayout, DownloadQueueEntry
from retrieval_core.archive_safety import unpack_file
from retrieval_core.exceptions import RetrievalError
from retrieval_core.reporting import LoggingReporter, StatusReporter
from retrieval_core.result import Err, Noop, Ok, Result
from retrieval_core.stability import stable_api
from retrieval_core.tiers import extract_archive_file_id

logger = logging.getLogger(__name__)


@stable_api
class DownloadQueue:
    def __init__(self, client: ArchiveClient, reporter: StatusReporter | None = None) -> None:
        self.client = client
        self.reporter = reporter or LoggingReporter(logger)
        self._entries: dict[int, DownloadQueueEntry] = {}
        self.downloaded_files: dict[int, Path] = {}
        self.most_recent_unzipped_files: list[tuple[str, str]] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, file_id: object) -> bool:
        return file_id in self._entries

    @property
    def entries(self) -> list[DownloadQueueEntry]:
        return list(self._entries.values())

    def enqueue(self, ref: ArchivedFileRef, unzip_required: bool = False) -> bool:
        """Queue ``ref``; returns False when its file id is already queued."""
        if ref.file_id in self._entries:
            return False
        self._entries[ref.file_id] = DownloadQueueEntry(ref, unzip_required)
        return True

    def enqueue_encoded_path(self, encoded_path: str, unzip_required: bool = False) -> bool:
        """Queue the file named by an ``...@ARCHIVEID_<n>`` path.

        The id must belong to a file the archive client has already found.
        """
        file_id, clean_path = extract_archive_file_id(encoded_path)
        if file_id == 0:
            self.reporter.error(f"Archive file id not found in path: {encoded_path}")
            return False

        ref = self.client.get_cached_file_info(file_id)
        if ref is None:
            file_name = clean_path.replace("\\", "/").rsplit("/", 1)[-1]
            self.reporter.error(
                f"Archive file id {file_id} has not been found by a previous query (file {file_name})"
            )
            return False

        self.enqueue(ref, unzip_required)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def flush(
        self, target_directory: Path, layout: DownloadLayout = DownloadLayout.FLAT
    ) -> Result[list[Path]]:
        """Download every queued file into ``target_directory``.

        Returns:
            Ok with the downloaded paths, Noop for an empty queue, or Err with
            the first failure (remaining entries stay queued)
        """
        self.most_recent_unzipped_files = []
        if not self._entries:
            return Noop("download queue is empty")

        target_directory = Path(target_directory)
        downloaded: list[Path] = []
        total = len(self._entries)

        for index, entry in enumerate(list(self._entries.values()), start=1):
            ref = entry.ref
            destination = layout.directory_for(target_directory, ref) / ref.filename
            try:
                path = self.client.transport.download_file(ref, destination)
                if entry.unzip_required:
                    unpacked = unpack_file(path)
                    if unpacked is not None:
                        self.most_recent_unzipped_files.extend(unpacked.files)
            except (RetrievalError, OSError) as exc:
                message = f"Error downloading {ref.relative_path} (archive file id {ref.file_id}): {exc}"
                self.reporter.error(message, exc)
                return Err("download_failed", message, file_id=ref.file_id, downloaded=len(downloaded))

            del self._entries[ref.file_id]
            self.downloaded_files[ref.file_id] = path
            downloaded.append(path)
            self.reporter.progress(f"Downloaded {ref.filename}", 100.0 * index / total)

        return Ok(downloaded, unzipped=list(self.most_recent_unzipped_files))
