"""
retrieval_core/resolver.py

Find a job's input files across the storage tiers and bring them into the
work directory.

Search order for one file (first hit wins):
    1. the transfer directory
    2. the dataset storage directory
    3. shared results parents (the data package directory of aggregation jobs)
    4. the remote archive (queried per dataset)
    5. the long-term archive share
Within each parent the job's input directory is tried first, then each shared
results directory, then the dataset directory itself.

Local hits are copied (or a ``_StoragePathInfo.txt`` pointer is written when
the caller only needs to know where the file is). Archive hits are queued;
the caller flushes the queue once per job with :meth:`process_download_queue`.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import time
from collections.abc import Callable, Sequence
from pathlib import Path

from retrieval_core.archive.client import ArchiveClient
from retrieval_core.archive.download_queue import DownloadQueue
from retrieval_core.archive.models import DownloadLayout
from retrieval_core.archive.transport import ArchiveTransport, HttpArchiveTransport
from retrieval_core.archive_safety import unpack_file
from retrieval_core.exceptions import RetrievalError
from retrieval_core.file_copy import STORAGE_PATH_INFO_FILE_SUFFIX, FileCopier
from retrieval_core.hashcheck import hashcheck_path_for, validate_file_vs_hashcheck
from retrieval_core.job_params import (
    AGGREGATION_JOB_DATASET,
    JOB_PARAM_DATA_PACKAGE_PATH,
    JOB_PARAM_DATASET_ARCHIVE_PATH,
    JOB_PARAM_DATASET_FOLDER_NAME,
    JOB_PARAM_DATASET_NAME,
    JOB_PARAM_DATASET_STORAGE_PATH,
    JOB_PARAM_INPUT_FOLDER_NAME,
    JOB_PARAM_SHARED_RESULTS_FOLDERS,
    JOB_PARAM_TOOL_NAME,
    JOB_PARAM_TRANSFER_FOLDER_PATH,
    JobParams,
)
from retrieval_core.reporting import LoggingReporter, StatusReporter
from retrieval_core.settings import RetrieverSettings
from retrieval_core.stability import stable_api
from retrieval_core.tiers import (
    ArchiveLocation,
    FileLocation,
    FilesystemLocation,
    TierCandidate,
    TierParents,
    build_candidates,
    is_archive_path,
    parse_shared_results_dirs,
)

logger = logging.getLogger(__name__)

FIND_RETRY_HOLDOFF_SECONDS = 10
CACHE_RECHECK_INTERVAL_DAYS = 1
_WILDCARD_CHARS = set("*?[")


def _has_wildcard(name: str) -> bool:
    return any(ch in _WILDCARD_CHARS for ch in name)


def matching_files(directory: Path, file_name: str) -> list[Path]:
    """Files in ``directory`` named ``file_name`` (wildcards allowed), sorted by name."""
    if not _has_wildcard(file_name):
        candidate = directory / file_name
        return [candidate] if candidate.is_file() else []
    pattern = file_name.lower()
    with os.scandir(directory) as entries:
        found = [
            Path(entry.path)
            for entry in entries
            if entry.is_file() and fnmatch.fnmatchcase(entry.name.lower(), pattern)
        ]
    return sorted(found, key=lambda p: p.name.lower())


@stable_api
class Resolver:
    """Locate and retrieve files for one job.

    Args:
        job_params: Job parameter source
        work_dir: Local working directory of the job
        archive_client: Remote archive client; None disables the archive tier
        download_queue: Queue for archive hits (built from the client when omitted)
        copier: File copier (built from the queue when omitted)
        reporter: Status sink
        long_term_archive_available: Whether the long-term archive share may be searched
        debug_level: 2+ reports each hit, 3+ reports unzip detail
        hash_type: Hash used for cache validation
        recheck_interval_days: Default hashcheck recheck interval for cache lookups
        sleep: Hold-off function for find retries
    """

    def __init__(
        self,
        job_params: JobParams,
        work_dir: Path,
        *,
        archive_client: ArchiveClient | None = None,
        download_queue: DownloadQueue | None = None,
        copier: FileCopier | None = None,
        reporter: StatusReporter | None = None,
        long_term_archive_available: bool = True,
        debug_level: int = 1,
        hash_type: str = "md5",
        recheck_interval_days: float = CACHE_RECHECK_INTERVAL_DAYS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.job_params = job_params
        self.work_dir = Path(work_dir)
        self.reporter = reporter or LoggingReporter(logger)
        self.archive_client = archive_client
        if download_queue is None and archive_client is not None:
            download_queue = DownloadQueue(archive_client, self.reporter)
        self.download_queue = download_queue
        self.copier = copier or FileCopier(
            download_queue, self.reporter, debug_level=debug_level, sleep=sleep
        )
        self.long_term_archive_available = long_term_archive_available
        self.archive_search_disabled = archive_client is None
        self.debug_level = debug_level
        self.hash_type = hash_type
        self.recheck_interval_days = recheck_interval_days
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        job_params: JobParams,
        settings: RetrieverSettings,
        *,
        transport: ArchiveTransport | None = None,
        reporter: StatusReporter | None = None,
    ) -> Resolver:
        archive_client = None
        if transport is None and settings.archive.usable:
            transport = HttpArchiveTransport(
                settings.archive.base_url,
                api_token=settings.archive.api_token,
                timeout=settings.archive.timeout,
                max_attempts=settings.archive.retry.max_attempts,
                backoff_base=settings.archive.retry.backoff_base,
                backoff_max=settings.archive.retry.backoff_max,
            )
        reporter = reporter or LoggingReporter(logger)
        if transport is not None and settings.archive.enabled:
            archive_client = ArchiveClient(transport, reporter)
        return cls(
            job_params,
            settings.work_dir,
            archive_client=archive_client,
            reporter=reporter,
            long_term_archive_available=settings.long_term_archive_available,
            debug_level=settings.debug_level,
            hash_type=settings.cache.hash_type,
            recheck_interval_days=settings.cache.recheck_interval_days,
        )

    @property
    def dataset_name(self) -> str:
        return self.job_params.get_param(JOB_PARAM_DATASET_NAME)

    @property
    def tool_name(self) -> str:
        return self.job_params.get_param(JOB_PARAM_TOOL_NAME)

    def tier_parents(self) -> TierParents:
        shared_parents: tuple[str, ...] = ()
        data_package_path = self.job_params.get_param(JOB_PARAM_DATA_PACKAGE_PATH)
        if self.dataset_name == AGGREGATION_JOB_DATASET and data_package_path:
            shared_parents = (data_package_path,)
        return TierParents(
            transfer_directory=self.job_params.get_param(JOB_PARAM_TRANSFER_FOLDER_PATH),
            dataset_storage=self.job_params.get_param(JOB_PARAM_DATASET_STORAGE_PATH),
            archive_enabled=not self.archive_search_disabled,
            long_term_archive_path=self.job_params.get_param(JOB_PARAM_DATASET_ARCHIVE_PATH),
            long_term_archive_available=self.long_term_archive_available,
            shared_results_parents=shared_parents,
        )

    def candidates(self, search_archive_tier: bool = True) -> list[TierCandidate]:
        extra: Sequence[str] = ("txt",) if self.tool_name.lower().startswith("maxquant") else ()
        return build_candidates(
            self.job_params.get_param(JOB_PARAM_DATASET_FOLDER_NAME),
            self.job_params.get_param(JOB_PARAM_INPUT_FOLDER_NAME),
            parse_shared_results_dirs(self.job_params.get_param(JOB_PARAM_SHARED_RESULTS_FOLDERS)),
            self.tier_parents(),
            search_archive_tier,
            extra_subdirectories=extra,
            tool_name=self.tool_name,
        )

    def _probe(self, candidate: TierCandidate, file_name: str) -> FileLocation | None:
        if candidate.is_archive:
            if self.archive_client is None:
                return None
            refs = self.archive_client.query(
                file_name, candidate.subdirectory, self.dataset_name, recurse=False
            )
            if not refs:
                return None
            return ArchiveLocation(
                candidate.tier,
                candidate.directory,
                refs[0].file_id,
                dataset=self.dataset_name,
                subdirectory=candidate.subdirectory,
            )

        directory = Path(candidate.directory)
        if directory.is_dir() and matching_files(directory, file_name):
            return FilesystemLocation(candidate.tier, directory)
        return None

    def _walk(self, file_name: str, search_archive_tier: bool) -> FileLocation | None:
        for candidate in self.candidates(search_archive_tier):
            try:
                location = self._probe(candidate, file_name)
            except OSError as exc:
                self.reporter.error(
                    f"Exception looking for {file_name} in {candidate.directory}", exc
                )
                continue
            if location is not None:
                return location
        return None

    def find(
        self,
        file_name: str,
        search_archive_tier: bool = True,
        max_attempts: int = 1,
        log_not_found: bool = True,
    ) -> FileLocation | None:
        """Return the location of the first tier holding ``file_name``, or None.

        ``max_attempts`` only repeats a walk that failed unexpectedly; a
        clean miss is final.
        """
        attempts = max(1, max_attempts)
        location: FileLocation | None = None
        for attempt in range(1, attempts + 1):
            try:
                location = self._walk(file_name, search_archive_tier)
                break
            except (RetrievalError, ValueError, OSError) as exc:
                self.reporter.error(f"Exception looking for {file_name}", exc)
                if attempt >= attempts:
                    return None
                self.sleep(FIND_RETRY_HOLDOFF_SECONDS)

        if location is not None:
            if self.debug_level >= 2:
                self.reporter.debug(f"Data file found: {file_name} in {location.path_string}")
            return location

        if log_not_found:
            archives_unavailable = self.archive_search_disabled and not self.long_term_archive_available
            if search_archive_tier or archives_unavailable:
                self.reporter.error(f"Data file not found: {file_name}")
            else:
                self.reporter.warning(f"Data file not found (did not check archive): {file_name}")
        return None

    def _skip_in_results(self, file_name: str) -> None:
        self.job_params.add_result_file_to_skip(file_name)

    def find_and_retrieve(
        self,
        file_name: str,
        unzip: bool = False,
        search_archive_tier: bool = True,
        create_storage_path_info_only: bool = False,
        log_not_found: bool = True,
        log_remote_file_path: bool = False,
    ) -> bool:
        """Find ``file_name`` and copy (or queue) every matching file.

        Retrieved names are registered as result files to skip so that input
        files are not copied back out with the job results.
        """
        location = self.find(file_name, search_archive_tier, log_not_found=log_not_found)
        if location is None:
            return False

        if isinstance(location, ArchiveLocation):
            if self.download_queue is None:
                self.reporter.error(f"Cannot queue {file_name}: no archive download queue")
                return False
            if log_remote_file_path:
                self.reporter.status(f"Queuing {file_name} from the archive ({location.encoded_path})")
            queued = self.download_queue.enqueue_encoded_path(location.encoded_path, unzip)
            if queued:
                ref = self.archive_client.get_cached_file_info(location.file_id)
                self._skip_in_results(ref.filename if ref else file_name)
            return queued

        try:
            matches = matching_files(location.directory, file_name)
        except OSError as exc:
            self.reporter.error(f"Error listing {location.directory}", exc)
            return False

        for source in matches:
            if log_remote_file_path:
                self.reporter.status(f"Retrieving {source}")
            if not self.copier.copy_file_to_work_dir(
                source.name,
                str(location.directory),
                self.work_dir,
                create_storage_path_info_only=create_storage_path_info_only,
            ):
                return False
            if create_storage_path_info_only:
                self._skip_in_results(source.name + STORAGE_PATH_INFO_FILE_SUFFIX)
                continue
            self._skip_in_results(source.name)
            if unzip and not self._unzip_in_work_dir(source.name):
                return False
        return True

    def _unzip_in_work_dir(self, file_name: str) -> bool:
        path = self.work_dir / file_name
        self.reporter.status(f"Unzipping file {file_name}")
        try:
            unpacked = unpack_file(path, self.work_dir)
        except (RetrievalError, OSError) as exc:
            self.reporter.error(f"Error unzipping {path}", exc)
            return False
        if unpacked is None:
            self.reporter.warning(f"Unzip requested for {file_name}, which is not a .zip or .gz file")
            return True
        for name, _ in unpacked.files:
            self._skip_in_results(name)
        if self.debug_level >= 3:
            self.reporter.status(f"Unzipped file {file_name}")
        return True

    def retrieve_file(
        self,
        file_name: str,
        source_directory: str,
        max_copy_attempts: int = 3,
        not_found_level: int = logging.ERROR,
    ) -> bool:
        """Copy one file from a known directory; archive paths go to the queue."""
        return self.copier.copy_file_to_work_dir(
            file_name,
            source_directory,
            self.work_dir,
            not_found_level=not_found_level,
            max_copy_attempts=max(1, max_copy_attempts),
        )

    def retrieve_cached_file_verify_hash(
        self,
        source_file: str | Path,
        hashcheck_file: str | Path | None = None,
        create_storage_path_info_only: bool = False,
    ) -> bool:
        """Retrieve a file from a results cache and check it against its hashcheck.

        A copy that fails validation is removed from the work directory (the
        pointer file when only a pointer was written). The cached source is
        deleted too, but only when its hash was computed and did not match,
        so that it gets regenerated.
        """
        source_text = str(source_file)
        if is_archive_path(source_text):
            if self.download_queue is None:
                self.reporter.error(f"Cannot queue {source_text}: no archive download queue")
                return False
            return self.download_queue.enqueue_encoded_path(source_text)

        source = Path(source_file)
        if not source.is_file():
            self.reporter.status(f"Cached file not found; it will need to be regenerated: {source.name}")
            return False

        if not self.copier.copy_file_to_work_dir(
            source.name,
            str(source.parent),
            self.work_dir,
            create_storage_path_info_only=create_storage_path_info_only,
        ):
            return False

        if hashcheck_file is None:
            return True
        hashcheck_path = Path(hashcheck_file)
        if not hashcheck_path.is_file():
            return True

        # Pointer-only retrieval would hash the remote file over the network
        compute_hash = not create_storage_path_info_only
        target = source if create_storage_path_info_only else self.work_dir / source.name
        validation = validate_file_vs_hashcheck(
            target,
            hashcheck_path,
            hash_type=self.hash_type,
            check_date=True,
            compute_hash=compute_hash,
        )
        if validation.valid:
            return True

        self.reporter.error(f"Cached file validation error: {validation.error_message}")
        if create_storage_path_info_only:
            local_copy = self.work_dir / (source.name + STORAGE_PATH_INFO_FILE_SUFFIX)
        else:
            local_copy = target
        self._remove_quietly(local_copy)
        if validation.hash_computed and validation.hash_mismatch:
            self._remove_quietly(source)
        return False

    def _remove_quietly(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            self.reporter.warning(f"Unable to delete {path}: {exc}")

    def find_newest_file_in_cache(
        self,
        cache_dir: str | Path,
        file_name: str,
        recheck_interval_days: float | None = None,
        alternate_file_names: Sequence[str] = (),
    ) -> Path | None:
        """Newest ``file_name`` anywhere below ``cache_dir`` that passes its hashcheck.

        ``alternate_file_names`` are tried in order when nothing matches
        ``file_name`` (older caches held uncompressed copies).
        ``recheck_interval_days`` defaults to the resolver's own interval.
        """
        cache_path = Path(cache_dir)
        if not cache_path.is_dir():
            self.reporter.warning(f"Cache directory not found: {cache_path}")
            return None

        matches: list[Path] = []
        for name in (file_name, *alternate_file_names):
            matches = [p for p in cache_path.rglob(name) if p.is_file()]
            if matches:
                break
        if not matches:
            return None

        newest = max(matches, key=lambda p: p.stat().st_mtime)
        if recheck_interval_days is None:
            recheck_interval_days = self.recheck_interval_days
        validation = validate_file_vs_hashcheck(
            newest,
            hashcheck_path_for(newest),
            hash_type=self.hash_type,
            recheck_interval_days=recheck_interval_days,
        )
        if validation.valid:
            return newest
        self.reporter.warning(validation.error_message)
        return None

    def process_download_queue(self, layout: DownloadLayout = DownloadLayout.FLAT) -> bool:
        """Download everything queued from the archive into the work directory."""
        if self.download_queue is None or len(self.download_queue) == 0:
            return True
        result = self.download_queue.flush(self.work_dir, layout)
        if result.is_ok:
            for path in result.value or []:
                self._skip_in_results(path.name)
            for name, _ in self.download_queue.most_recent_unzipped_files:
                self._skip_in_results(name)
        return bool(result)
