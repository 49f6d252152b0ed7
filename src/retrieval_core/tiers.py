"""Storage tiers and the ordered candidate directories probed for a job file.

Tier order is the fallback priority: a copy on a faster tier is expected to
be at least as fresh as an archived copy, so a lower-ordinal hit always wins.

Remote archive locations cross string boundaries (job parameters, pointer
files, log messages) as directory paths that start with ``ARCHIVE_PATH_FLAG``;
a located archive file carries its numeric identity as a trailing
``@ARCHIVEID_<n>`` token. Inside the engine they are ``ArchiveLocation``
values instead.
"""

from __future__ import annotations

import enum
import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from retrieval_core.stability import stable_api

ARCHIVE_PATH_FLAG = "\\\\ARCHIVE"
ARCHIVE_FILE_ID_TAG = "@ARCHIVEID_"

_FILE_ID_RE = re.compile(re.escape(ARCHIVE_FILE_ID_TAG) + r"(\d+)$")

# Tool scripts whose staging shares hold results directly below the share
_STAGING_TOOL_PREFIXES = ("maxquant", "msfragger")
_STAGING_MARKER = "_staging"


@stable_api
class StorageTier(enum.IntEnum):
    TRANSFER_DIRECTORY = 0
    DATASET_STORAGE = 1
    SHARED_RESULTS_SUBDIRECTORY = 2
    REMOTE_ARCHIVE = 3
    LONG_TERM_ARCHIVE_PATH = 4

    @property
    def is_archive(self) -> bool:
        return self is StorageTier.REMOTE_ARCHIVE


@dataclass(frozen=True)
class FilesystemLocation:
    tier: StorageTier
    directory: Path

    @property
    def path_string(self) -> str:
        return str(self.directory)


@dataclass(frozen=True)
class ArchiveLocation:
    tier: StorageTier
    directory: str
    file_id: int
    dataset: str = ""
    subdirectory: str = ""

    @property
    def encoded_path(self) -> str:
        return append_archive_file_id(self.directory, self.file_id)

    @property
    def path_string(self) -> str:
        return self.encoded_path


FileLocation = FilesystemLocation | ArchiveLocation


@dataclass(frozen=True)
class TierCandidate:
    """One directory to probe.

    ``subdirectory`` is the part of ``directory`` below the dataset directory
    (empty for the bare dataset directory); the archive tier queries by it.
    """

    tier: StorageTier
    directory: str
    subdirectory: str = ""

    @property
    def is_archive(self) -> bool:
        return self.tier.is_archive


@dataclass(frozen=True)
class TierParents:
    """Parent directories for each tier, as delivered by job parameters."""

    transfer_directory: str = ""
    dataset_storage: str = ""
    archive_enabled: bool = True
    long_term_archive_path: str = ""
    long_term_archive_available: bool = True
    shared_results_parents: tuple[str, ...] = field(default_factory=tuple)

    def ordered(self, include_archive_tiers: bool) -> list[tuple[StorageTier, str]]:
        parents: list[tuple[StorageTier, str]] = [
            (StorageTier.TRANSFER_DIRECTORY, self.transfer_directory),
            (StorageTier.DATASET_STORAGE, self.dataset_storage),
        ]
        parents.extend(
            (StorageTier.SHARED_RESULTS_SUBDIRECTORY, path) for path in self.shared_results_parents
        )
        if include_archive_tiers:
            if self.archive_enabled:
                parents.append((StorageTier.REMOTE_ARCHIVE, ARCHIVE_PATH_FLAG))
            if self.long_term_archive_available and self.long_term_archive_path.strip():
                parents.append((StorageTier.LONG_TERM_ARCHIVE_PATH, self.long_term_archive_path))
        return [(tier, path) for tier, path in parents if path and path.strip()]


def join_path(*parts: str) -> str:
    """Join path segments, dropping empty ones instead of inserting them."""
    kept = [part for part in parts if part and part.strip()]
    if not kept:
        return ""
    return os.path.join(*kept)


@stable_api
def is_archive_path(path: str | os.PathLike[str]) -> bool:
    return str(path).startswith(ARCHIVE_PATH_FLAG)


@stable_api
def append_archive_file_id(path: str, file_id: int) -> str:
    return f"{path}{ARCHIVE_FILE_ID_TAG}{file_id}"


@stable_api
def extract_archive_file_id(path: str) -> tuple[int, str]:
    """Split ``path@ARCHIVEID_n`` into ``(n, path)``; ``(0, path)`` when absent."""
    match = _FILE_ID_RE.search(path)
    if not match:
        return 0, path
    return int(match.group(1)), path[: match.start()]


@stable_api
def add_file_to_archive_directory_path(directory_path: str, file_name: str) -> str:
    """Append a file name to an archive directory path, keeping its id token last."""
    file_id, clean_path = extract_archive_file_id(directory_path)
    file_path = join_path(clean_path, file_name)
    if file_id == 0:
        return file_path
    return append_archive_file_id(file_path, file_id)


@stable_api
def parse_shared_results_dirs(value: str | None) -> list[str]:
    """Turn the SharedResultsFolders job parameter into a probe order.

    A comma-separated list is reversed so the last-listed directory is tried
    first; a single name is used as-is.
    """
    text = (value or "").strip()
    if not text:
        return []
    if "," not in text:
        return [text]
    names = [item.strip() for item in text.split(",") if item.strip()]
    names.reverse()
    return names


def _probes_directly_below_parent(parent_path: str, tool_name: str) -> bool:
    tool = tool_name.lower()
    return _STAGING_MARKER in parent_path.lower()[1:] and tool.startswith(_STAGING_TOOL_PREFIXES)


def _add_candidate(
    candidates: list[TierCandidate],
    tier: StorageTier,
    directory: str,
    subdirectory: str,
    extra_subdirectories: Sequence[str],
) -> None:
    candidates.append(TierCandidate(tier, directory, subdirectory))
    for extra in extra_subdirectories:
        if extra:
            candidates.append(
                TierCandidate(tier, join_path(directory, extra), join_path(subdirectory, extra))
            )


@stable_api
def build_candidates(
    dataset_dir_name: str,
    input_dir_name: str,
    shared_results_dirs: Iterable[str],
    parents: TierParents,
    include_archive_tiers: bool,
    *,
    extra_subdirectories: Sequence[str] = (),
    tool_name: str = "",
) -> list[TierCandidate]:
    """Enumerate the directories to probe, in tier order.

    For each parent: ``parent/dataset/input_dir``, then each
    ``parent/dataset/shared_dir``, then the bare ``parent/dataset``.

    Args:
        dataset_dir_name: Dataset directory name
        input_dir_name: Input directory of the job step (may be empty)
        shared_results_dirs: Shared results directory names, already in probe order
        parents: Parent directory per tier
        include_archive_tiers: Whether remote and long-term archive parents are added
        extra_subdirectories: Names appended below every candidate (e.g. ``txt``)
        tool_name: Step tool script name; staging shares for MaxQuant and
            MSFragger are also probed directly below the parent

    Returns:
        Ordered candidates; tier ordinals never decrease along the list
    """
    shared = [name for name in shared_results_dirs if name and name.strip()]
    candidates: list[TierCandidate] = []

    for tier, parent_path in parents.ordered(include_archive_tiers):
        if tier.is_archive and not dataset_dir_name.strip():
            # The archive is queried per dataset
            continue
        below_parent = _probes_directly_below_parent(parent_path, tool_name)
        dataset_path = join_path(parent_path, dataset_dir_name)

        if input_dir_name:
            _add_candidate(
                candidates, tier, join_path(dataset_path, input_dir_name), input_dir_name,
                extra_subdirectories,
            )
            if below_parent:
                _add_candidate(
                    candidates, tier, join_path(parent_path, input_dir_name), input_dir_name,
                    extra_subdirectories,
                )

        for shared_dir in shared:
            _add_candidate(
                candidates, tier, join_path(dataset_path, shared_dir), shared_dir,
                extra_subdirectories,
            )
            if below_parent:
                _add_candidate(
                    candidates, tier, join_path(parent_path, shared_dir), shared_dir,
                    extra_subdirectories,
                )

        if dataset_dir_name and dataset_dir_name.strip():
            _add_candidate(candidates, tier, dataset_path, "", extra_subdirectories)

    return candidates
