from __future__ import annotations

import enum
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from retrieval_core.exceptions import ArchiveError


@dataclass(frozen=True)
class ArchivedFileRef:
    """A file (or directory) known to the remote archive.

    Attributes:
        file_id: Stable id, unique per physical archived file
        dataset: Dataset the file belongs to
        relative_path: Path below the dataset directory, ``/``-separated
        transaction_id: Upload transaction; larger is newer
        is_directory: True for directory entries
        size: Size in bytes, when the archive reports it
        hash: Content hash reported by the archive (may be empty)
    """

    file_id: int
    dataset: str
    relative_path: str
    transaction_id: int = 0
    is_directory: bool = False
    size: int | None = None
    hash: str = ""

    @property
    def filename(self) -> str:
        return posixpath.basename(self.relative_path)

    @property
    def subdirectory(self) -> str:
        return posixpath.dirname(self.relative_path)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ArchivedFileRef:
        if not isinstance(data, Mapping):
            raise ArchiveError(
                f"Malformed archive file record: expected an object, got {type(data).__name__}",
                context={"record": repr(data)},
            )
        try:
            relative_path = str(data.get("relative_path") or data.get("path") or "")
            subdir = str(data.get("subdir") or "")
            name = data.get("name")
            if not relative_path and name:
                relative_path = posixpath.join(subdir, str(name)) if subdir else str(name)
            size = data.get("size")
            return cls(
                file_id=int(data["id"]),
                dataset=str(data.get("dataset") or ""),
                relative_path=relative_path.replace("\\", "/").lstrip("/"),
                transaction_id=int(data.get("transaction_id") or 0),
                is_directory=bool(data.get("is_directory", False)),
                size=int(size) if size is not None else None,
                hash=str(data.get("hash") or ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ArchiveError(
                f"Malformed archive file record: {exc}", context={"record": data}
            ) from exc


@dataclass(frozen=True)
class DownloadQueueEntry:
    ref: ArchivedFileRef
    unzip_required: bool = False


class DownloadLayout(enum.Enum):
    """Where a downloaded file lands relative to the flush target directory."""

    FLAT = "flat"
    DATASET = "dataset"
    DATASET_RELATIVE_PATH = "dataset_relative_path"

    def directory_for(self, target_directory: Path, ref: ArchivedFileRef) -> Path:
        if self is DownloadLayout.FLAT:
            return target_directory
        dataset_dir = target_directory / ref.dataset if ref.dataset else target_directory
        if self is DownloadLayout.DATASET or not ref.subdirectory:
            return dataset_dir
        return dataset_dir.joinpath(*ref.subdirectory.split("/"))
